"""Transaction registry: id allocation and in-flight request tracking for the async exchange."""

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field

from .errors import DuplicateTransactionError, UnexpectedResponseError
from .types import Operation, Response

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """An in-flight request awaiting the response that carries its transaction id."""

    transaction_id: int
    unit_id: int
    function: int
    future: "Future[Response]" = field(default_factory=Future, repr=False)
    submitted_at: float = field(default_factory=time.monotonic)

    def complete(self, response: Response) -> None:
        if not self.future.done():
            self.future.set_result(response)


class TransactionRegistry:
    """
    Maps outstanding transaction ids to pending completion handles.

    A response is matched to its request by id only; an id with no pending
    entry is an unexpected response. All methods are safe to call from the
    submitting threads and the reader thread concurrently.
    """

    def __init__(self, first_id: int = 1) -> None:
        self._next = first_id & 0xFFFF
        self._pending: dict[int, PendingRequest] = {}
        self._lock = threading.Lock()

    def next_id(self) -> int:
        """Allocate the next transaction id (mod 2**16), skipping ids still in flight."""
        with self._lock:
            for _ in range(0x10000):
                tid = self._next
                self._next = (self._next + 1) & 0xFFFF
                if tid not in self._pending:
                    return tid
        raise RuntimeError("All 65536 transaction ids are in flight")

    def register(self, operation: Operation) -> PendingRequest:
        pending = PendingRequest(operation.transaction_id, operation.unit_id, int(operation.function))
        with self._lock:
            if operation.transaction_id in self._pending:
                raise DuplicateTransactionError(operation.transaction_id)
            self._pending[operation.transaction_id] = pending
        return pending

    def resolve(self, response: Response) -> PendingRequest:
        """Pop the entry matching response.transaction_id; raise UnexpectedResponseError if none."""
        with self._lock:
            pending = self._pending.pop(response.transaction_id, None)
        if pending is None:
            raise UnexpectedResponseError(response.transaction_id, response)
        return pending

    def discard(self, transaction_id: int) -> PendingRequest | None:
        with self._lock:
            return self._pending.pop(transaction_id, None)

    def expire(self, max_age: float, now: float | None = None) -> list[PendingRequest]:
        """Pop and return entries submitted more than max_age seconds ago."""
        now = time.monotonic() if now is None else now
        with self._lock:
            expired = [p for p in self._pending.values() if now - p.submitted_at > max_age]
            for p in expired:
                del self._pending[p.transaction_id]
        if expired:
            logger.debug("Expired %d pending transaction(s)", len(expired))
        return expired

    def drain(self) -> list[PendingRequest]:
        """Pop every pending entry (connection gone)."""
        with self._lock:
            drained = list(self._pending.values())
            self._pending.clear()
        return drained

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, transaction_id: object) -> bool:
        with self._lock:
            return transaction_id in self._pending
