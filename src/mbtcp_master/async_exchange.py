"""
Non-blocking exchange over the dedicated asynchronous connection.

submit() registers the request, hands the ADU to the transport and returns a
Future. A reader thread owns the receive side: it splits the stream into
ADUs, decodes each one and resolves the pending request carrying the same
transaction id, so any number of requests may be in flight at once.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Callable

from . import codec
from .connection import Connection
from .errors import MalformedADUError, TransportError, UnexpectedResponseError
from .faults import FaultMapper
from .transactions import PendingRequest, TransactionRegistry
from .types import (
    UNKNOWN_FUNCTION,
    UNKNOWN_TRANSACTION,
    UNKNOWN_UNIT,
    DataResponse,
    FaultCode,
    FaultResponse,
    Operation,
    Response,
)

logger = logging.getLogger(__name__)

ResponseListener = Callable[[DataResponse], None]
UnexpectedHandler = Callable[[UnexpectedResponseError], None]

# select() tick of the reader loop; also the granularity of timeout sweeps
POLL_INTERVAL = 0.05


def _completed(response: Response) -> "Future[Response]":
    future: Future = Future()
    future.set_result(response)
    return future


class AsyncExchange:
    """Submit requests without waiting; responses arrive on listeners and futures."""

    def __init__(
        self,
        faults: FaultMapper,
        timeout: float,
        registry: TransactionRegistry | None = None,
        on_unexpected: UnexpectedHandler | None = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self._faults = faults
        self._timeout = timeout
        self._registry = registry if registry is not None else TransactionRegistry()
        self._on_unexpected = on_unexpected
        self._poll_interval = poll_interval
        self._listeners: list[ResponseListener] = []
        self._listeners_lock = threading.Lock()
        self._connection: Connection | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def registry(self) -> TransactionRegistry:
        return self._registry

    @property
    def connection(self) -> Connection | None:
        return self._connection

    @property
    def pending(self) -> int:
        return len(self._registry)

    def add_listener(self, listener: ResponseListener) -> ResponseListener:
        with self._listeners_lock:
            self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: ResponseListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def attach(self, connection: Connection) -> None:
        """Take ownership of connection's receive side and start the reader thread."""
        self.join()
        self._stop = threading.Event()
        self._connection = connection
        self._thread = threading.Thread(
            target=self._read_loop,
            args=(connection, self._stop),
            name=f"mbtcp-async-reader-{connection.peer}",
            daemon=True,
        )
        self._thread.start()

    def detach(self) -> Connection | None:
        """Stop the reader (it fails whatever is still pending) and hand back the connection."""
        connection, self._connection = self._connection, None
        self._stop.set()
        return connection

    def join(self, timeout: float = 2.0) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout)

    def submit(self, operation: Operation) -> "Future[Response]":
        """
        Send operation and return immediately.

        The returned Future resolves to the DataResponse or FaultResponse for
        this transaction id. Raises DuplicateTransactionError if the id is
        already in flight.
        """
        adu = codec.encode(operation)
        connection, stop = self._connection, self._stop
        if connection is None or not connection.connected or stop.is_set():
            return _completed(self._faults.emit(self._faults.for_operation(operation, FaultCode.CONNECTION_LOST)))

        pending = self._registry.register(operation)
        try:
            connection.send(adu)
        except TransportError as e:
            # the reader may already have failed it while tearing down
            if self._registry.discard(operation.transaction_id) is not None:
                self._deliver_fault(pending, self._faults.from_exception(e, operation))
            return pending.future
        if stop.is_set() and self._registry.discard(operation.transaction_id) is not None:
            # registered after the reader drained the registry
            fault = self._faults.for_operation(operation, FaultCode.CONNECTION_LOST)
            self._deliver_fault(pending, fault)
        return pending.future

    def _deliver_fault(self, pending: PendingRequest, fault: FaultResponse) -> None:
        self._faults.emit(fault)
        pending.complete(fault)

    def _deliver_data(self, pending: PendingRequest, response: DataResponse) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(response)
            except Exception as e:
                logger.warning("Response listener exception: %s", e)
        pending.complete(response)

    def _read_loop(self, connection: Connection, stop: threading.Event) -> None:
        logger.debug("Async reader started for %s", connection.peer)
        try:
            while not stop.is_set():
                self._expire()
                try:
                    if not connection.wait_readable(self._poll_interval):
                        continue
                    frames = connection.receive_frames()
                except (TransportError, MalformedADUError) as e:
                    if not stop.is_set():
                        logger.warning("Async connection lost: %s", e)
                    break
                for frame in frames:
                    self._dispatch(frame)
        finally:
            self._fail_pending(stop)
            logger.debug("Async reader stopped for %s", connection.peer)

    def _dispatch(self, frame: bytes) -> None:
        try:
            response = codec.decode(frame)
        except MalformedADUError as e:
            logger.warning("Dropping undecodable response: %s", e)
            return
        try:
            pending = self._registry.resolve(response)
        except UnexpectedResponseError as e:
            logger.warning("%s", e)
            if self._on_unexpected is not None:
                try:
                    self._on_unexpected(e)
                except Exception as handler_error:
                    logger.warning("Unexpected-response handler exception: %s", handler_error)
            return
        if isinstance(response, FaultResponse):
            self._deliver_fault(pending, response)
        else:
            self._deliver_data(pending, response)

    def _expire(self) -> None:
        for pending in self._registry.expire(self._timeout):
            fault = FaultResponse(pending.transaction_id, pending.unit_id, pending.function, FaultCode.TIMEOUT)
            self._deliver_fault(pending, fault)

    def _fail_pending(self, stop: threading.Event) -> None:
        lost = not stop.is_set()
        stop.set()
        drained = self._registry.drain()
        for pending in drained:
            fault = FaultResponse(pending.transaction_id, pending.unit_id, pending.function, FaultCode.CONNECTION_LOST)
            self._deliver_fault(pending, fault)
        if lost and not drained:
            # nothing in flight to attribute the drop to
            self._faults.emit(FaultResponse(UNKNOWN_TRANSACTION, UNKNOWN_UNIT, UNKNOWN_FUNCTION, FaultCode.CONNECTION_LOST))
