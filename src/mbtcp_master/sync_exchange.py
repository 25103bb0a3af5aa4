"""Blocking request/response exchange over the dedicated synchronous connection."""

import logging
import threading
import time

from . import codec
from .connection import Connection
from .errors import MalformedADUError, TransportError
from .faults import FaultMapper
from .types import FaultCode, FaultResponse, Operation, Response

logger = logging.getLogger(__name__)


class SyncExchange:
    """
    One send-then-receive cycle at a time on the synchronous connection.

    The exchange lock is held for the whole call, so a second caller blocks
    until the first has its response, fault or timeout.
    """

    def __init__(self, faults: FaultMapper, timeout: float) -> None:
        self._faults = faults
        self._timeout = timeout
        self._connection: Connection | None = None
        self._lock = threading.Lock()

    @property
    def connection(self) -> Connection | None:
        return self._connection

    def attach(self, connection: Connection) -> None:
        self._connection = connection

    def detach(self) -> Connection | None:
        connection, self._connection = self._connection, None
        return connection

    def exchange(self, operation: Operation, timeout: float | None = None) -> Response:
        """
        Send operation and wait for its response.

        Returns a DataResponse, or a FaultResponse for device exceptions and
        transport failures; faults are also emitted through the fault mapper.
        """
        adu = codec.encode(operation)
        timeout = self._timeout if timeout is None else timeout
        with self._lock:
            connection = self._connection
            if connection is None or not connection.connected:
                return self._faults.emit(self._faults.for_operation(operation, FaultCode.CONNECTION_LOST))
            try:
                connection.send(adu)
                response = self._receive(connection, operation, timeout)
            except (TransportError, MalformedADUError, OSError) as e:
                logger.debug("Exchange tid=%d failed: %s", operation.transaction_id, e)
                return self._faults.emit(self._faults.from_exception(e, operation))

        if isinstance(response, FaultResponse):
            return self._faults.emit(response)
        return response

    def _receive(self, connection: Connection, operation: Operation, timeout: float) -> Response:
        deadline = time.monotonic() + timeout
        while True:
            frame = connection.read_frame(max(deadline - time.monotonic(), 0.0))
            response = codec.decode(frame)
            if response.transaction_id == operation.transaction_id:
                return response
            # late reply to an exchange that already timed out
            logger.warning(
                "Discarding response tid=%d while waiting for tid=%d",
                response.transaction_id,
                operation.transaction_id,
            )

