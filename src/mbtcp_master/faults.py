"""Fault mapper: classify terminal conditions into FaultResponse events and route them outward."""

import logging
import socket
import threading
from typing import Callable

from .errors import MalformedADUError, TransportError
from .types import FaultCode, FaultResponse, Operation

logger = logging.getLogger(__name__)

FaultListener = Callable[[FaultResponse], None]


def classify(exc: BaseException) -> FaultCode:
    """Map an exception raised during an exchange to its fault code."""
    if isinstance(exc, TransportError):
        return exc.code
    if isinstance(exc, socket.timeout):
        return FaultCode.TIMEOUT
    if isinstance(exc, (MalformedADUError, OSError)):
        # a stream that produced a bad header cannot be resynchronized
        return FaultCode.CONNECTION_LOST
    raise TypeError(f"Not a transport condition: {exc!r}")


class FaultMapper:
    """
    Single outward channel for faults.

    Device exceptions and local transport faults all leave through emit().
    A connection-lost fault first runs the teardown callback, which the
    master wires to close both connections; listeners are notified after.
    """

    def __init__(self, on_connection_lost: Callable[[], None] | None = None) -> None:
        self._on_connection_lost = on_connection_lost
        self._listeners: list[FaultListener] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: FaultListener) -> FaultListener:
        with self._lock:
            self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: FaultListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def for_operation(self, operation: Operation, code: int) -> FaultResponse:
        return FaultResponse(operation.transaction_id, operation.unit_id, int(operation.function), int(code))

    def from_exception(self, exc: BaseException, operation: Operation) -> FaultResponse:
        return self.for_operation(operation, classify(exc))

    def emit(self, fault: FaultResponse) -> FaultResponse:
        if fault.is_device_fault:
            logger.info(
                "Device fault %d (%s) tid=%d unit=%d function=%d",
                fault.code,
                fault.description,
                fault.transaction_id,
                fault.unit_id,
                fault.function,
            )
        else:
            logger.warning(
                "Transport fault %d (%s) tid=%d unit=%d function=%d",
                fault.code,
                fault.description,
                fault.transaction_id,
                fault.unit_id,
                fault.function,
            )
        if fault.is_connection_lost and self._on_connection_lost is not None:
            self._on_connection_lost()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(fault)
            except Exception as e:
                logger.warning("Fault listener exception: %s", e)
        return fault
