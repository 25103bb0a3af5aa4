"""Exceptions for mbtcp-master: address parsing, framing, transport and Modbus I/O errors."""

from typing import TYPE_CHECKING

from .types import FaultCode

if TYPE_CHECKING:
    from .types import FaultResponse


class MbtcpError(Exception):
    """Base exception for mbtcp-master."""

    pass


class InvalidAddressError(MbtcpError):
    """Raised when an address string is malformed or outside its table's range."""

    def __init__(self, address: str, message: str | None = None) -> None:
        self.address = address
        self._msg = message or f"Invalid address: {address!r}"
        super().__init__(self._msg)


class MalformedADUError(MbtcpError, ValueError):
    """Raised when received bytes do not form a valid ADU."""

    pass


class TransportError(MbtcpError):
    """A failure of the byte stream; code is the local fault code it maps to."""

    code: FaultCode = FaultCode.CONNECTION_LOST

    def __init__(self, message: str | None = None, *, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message or self.code.description)


class NotConnectedError(TransportError):
    """Raised when a connection cannot be established."""

    code = FaultCode.NOT_CONNECTED


class ConnectionLostError(TransportError):
    """Raised when the peer closes the stream or the socket fails."""

    code = FaultCode.CONNECTION_LOST


class ResponseTimeoutError(TransportError):
    """Raised when no complete response arrives within the exchange timeout."""

    code = FaultCode.TIMEOUT


class SendFailureError(TransportError):
    """Raised when a request could not be handed to the transport in time."""

    code = FaultCode.SEND_FAILURE


class DuplicateTransactionError(MbtcpError, ValueError):
    """Raised when submitting a transaction id that is still in flight."""

    def __init__(self, transaction_id: int) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} is already pending")


class UnexpectedResponseError(MbtcpError):
    """Raised when a response carries a transaction id with no pending request."""

    def __init__(self, transaction_id: int, response: object = None) -> None:
        self.transaction_id = transaction_id
        self.response = response
        super().__init__(f"Unexpected response for transaction {transaction_id}")


class ModbusIOError(MbtcpError):
    """Raised by the high-level master API when an exchange ends in a fault."""

    def __init__(
        self,
        message: str,
        *,
        transaction_id: int | None = None,
        unit_id: int | None = None,
        function: int | None = None,
        address: str | None = None,
        fault: "FaultResponse | None" = None,
        cause: BaseException | None = None,
    ) -> None:
        self.transaction_id = transaction_id
        self.unit_id = unit_id
        self.function = function
        self.address = address
        self.fault = fault
        self.cause = cause
        super().__init__(message)

    @property
    def code(self) -> int | None:
        return self.fault.code if self.fault is not None else None
