"""mbtcp-master: Modbus/TCP master with blocking and transaction-correlated non-blocking exchanges."""

__version__ = "0.1.0"

from .address import normalize_address, parse_address
from .client import ModbusMaster
from .connection import Connection, Connector, MasterConfig, TcpConnector
from .errors import (
    ConnectionLostError,
    DuplicateTransactionError,
    InvalidAddressError,
    MalformedADUError,
    MbtcpError,
    ModbusIOError,
    NotConnectedError,
    ResponseTimeoutError,
    SendFailureError,
    TransportError,
    UnexpectedResponseError,
)
from .types import (
    Address,
    ChannelRole,
    DataResponse,
    FaultCode,
    FaultResponse,
    FunctionCode,
    ModbusTable,
    Operation,
    Response,
)

__all__ = [
    "__version__",
    "ModbusMaster",
    "MasterConfig",
    "Connection",
    "Connector",
    "TcpConnector",
    "parse_address",
    "normalize_address",
    "Address",
    "ChannelRole",
    "DataResponse",
    "FaultCode",
    "FaultResponse",
    "FunctionCode",
    "ModbusTable",
    "Operation",
    "Response",
    "MbtcpError",
    "InvalidAddressError",
    "MalformedADUError",
    "TransportError",
    "NotConnectedError",
    "ConnectionLostError",
    "ResponseTimeoutError",
    "SendFailureError",
    "DuplicateTransactionError",
    "UnexpectedResponseError",
    "ModbusIOError",
]
