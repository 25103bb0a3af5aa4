"""Core data model: function/fault code registries, Operation, responses, Address."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Sequence, Union

from .convert import bits_to_bytes, bytes_to_bits, bytes_to_words, words_to_bytes

UNKNOWN_TRANSACTION = 0xFFFF
UNKNOWN_UNIT = 0xFF
UNKNOWN_FUNCTION = 0xFF


class FunctionCode(IntEnum):
    """Supported Modbus function codes."""

    READ_COILS = 1
    READ_DISCRETE_INPUTS = 2
    READ_HOLDING_REGISTERS = 3
    READ_INPUT_REGISTERS = 4
    WRITE_SINGLE_COIL = 5
    WRITE_SINGLE_REGISTER = 6
    WRITE_MULTIPLE_COILS = 15
    WRITE_MULTIPLE_REGISTERS = 16
    READ_WRITE_MULTIPLE_REGISTERS = 23

    @property
    def is_write(self) -> bool:
        """Write-class functions answer with a fixed 2-byte echo, not a byte-counted payload."""
        return self in _WRITE_FUNCTIONS

    @property
    def is_read(self) -> bool:
        return self in _READ_FUNCTIONS


_READ_FUNCTIONS = frozenset(
    {
        FunctionCode.READ_COILS,
        FunctionCode.READ_DISCRETE_INPUTS,
        FunctionCode.READ_HOLDING_REGISTERS,
        FunctionCode.READ_INPUT_REGISTERS,
    }
)
_WRITE_FUNCTIONS = frozenset(
    {
        FunctionCode.WRITE_SINGLE_COIL,
        FunctionCode.WRITE_SINGLE_REGISTER,
        FunctionCode.WRITE_MULTIPLE_COILS,
        FunctionCode.WRITE_MULTIPLE_REGISTERS,
    }
)


class FaultCode(IntEnum):
    """Device exception codes plus the locally defined transport codes."""

    ILLEGAL_FUNCTION = 1
    ILLEGAL_DATA_ADDRESS = 2
    ILLEGAL_DATA_VALUE = 3
    DEVICE_FAILURE = 4
    ACKNOWLEDGE = 5
    DEVICE_BUSY = 6
    GATEWAY_PATH_UNAVAILABLE = 10
    # local, outside the protocol's own numbering
    SEND_FAILURE = 100
    NOT_CONNECTED = 253
    CONNECTION_LOST = 254
    TIMEOUT = 255

    @property
    def is_device(self) -> bool:
        return self < FaultCode.SEND_FAILURE

    @property
    def description(self) -> str:
        return _FAULT_DESCRIPTIONS[self]


_FAULT_DESCRIPTIONS = {
    FaultCode.ILLEGAL_FUNCTION: "illegal function",
    FaultCode.ILLEGAL_DATA_ADDRESS: "illegal data address",
    FaultCode.ILLEGAL_DATA_VALUE: "illegal data value",
    FaultCode.DEVICE_FAILURE: "device failure",
    FaultCode.ACKNOWLEDGE: "acknowledge",
    FaultCode.DEVICE_BUSY: "device busy",
    FaultCode.GATEWAY_PATH_UNAVAILABLE: "gateway path unavailable",
    FaultCode.SEND_FAILURE: "send failure",
    FaultCode.NOT_CONNECTED: "not connected",
    FaultCode.CONNECTION_LOST: "connection lost",
    FaultCode.TIMEOUT: "response timeout",
}


class ChannelRole(str, Enum):
    """A master owns one connection per role."""

    SYNC = "sync"
    ASYNC = "async"


class ModbusTable(str, Enum):
    """Modbus memory tables addressable by the master."""

    COIL = "coil"
    DISCRETE_INPUT = "discrete_input"
    INPUT_REGISTER = "input_register"
    HOLDING_REGISTER = "holding_register"

    @property
    def read_function(self) -> FunctionCode:
        return _TABLE_READ_FUNCTION[self]

    @property
    def writable(self) -> bool:
        return self in (ModbusTable.COIL, ModbusTable.HOLDING_REGISTER)


_TABLE_READ_FUNCTION = {
    ModbusTable.COIL: FunctionCode.READ_COILS,
    ModbusTable.DISCRETE_INPUT: FunctionCode.READ_DISCRETE_INPUTS,
    ModbusTable.INPUT_REGISTER: FunctionCode.READ_INPUT_REGISTERS,
    ModbusTable.HOLDING_REGISTER: FunctionCode.READ_HOLDING_REGISTERS,
}


def _check_u16(name: str, value: int) -> None:
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{name} must be in 0..65535, got {value}")


@dataclass(frozen=True)
class Operation:
    """
    One logical request. Build instances with the classmethod constructors;
    payload holds the raw data bytes exactly as they go on the wire.
    """

    function: FunctionCode
    transaction_id: int
    unit_id: int
    address: int
    quantity: int = 0
    payload: bytes = b""
    write_address: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "function", FunctionCode(self.function))
        _check_u16("transaction_id", self.transaction_id)
        _check_u16("address", self.address)
        _check_u16("write_address", self.write_address)
        _check_u16("quantity", self.quantity)
        if not 0 <= self.unit_id <= 0xFF:
            raise ValueError(f"unit_id must be in 0..255, got {self.unit_id}")
        if self.function.is_read or self.function == FunctionCode.READ_WRITE_MULTIPLE_REGISTERS:
            if self.quantity < 1:
                raise ValueError(f"quantity must be >= 1, got {self.quantity}")
        if self.function in (FunctionCode.WRITE_SINGLE_COIL, FunctionCode.WRITE_SINGLE_REGISTER):
            if len(self.payload) != 2:
                raise ValueError(f"single writes carry exactly 2 payload bytes, got {len(self.payload)}")
        if self.function == FunctionCode.WRITE_MULTIPLE_COILS and self.quantity < 1:
            raise ValueError(f"quantity must be >= 1, got {self.quantity}")
        if self.function in (FunctionCode.WRITE_MULTIPLE_REGISTERS, FunctionCode.READ_WRITE_MULTIPLE_REGISTERS):
            if not self.payload:
                raise ValueError("register writes need at least one payload byte")
        # byte count is a single byte; register payloads are padded to even length
        if len(self.payload) + len(self.payload) % 2 > 0xFF:
            raise ValueError(f"payload too long for a byte count: {len(self.payload)} bytes")

    @classmethod
    def read_coils(cls, transaction_id: int, unit_id: int, address: int, quantity: int) -> "Operation":
        return cls(FunctionCode.READ_COILS, transaction_id, unit_id, address, quantity)

    @classmethod
    def read_discrete_inputs(cls, transaction_id: int, unit_id: int, address: int, quantity: int) -> "Operation":
        return cls(FunctionCode.READ_DISCRETE_INPUTS, transaction_id, unit_id, address, quantity)

    @classmethod
    def read_holding_registers(cls, transaction_id: int, unit_id: int, address: int, quantity: int) -> "Operation":
        return cls(FunctionCode.READ_HOLDING_REGISTERS, transaction_id, unit_id, address, quantity)

    @classmethod
    def read_input_registers(cls, transaction_id: int, unit_id: int, address: int, quantity: int) -> "Operation":
        return cls(FunctionCode.READ_INPUT_REGISTERS, transaction_id, unit_id, address, quantity)

    @classmethod
    def write_single_coil(cls, transaction_id: int, unit_id: int, address: int, on: bool) -> "Operation":
        payload = b"\xff\x00" if on else b"\x00\x00"
        return cls(FunctionCode.WRITE_SINGLE_COIL, transaction_id, unit_id, address, payload=payload)

    @classmethod
    def write_single_register(
        cls, transaction_id: int, unit_id: int, address: int, value: int | bytes
    ) -> "Operation":
        if isinstance(value, int):
            _check_u16("value", value)
            value = value.to_bytes(2, "big")
        return cls(FunctionCode.WRITE_SINGLE_REGISTER, transaction_id, unit_id, address, payload=bytes(value))

    @classmethod
    def write_multiple_coils(
        cls,
        transaction_id: int,
        unit_id: int,
        address: int,
        values: Sequence[bool] | bytes,
        quantity: int | None = None,
    ) -> "Operation":
        """
        values is either a sequence of bools (packed LSB first) or already packed bytes.
        quantity is the bit count; it defaults to len(values) for bools and 8 * len(values) for bytes.
        """
        if isinstance(values, (bytes, bytearray)):
            payload = bytes(values)
            bits = 8 * len(payload)
        else:
            payload = bits_to_bytes(values)
            bits = len(values)
        return cls(
            FunctionCode.WRITE_MULTIPLE_COILS,
            transaction_id,
            unit_id,
            address,
            quantity=bits if quantity is None else quantity,
            payload=payload,
        )

    @classmethod
    def write_multiple_registers(
        cls, transaction_id: int, unit_id: int, address: int, values: Sequence[int] | bytes
    ) -> "Operation":
        payload = _register_payload(values)
        return cls(
            FunctionCode.WRITE_MULTIPLE_REGISTERS,
            transaction_id,
            unit_id,
            address,
            quantity=(len(payload) + 1) // 2,
            payload=payload,
        )

    @classmethod
    def read_write_multiple_registers(
        cls,
        transaction_id: int,
        unit_id: int,
        read_address: int,
        read_quantity: int,
        write_address: int,
        values: Sequence[int] | bytes,
    ) -> "Operation":
        return cls(
            FunctionCode.READ_WRITE_MULTIPLE_REGISTERS,
            transaction_id,
            unit_id,
            read_address,
            quantity=read_quantity,
            payload=_register_payload(values),
            write_address=write_address,
        )


def _register_payload(values: Sequence[int] | bytes) -> bytes:
    if isinstance(values, (bytes, bytearray)):
        return bytes(values)
    return words_to_bytes(values)


@dataclass(frozen=True)
class DataResponse:
    """A successful reply: payload is the byte-counted data or the 2-byte write echo."""

    transaction_id: int
    unit_id: int
    function: int
    payload: bytes = field(repr=False)

    @property
    def ok(self) -> bool:
        return True

    def registers(self) -> list[int]:
        return bytes_to_words(self.payload)

    def bits(self, count: int | None = None) -> list[bool]:
        return bytes_to_bits(self.payload, count)

    def raise_for_fault(self) -> "DataResponse":
        return self


@dataclass(frozen=True)
class FaultResponse:
    """A terminal fault: device exception code or one of the local transport codes."""

    transaction_id: int
    unit_id: int
    function: int
    code: int

    @property
    def ok(self) -> bool:
        return False

    @property
    def fault(self) -> FaultCode | None:
        try:
            return FaultCode(self.code)
        except ValueError:
            return None

    @property
    def description(self) -> str:
        fault = self.fault
        return fault.description if fault is not None else f"unknown fault {self.code}"

    @property
    def is_device_fault(self) -> bool:
        return self.code < FaultCode.SEND_FAILURE

    @property
    def is_connection_lost(self) -> bool:
        return self.code == FaultCode.CONNECTION_LOST

    def raise_for_fault(self) -> "DataResponse":
        from .errors import ModbusIOError

        raise ModbusIOError(
            f"{self.description} (code {self.code}) for function {self.function}",
            transaction_id=self.transaction_id,
            unit_id=self.unit_id,
            function=self.function,
            fault=self,
        )


Response = Union[DataResponse, FaultResponse]


@dataclass(frozen=True)
class Address:
    """Parsed memory address: table plus 0-based offset; width is 1 for bits, 16 for registers."""

    table: ModbusTable
    offset: int
    width: int = 16

    def __post_init__(self) -> None:
        if not 0 <= self.offset <= 0xFFFF:
            raise ValueError(f"offset must be in 0..65535, got {self.offset}")
        if self.width not in (1, 16):
            raise ValueError(f"width must be 1 or 16, got {self.width}")
