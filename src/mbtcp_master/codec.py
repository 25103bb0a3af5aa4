"""
Modbus/TCP codec: Operation -> ADU bytes and ADU bytes -> DataResponse/FaultResponse.

Pure functions with no I/O and no state. Every ADU starts with the 7-byte MBAP
header (transaction id, protocol id 0, remaining length, unit id); the
remaining length always counts the unit id plus the PDU.
"""

import struct
from typing import NamedTuple

from .convert import (
    bits_to_bytes,
    bool_to_bytes,
    bytes_to_bits,
    bytes_to_int,
    bytes_to_words,
    hexdump,
    int_to_bytes,
    words_to_bytes,
)
from .errors import MalformedADUError
from .types import DataResponse, FaultResponse, FunctionCode, Operation, Response

__all__ = [
    "HEADER_SIZE",
    "MBAPHeader",
    "bits_to_bytes",
    "bool_to_bytes",
    "build_adu",
    "bytes_to_bits",
    "bytes_to_int",
    "bytes_to_words",
    "decode",
    "decode_request",
    "encode",
    "frame_length",
    "hexdump",
    "int_to_bytes",
    "parse_header",
    "split_frame",
    "words_to_bytes",
]

HEADER_SIZE = 7
PROTOCOL_ID = 0
EXCEPTION_OFFSET = 0x80
COIL_ON = b"\xff\x00"
COIL_OFF = b"\x00\x00"
# 260-byte ADU maximum: 6 header bytes + remaining length
MAX_REMAINING_LENGTH = 254
MIN_REMAINING_LENGTH = 2

_MBAP = struct.Struct(">HHHB")


class MBAPHeader(NamedTuple):
    transaction_id: int
    protocol_id: int
    length: int
    unit_id: int


def build_adu(transaction_id: int, unit_id: int, pdu: bytes) -> bytes:
    """Prefix a PDU with its MBAP header."""
    return _MBAP.pack(transaction_id, PROTOCOL_ID, 1 + len(pdu), unit_id) + pdu


def _pad_even(payload: bytes) -> bytes:
    # odd register payloads get an explicit zero byte so byte count matches the bytes sent
    return payload + b"\x00" if len(payload) % 2 else payload


def encode_read(transaction_id: int, unit_id: int, function: int, address: int, quantity: int) -> bytes:
    """Read coils/discrete inputs/holding registers/input registers: 12-byte ADU."""
    return build_adu(transaction_id, unit_id, struct.pack(">BHH", function, address, quantity))


def encode_write_single(transaction_id: int, unit_id: int, function: int, address: int, value: bytes) -> bytes:
    """Write single coil/register: address followed by the 2 value bytes, no count fields."""
    if len(value) != 2:
        raise ValueError(f"single write value must be 2 bytes, got {len(value)}")
    return build_adu(transaction_id, unit_id, struct.pack(">BH", function, address) + value)


def encode_write_multiple_coils(
    transaction_id: int, unit_id: int, address: int, quantity: int, payload: bytes
) -> bytes:
    pdu = struct.pack(">BHHB", FunctionCode.WRITE_MULTIPLE_COILS, address, quantity, len(payload)) + payload
    return build_adu(transaction_id, unit_id, pdu)


def encode_write_multiple_registers(transaction_id: int, unit_id: int, address: int, payload: bytes) -> bytes:
    data = _pad_even(payload)
    pdu = struct.pack(">BHHB", FunctionCode.WRITE_MULTIPLE_REGISTERS, address, len(data) // 2, len(data)) + data
    return build_adu(transaction_id, unit_id, pdu)


def encode_read_write_multiple_registers(
    transaction_id: int,
    unit_id: int,
    read_address: int,
    read_quantity: int,
    write_address: int,
    payload: bytes,
) -> bytes:
    data = _pad_even(payload)
    pdu = (
        struct.pack(
            ">BHHHHB",
            FunctionCode.READ_WRITE_MULTIPLE_REGISTERS,
            read_address,
            read_quantity,
            write_address,
            len(data) // 2,
            len(data),
        )
        + data
    )
    return build_adu(transaction_id, unit_id, pdu)


def encode(operation: Operation) -> bytes:
    """Encode an Operation into its request ADU."""
    op = operation
    fn = op.function
    if fn.is_read:
        return encode_read(op.transaction_id, op.unit_id, fn, op.address, op.quantity)
    if fn in (FunctionCode.WRITE_SINGLE_COIL, FunctionCode.WRITE_SINGLE_REGISTER):
        return encode_write_single(op.transaction_id, op.unit_id, fn, op.address, op.payload)
    if fn == FunctionCode.WRITE_MULTIPLE_COILS:
        return encode_write_multiple_coils(op.transaction_id, op.unit_id, op.address, op.quantity, op.payload)
    if fn == FunctionCode.WRITE_MULTIPLE_REGISTERS:
        return encode_write_multiple_registers(op.transaction_id, op.unit_id, op.address, op.payload)
    if fn == FunctionCode.READ_WRITE_MULTIPLE_REGISTERS:
        return encode_read_write_multiple_registers(
            op.transaction_id, op.unit_id, op.address, op.quantity, op.write_address, op.payload
        )
    raise ValueError(f"Unsupported function: {fn!r}")


def parse_header(data: bytes) -> MBAPHeader:
    if len(data) < HEADER_SIZE:
        raise MalformedADUError(f"ADU shorter than header: {len(data)} bytes")
    return MBAPHeader(*_MBAP.unpack_from(data))


def frame_length(header: MBAPHeader) -> int:
    """Total ADU size announced by a header; rejects headers a stream cannot resync from."""
    if header.protocol_id != PROTOCOL_ID:
        raise MalformedADUError(f"protocol id must be 0, got {header.protocol_id}")
    if not MIN_REMAINING_LENGTH <= header.length <= MAX_REMAINING_LENGTH:
        raise MalformedADUError(f"remaining length out of range: {header.length}")
    return HEADER_SIZE - 1 + header.length


def split_frame(buffer: bytearray) -> bytes | None:
    """
    Pop one complete ADU off the front of a stream buffer.

    Returns None when the buffer does not yet hold a full ADU; the buffer is
    left untouched in that case.
    """
    if len(buffer) < HEADER_SIZE:
        return None
    total = frame_length(parse_header(buffer))
    if len(buffer) < total:
        return None
    frame = bytes(buffer[:total])
    del buffer[:total]
    return frame


def _is_write_echo(function: int) -> bool:
    try:
        return FunctionCode(function).is_write
    except ValueError:
        return False


def decode(adu: bytes) -> Response:
    """
    Decode a response ADU.

    Function codes above 0x80 are device faults: the byte after the function
    code is the fault code and the reported function is the request's.
    Write-class replies carry the 2-byte echo at offsets 10..11 (value for
    single writes, quantity for multiple writes). Everything else is a byte
    count followed by that many payload bytes. The remaining-length field is
    not checked here.
    """
    if len(adu) < HEADER_SIZE + 2:
        raise MalformedADUError(f"ADU too short to decode: {len(adu)} bytes")
    transaction_id, _protocol, _length, unit_id = _MBAP.unpack_from(adu)
    function = adu[7]

    if function > EXCEPTION_OFFSET:
        return FaultResponse(transaction_id, unit_id, function - EXCEPTION_OFFSET, adu[8])

    if _is_write_echo(function):
        if len(adu) < 12:
            raise MalformedADUError(f"write response too short: {len(adu)} bytes")
        return DataResponse(transaction_id, unit_id, function, bytes(adu[10:12]))

    count = adu[8]
    if len(adu) < 9 + count:
        raise MalformedADUError(f"byte count {count} exceeds received data ({len(adu) - 9} bytes)")
    return DataResponse(transaction_id, unit_id, function, bytes(adu[9 : 9 + count]))


def decode_request(adu: bytes) -> Operation:
    """Parse a request ADU back into the Operation that produced it."""
    header = parse_header(adu)
    if len(adu) < HEADER_SIZE + 1:
        raise MalformedADUError("request has no function code")
    try:
        function = FunctionCode(adu[7])
    except ValueError:
        raise MalformedADUError(f"unsupported function code {adu[7]}") from None
    body = bytes(adu[8:])
    tid, unit = header.transaction_id, header.unit_id
    try:
        if function.is_read:
            address, quantity = struct.unpack_from(">HH", body)
            return Operation(function, tid, unit, address, quantity)
        if function in (FunctionCode.WRITE_SINGLE_COIL, FunctionCode.WRITE_SINGLE_REGISTER):
            (address,) = struct.unpack_from(">H", body)
            if len(body) < 4:
                raise MalformedADUError("single write request truncated")
            return Operation(function, tid, unit, address, payload=body[2:4])
        if function in (FunctionCode.WRITE_MULTIPLE_COILS, FunctionCode.WRITE_MULTIPLE_REGISTERS):
            address, quantity, count = struct.unpack_from(">HHB", body)
            return Operation(function, tid, unit, address, quantity, payload=_counted(body, 5, count))
        read_address, read_quantity, write_address, _write_quantity, count = struct.unpack_from(">HHHHB", body)
        return Operation(
            function,
            tid,
            unit,
            read_address,
            read_quantity,
            payload=_counted(body, 9, count),
            write_address=write_address,
        )
    except struct.error as e:
        raise MalformedADUError(f"truncated {function.name} request: {e}") from e


def _counted(body: bytes, start: int, count: int) -> bytes:
    if len(body) < start + count:
        raise MalformedADUError(f"byte count {count} exceeds request data")
    return body[start : start + count]
