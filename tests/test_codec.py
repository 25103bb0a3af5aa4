"""Tests for ADU encoding, response decoding and stream framing."""

import pytest

from mbtcp_master import codec
from mbtcp_master.errors import MalformedADUError
from mbtcp_master.types import DataResponse, FaultCode, FaultResponse, FunctionCode, Operation


def adu(hex_text: str) -> bytes:
    return bytes.fromhex(hex_text)


# ============================================================================
# Encoding
# ============================================================================


class TestEncode:
    """Exact request bytes per function code."""

    def test_read_holding_registers(self) -> None:
        op = Operation.read_holding_registers(1, 1, 0, 10)
        assert codec.encode(op) == adu("00 01 00 00 00 06 01 03 00 00 00 0A")

    def test_read_coils(self) -> None:
        op = Operation.read_coils(0x1234, 0x11, 0x13, 0x25)
        assert codec.encode(op) == adu("12 34 00 00 00 06 11 01 00 13 00 25")

    def test_read_discrete_inputs_and_input_registers(self) -> None:
        assert codec.encode(Operation.read_discrete_inputs(9, 2, 0xC4, 0x16)) == adu(
            "00 09 00 00 00 06 02 02 00 C4 00 16"
        )
        assert codec.encode(Operation.read_input_registers(9, 2, 8, 1)) == adu("00 09 00 00 00 06 02 04 00 08 00 01")

    def test_write_single_coil_on_off(self) -> None:
        assert codec.encode(Operation.write_single_coil(2, 1, 0xAC, True)) == adu(
            "00 02 00 00 00 06 01 05 00 AC FF 00"
        )
        assert codec.encode(Operation.write_single_coil(2, 1, 0xAC, False)) == adu(
            "00 02 00 00 00 06 01 05 00 AC 00 00"
        )

    def test_write_single_register(self) -> None:
        op = Operation.write_single_register(3, 1, 1, 3)
        assert codec.encode(op) == adu("00 03 00 00 00 06 01 06 00 01 00 03")

    def test_write_single_register_raw_bytes(self) -> None:
        op = Operation.write_single_register(3, 1, 1, b"\x12\x34")
        assert codec.encode(op)[-2:] == b"\x12\x34"

    def test_write_multiple_coils(self) -> None:
        bits = [True, False, True, True, False, False, True, True, True, False]
        op = Operation.write_multiple_coils(4, 1, 0x13, bits)
        assert op.quantity == 10
        assert codec.encode(op) == adu("00 04 00 00 00 09 01 0F 00 13 00 0A 02 CD 01")

    def test_write_multiple_registers(self) -> None:
        op = Operation.write_multiple_registers(5, 1, 1, [0x000A, 0x0102])
        assert codec.encode(op) == adu("00 05 00 00 00 0B 01 10 00 01 00 02 04 00 0A 01 02")

    def test_write_multiple_registers_odd_payload_is_zero_padded(self) -> None:
        op = Operation.write_multiple_registers(5, 1, 0, b"\x01\x02\x03")
        encoded = codec.encode(op)
        assert encoded == adu("00 05 00 00 00 0B 01 10 00 00 00 02 04 01 02 03 00")
        # byte count matches the bytes actually sent
        assert encoded[12] == len(encoded) - 13

    def test_read_write_multiple_registers(self) -> None:
        op = Operation.read_write_multiple_registers(6, 1, 3, 6, 14, [0x00FF, 0x00FF, 0x00FF])
        assert codec.encode(op) == adu(
            "00 06 00 00 00 11 01 17 00 03 00 06 00 0E 00 03 06 00 FF 00 FF 00 FF"
        )

    @pytest.mark.parametrize(
        "op",
        [
            Operation.read_coils(1, 1, 0, 1),
            Operation.write_single_coil(1, 1, 0, True),
            Operation.write_multiple_coils(1, 1, 0, [True] * 17),
            Operation.write_multiple_registers(1, 1, 0, list(range(20))),
            Operation.read_write_multiple_registers(1, 1, 0, 2, 0, [1]),
        ],
    )
    def test_remaining_length_counts_unit_id_and_pdu(self, op: Operation) -> None:
        encoded = codec.encode(op)
        header = codec.parse_header(encoded)
        assert header.protocol_id == 0
        assert header.length == len(encoded) - 6

    def test_build_adu(self) -> None:
        assert codec.build_adu(0xFFFF, 0xFF, b"\x03\x00") == adu("FF FF 00 00 00 03 FF 03 00")


class TestOperationValidation:
    """Operation rejects values that cannot be encoded."""

    def test_read_quantity_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="quantity"):
            Operation.read_holding_registers(1, 1, 0, 0)

    def test_transaction_id_range(self) -> None:
        with pytest.raises(ValueError, match="transaction_id"):
            Operation.read_coils(0x10000, 1, 0, 1)

    def test_unit_id_range(self) -> None:
        with pytest.raises(ValueError, match="unit_id"):
            Operation.read_coils(1, 256, 0, 1)

    def test_address_range(self) -> None:
        with pytest.raises(ValueError, match="address"):
            Operation.read_coils(1, 1, -1, 1)

    def test_single_register_value_range(self) -> None:
        with pytest.raises(ValueError):
            Operation.write_single_register(1, 1, 0, 70000)

    def test_empty_register_write(self) -> None:
        with pytest.raises(ValueError, match="payload"):
            Operation.write_multiple_registers(1, 1, 0, [])

    def test_function_is_coerced(self) -> None:
        op = Operation(3, 1, 1, 0, 1)
        assert op.function is FunctionCode.READ_HOLDING_REGISTERS


# ============================================================================
# Decoding
# ============================================================================


class TestDecode:
    """Response ADUs to DataResponse / FaultResponse."""

    def test_register_response(self) -> None:
        r = codec.decode(adu("00 01 00 00 00 07 01 03 04 00 0A 00 0B"))
        assert isinstance(r, DataResponse)
        assert (r.transaction_id, r.unit_id, r.function) == (1, 1, 3)
        assert r.payload == adu("00 0A 00 0B")
        assert r.registers() == [10, 11]

    def test_coil_response(self) -> None:
        r = codec.decode(adu("00 02 00 00 00 05 01 01 02 CD 01"))
        assert r.bits(10) == [True, False, True, True, False, False, True, True, True, False]

    def test_single_write_echo(self) -> None:
        r = codec.decode(adu("00 03 00 00 00 06 01 06 00 01 00 03"))
        assert isinstance(r, DataResponse)
        assert r.payload == b"\x00\x03"

    def test_multiple_write_echo_is_quantity(self) -> None:
        r = codec.decode(adu("00 05 00 00 00 06 01 10 00 01 00 02"))
        assert r.payload == b"\x00\x02"

    def test_device_fault(self) -> None:
        r = codec.decode(adu("00 07 00 00 00 03 01 83 02"))
        assert isinstance(r, FaultResponse)
        assert (r.transaction_id, r.unit_id, r.function, r.code) == (7, 1, 3, 2)
        assert r.fault is FaultCode.ILLEGAL_DATA_ADDRESS
        assert r.is_device_fault
        assert not r.ok

    def test_gateway_fault(self) -> None:
        r = codec.decode(adu("00 08 00 00 00 03 05 90 0A"))
        assert r.function == FunctionCode.WRITE_MULTIPLE_REGISTERS
        assert r.fault is FaultCode.GATEWAY_PATH_UNAVAILABLE

    def test_too_short(self) -> None:
        with pytest.raises(MalformedADUError):
            codec.decode(adu("00 01 00 00 00 02 01 03"))

    def test_byte_count_exceeds_data(self) -> None:
        with pytest.raises(MalformedADUError, match="byte count"):
            codec.decode(adu("00 01 00 00 00 05 01 03 04 00"))

    def test_truncated_write_echo(self) -> None:
        with pytest.raises(MalformedADUError):
            codec.decode(adu("00 01 00 00 00 04 01 06 00 01"))


class TestDecodeRequest:
    """Request ADUs back to Operations."""

    @pytest.mark.parametrize(
        "op",
        [
            Operation.read_coils(1, 1, 0x13, 0x25),
            Operation.read_discrete_inputs(2, 4, 0, 16),
            Operation.read_holding_registers(3, 1, 0, 10),
            Operation.read_input_registers(42, 3, 100, 4),
            Operation.write_single_coil(5, 1, 7, True),
            Operation.write_single_register(6, 1, 9, 0xBEEF),
            Operation.write_multiple_coils(7, 1, 19, [True, False, True, True, False, False, True, True, True, False]),
            Operation.write_multiple_registers(8, 1, 1, [1, 2, 3]),
            Operation.read_write_multiple_registers(9, 1, 3, 6, 14, [0xFF, 0xFF00, 0xFF]),
        ],
        ids=lambda op: op.function.name.lower(),
    )
    def test_round_trip(self, op: Operation) -> None:
        assert codec.decode_request(codec.encode(op)) == op

    def test_odd_register_payload_is_zero_padded(self) -> None:
        op = Operation.write_multiple_registers(7, 1, 20, b"\x01\x02\x03")
        encoded = codec.encode(op)
        assert encoded == adu("00 07 00 00 00 0B 01 10 00 14 00 02 04 01 02 03 00")
        decoded = codec.decode_request(encoded)
        assert decoded.quantity == 2
        assert decoded.payload == b"\x01\x02\x03\x00"

    def test_unsupported_function(self) -> None:
        with pytest.raises(MalformedADUError, match="unsupported"):
            codec.decode_request(adu("00 01 00 00 00 06 01 2B 00 00 00 01"))

    def test_truncated_request(self) -> None:
        with pytest.raises(MalformedADUError):
            codec.decode_request(adu("00 01 00 00 00 04 01 03 00 00"))


# ============================================================================
# Stream framing
# ============================================================================


class TestSplitFrame:
    """Popping whole ADUs off a stream buffer."""

    def test_partial_header(self) -> None:
        buf = bytearray(adu("00 01 00 00"))
        assert codec.split_frame(buf) is None
        assert buf == adu("00 01 00 00")

    def test_partial_body(self) -> None:
        buf = bytearray(adu("00 01 00 00 00 07 01 03 04 00"))
        assert codec.split_frame(buf) is None
        assert len(buf) == 10

    def test_two_frames_back_to_back(self) -> None:
        first = adu("00 01 00 00 00 05 01 03 02 00 01")
        second = adu("00 02 00 00 00 03 01 83 04")
        buf = bytearray(first + second + b"\x00")
        assert codec.split_frame(buf) == first
        assert codec.split_frame(buf) == second
        assert codec.split_frame(buf) is None
        assert buf == b"\x00"

    def test_bad_protocol_id(self) -> None:
        with pytest.raises(MalformedADUError, match="protocol id"):
            codec.split_frame(bytearray(adu("00 01 00 05 00 06 01 03 00 00 00 01")))

    def test_bad_length(self) -> None:
        with pytest.raises(MalformedADUError, match="remaining length"):
            codec.split_frame(bytearray(adu("00 01 00 00 00 00 01")))
