"""Tests for textual address parsing and normalization."""

import pytest

from mbtcp_master import normalize_address, parse_address
from mbtcp_master.errors import InvalidAddressError
from mbtcp_master.types import Address, ModbusTable


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("hr100", "HR100"),
        ("HR100", "HR100"),
        ("HR:100", "HR100"),
        ("hr 7", "HR7"),
        ("ir0", "IR0"),
        ("DI:0x10", "DI16"),
        ("c5", "CO5"),
        ("CO5", "CO5"),
        ("coil:5", "CO5"),
        ("HR007", "HR7"),
        ("400001", "HR0"),
        ("400101", "HR100"),
        ("300001", "IR0"),
        ("100011", "DI10"),
        ("1", "CO0"),
        ("00010", "CO9"),
        ("  hr1  ", "HR1"),
    ],
)
def test_normalize_address_canonical(raw: str, expected: str) -> None:
    assert normalize_address(raw) == expected


def test_parse_address_fields() -> None:
    assert parse_address("HR100") == Address(ModbusTable.HOLDING_REGISTER, 100, 16)
    assert parse_address("coil:3") == Address(ModbusTable.COIL, 3, 1)
    assert parse_address("100001") == Address(ModbusTable.DISCRETE_INPUT, 0, 1)


@pytest.mark.parametrize(
    "malformed",
    [
        "",
        "   ",
        "HR",
        "XY10",
        "HR-1",
        "HR65536",
        "HR0x1FFFF",
        "0",
        "200001",
        "500001",
        "1000000",
        "HR1.5",
    ],
)
def test_parse_address_invalid(malformed: str) -> None:
    with pytest.raises(InvalidAddressError):
        parse_address(malformed)


def test_invalid_address_error_carries_input() -> None:
    with pytest.raises(InvalidAddressError) as exc_info:
        parse_address("nope")
    assert exc_info.value.address == "nope"
    assert "Malformed" in str(exc_info.value)
