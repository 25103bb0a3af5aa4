"""Parse and normalize textual memory addresses (HR100, coil:5, 400101)."""

import re

from .errors import InvalidAddressError
from .types import Address, ModbusTable

# Prefix + optional ':' + decimal or 0x offset
_PREFIX_PATTERN = re.compile(
    r"^(CO|C|COIL|DI|IR|HR)\s*:?\s*(0x[0-9A-F]+|\d+)$",
    re.IGNORECASE,
)

# Classic 6-digit reference numbers (and 1-5 digit coil references)
_REFERENCE_PATTERN = re.compile(r"^\d{1,6}$")

_PREFIX_TABLE: dict[str, ModbusTable] = {
    "CO": ModbusTable.COIL,
    "C": ModbusTable.COIL,
    "COIL": ModbusTable.COIL,
    "DI": ModbusTable.DISCRETE_INPUT,
    "IR": ModbusTable.INPUT_REGISTER,
    "HR": ModbusTable.HOLDING_REGISTER,
}

TABLE_PREFIX: dict[ModbusTable, str] = {
    ModbusTable.COIL: "CO",
    ModbusTable.DISCRETE_INPUT: "DI",
    ModbusTable.INPUT_REGISTER: "IR",
    ModbusTable.HOLDING_REGISTER: "HR",
}


def _width(table: ModbusTable) -> int:
    return 1 if table in (ModbusTable.COIL, ModbusTable.DISCRETE_INPUT) else 16


def reference_to_table_offset(ref: int) -> tuple[ModbusTable, int]:
    """Convert a Modbus reference number to (table, 0-based offset)."""
    if 1 <= ref <= 99_999:
        return ModbusTable.COIL, ref - 1
    if 100_001 <= ref <= 199_999:
        return ModbusTable.DISCRETE_INPUT, ref - 100_001
    if 300_001 <= ref <= 399_999:
        return ModbusTable.INPUT_REGISTER, ref - 300_001
    if 400_001 <= ref <= 499_999:
        return ModbusTable.HOLDING_REGISTER, ref - 400_001
    raise ValueError(f"Invalid Modbus reference: {ref}")


def parse_address(raw: str) -> Address:
    """
    Parse a textual address into an Address.

    - Prefix forms: CO/C (coil), DI, IR, HR, optional ':' and a 0-based
      offset in decimal or 0x hex, case-insensitive (``hr100``, ``DI:0x10``).
    - Reference numbers: 1-99999 coils, 100001-199999 discrete inputs,
      300001-399999 input registers, 400001-499999 holding registers.

    Raises InvalidAddressError for malformed or out-of-range input.
    """
    s = raw.strip()
    if not s:
        raise InvalidAddressError(raw, "Address cannot be empty")

    m = _PREFIX_PATTERN.match(s)
    if m:
        table = _PREFIX_TABLE[m.group(1).upper()]
        digits = m.group(2)
        offset = int(digits[2:], 16) if digits[:2].lower() == "0x" else int(digits)
        if offset > 0xFFFF:
            raise InvalidAddressError(raw, f"Offset out of range 0-65535: {offset}")
        return Address(table, offset, _width(table))

    if _REFERENCE_PATTERN.match(s):
        try:
            table, offset = reference_to_table_offset(int(s))
        except ValueError as e:
            raise InvalidAddressError(raw, str(e)) from e
        if offset > 0xFFFF:
            raise InvalidAddressError(raw, f"Reference {s} is beyond offset 65535")
        return Address(table, offset, _width(table))

    raise InvalidAddressError(raw, f"Malformed address: {raw!r}")


def format_address(address: Address) -> str:
    return f"{TABLE_PREFIX[address.table]}{address.offset}"


def normalize_address(raw: str) -> str:
    """Normalize an address string to canonical form (``HR100``, ``CO5``)."""
    return format_address(parse_address(raw))
