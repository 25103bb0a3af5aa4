"""Byte/value conversions used for register and coil payloads (big-endian words, LSB-first bits)."""

from typing import Iterable, Sequence


def int_to_bytes(value: int) -> bytes:
    """Unsigned 16-bit value -> two big-endian bytes."""
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"Unsigned 16-bit integer out of range: {value}")
    return bytes(((value >> 8) & 0xFF, value & 0xFF))


def bytes_to_int(data: bytes) -> int:
    """Two big-endian bytes -> unsigned 16-bit value. A single byte reads as its own value."""
    if len(data) == 1:
        return data[0]
    if len(data) != 2:
        raise ValueError(f"expected 1 or 2 bytes, got {len(data)}")
    return (data[0] << 8) | data[1]


def bool_to_bytes(value: bool) -> bytes:
    """Register on/off encoding: 00 01 for True, 00 00 for False."""
    return b"\x00\x01" if value else b"\x00\x00"


def words_to_bytes(values: Iterable[int]) -> bytes:
    return b"".join(int_to_bytes(v) for v in values)


def bytes_to_words(data: bytes) -> list[int]:
    """
    Split a buffer into big-endian 16-bit words.

    A trailing odd byte is kept as a standalone value rather than dropped, so
    a one-byte buffer yields [data[0]].
    """
    words = [(data[i] << 8) | data[i + 1] for i in range(0, len(data) - 1, 2)]
    if len(data) % 2:
        words.append(data[-1])
    return words


def bits_to_bytes(bits: Sequence[bool]) -> bytes:
    """Pack coil states LSB first, 8 per byte; the last byte is zero-filled."""
    out = bytearray((len(bits) + 7) // 8)
    for i, bit in enumerate(bits):
        if bit:
            out[i // 8] |= 1 << (i % 8)
    return bytes(out)


def bytes_to_bits(data: bytes, count: int | None = None) -> list[bool]:
    """Unpack LSB-first coil bytes; count trims the zero-fill of the last byte."""
    bits = [bool(byte & (1 << i)) for byte in data for i in range(8)]
    return bits if count is None else bits[:count]


def to_signed(value: int) -> int:
    """Convert unsigned 16-bit to signed."""
    if value > 32767:
        return value - 65536
    return value


def from_signed(value: int) -> int:
    """Convert signed 16-bit to unsigned."""
    if value < 0:
        return value + 65536
    return value


def hexdump(data: bytes) -> str:
    return data.hex(" ")
