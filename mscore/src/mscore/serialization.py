"""
Bitcoin wire encoding helpers: varints, length-prefixed strings and a cursor
over a byte buffer.
"""

from __future__ import annotations


class ByteReaderError(ValueError):
    pass


def encode_varint(value: int) -> bytes:
    if value < 0:
        raise ValueError("varint cannot be negative")
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    if offset >= len(data):
        raise ByteReaderError("varint past end of buffer")
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    width = {0xFD: 2, 0xFE: 4, 0xFF: 8}[first]
    if offset + width > len(data):
        raise ByteReaderError("truncated varint")
    return int.from_bytes(data[offset : offset + width], "little"), offset + width


def encode_bytes(data: bytes) -> bytes:
    """Length-prefix a byte string with a varint."""
    return encode_varint(len(data)) + data


class ByteReader:
    """Sequential reader that raises ByteReaderError instead of short-reading."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    def read(self, n: int) -> bytes:
        if n < 0 or self.offset + n > len(self.data):
            raise ByteReaderError(
                f"need {n} bytes at offset {self.offset}, buffer is {len(self.data)}"
            )
        chunk = self.data[self.offset : self.offset + n]
        self.offset += n
        return chunk

    def read_varint(self) -> int:
        value, self.offset = read_varint(self.data, self.offset)
        return value

    def read_bytes(self) -> bytes:
        return self.read(self.read_varint())

    def read_uint32(self) -> int:
        return int.from_bytes(self.read(4), "little")

    def read_uint64(self) -> int:
        return int.from_bytes(self.read(8), "little")

    def peek(self, n: int = 1) -> bytes:
        return self.data[self.offset : self.offset + n]

    def at_end(self) -> bool:
        return self.offset >= len(self.data)
