"""DataBuffer: fixed-size payload container with big-endian word access."""

import struct

_U16 = struct.Struct(">H")


class DataBuffer:
    """
    Fixed-length byte container carried inside requests and responses.
    Words are always stored big-endian (network order), whatever the host order.
    """

    __slots__ = ("_buf",)

    def __init__(self, source: int | bytes | bytearray | memoryview = 0) -> None:
        if isinstance(source, int):
            if source < 0:
                raise ValueError(f"size must be >= 0, got {source}")
            self._buf = bytearray(source)
        else:
            self._buf = bytearray(source)

    def _check(self, index: int, size: int = 1) -> None:
        if index < 0 or size < 0 or index + size > len(self._buf):
            raise IndexError(f"offset {index} (+{size}) out of range for buffer of length {len(self._buf)}")

    def get_byte(self, index: int) -> int:
        self._check(index)
        return self._buf[index]

    def set_byte(self, index: int, value: int) -> None:
        self._check(index)
        if not 0 <= value <= 0xFF:
            raise ValueError(f"byte value must be within 0..255, got {value}")
        self._buf[index] = value

    def get_u16_be(self, index: int) -> int:
        self._check(index, 2)
        return _U16.unpack_from(self._buf, index)[0]

    def set_u16_be(self, index: int, value: int) -> None:
        self._check(index, 2)
        if not 0 <= value <= 0xFFFF:
            raise ValueError(f"word value must be within 0..65535, got {value}")
        _U16.pack_into(self._buf, index, value)

    def get_range(self, index: int, length: int) -> bytes:
        self._check(index, length)
        return bytes(self._buf[index : index + length])

    def __len__(self) -> int:
        return len(self._buf)

    def __bytes__(self) -> bytes:
        return bytes(self._buf)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DataBuffer):
            return self._buf == other._buf
        if isinstance(other, (bytes, bytearray)):
            return self._buf == other
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"DataBuffer({self._buf.hex(' ')!r})" if self._buf else "DataBuffer()"
