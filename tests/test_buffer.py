"""Tests for DataBuffer."""

import pytest

from pyfield_modbus.buffer import DataBuffer


class TestDataBuffer:
    """Byte and big-endian word access."""

    def test_sized_buffer_is_zeroed(self) -> None:
        buf = DataBuffer(4)
        assert len(buf) == 4
        assert bytes(buf) == b"\x00\x00\x00\x00"

    def test_words_are_big_endian(self) -> None:
        buf = DataBuffer(2)
        buf.set_u16_be(0, 0x1234)
        assert buf.get_byte(0) == 0x12
        assert buf.get_byte(1) == 0x34
        assert buf.get_u16_be(0) == 0x1234

    def test_from_bytes(self) -> None:
        buf = DataBuffer(b"\xab\xcd\xef")
        assert buf.get_u16_be(1) == 0xCDEF
        assert buf.get_range(0, 2) == b"\xab\xcd"

    def test_out_of_range_offsets(self) -> None:
        buf = DataBuffer(2)
        with pytest.raises(IndexError):
            buf.get_byte(2)
        with pytest.raises(IndexError):
            buf.get_u16_be(1)
        with pytest.raises(IndexError):
            buf.set_byte(-1, 0)
        with pytest.raises(IndexError):
            buf.get_range(1, 2)

    def test_value_ranges(self) -> None:
        buf = DataBuffer(2)
        with pytest.raises(ValueError):
            buf.set_byte(0, 256)
        with pytest.raises(ValueError):
            buf.set_u16_be(0, 0x10000)
        with pytest.raises(ValueError):
            DataBuffer(-1)

    def test_equality(self) -> None:
        assert DataBuffer(b"\x01\x02") == DataBuffer(b"\x01\x02")
        assert DataBuffer(b"\x01\x02") == b"\x01\x02"
        assert DataBuffer(b"\x01") != DataBuffer(b"\x02")

    def test_repr(self) -> None:
        assert repr(DataBuffer()) == "DataBuffer()"
        assert repr(DataBuffer(b"\xff\x00")) == "DataBuffer('ff 00')"
