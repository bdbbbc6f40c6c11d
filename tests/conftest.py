"""Shared fixtures: an in-memory transport scripted with replies."""

import struct
import threading
import time
from typing import Callable

import pytest

from pyfield_modbus.framing import crc16
from pyfield_modbus.transport import Transport


def tcp_reply(pdu: bytes, device_id: int = 1) -> Callable[[bytes], bytes]:
    """Reply builder that echoes the transaction id of the request it answers."""

    def build(request: bytes) -> bytes:
        transaction_id = struct.unpack(">H", request[0:2])[0]
        return struct.pack(">HHHB", transaction_id, 0, len(pdu) + 1, device_id) + pdu

    return build


def rtu_frame(device_id: int, pdu: bytes) -> bytes:
    adu = bytes([device_id]) + pdu
    return adu + crc16(adu).to_bytes(2, "little")


class FakeLink:
    """
    State shared by every FakeTransport a factory creates, so it survives reconnects.

    replies items are bytes, a callable taking the last written frame, or an
    exception instance raised from read(). auto_reply answers every write.
    """

    def __init__(self) -> None:
        self.replies: list = []
        self.auto_reply: Callable[[bytes], bytes] | None = None
        self.written: list[bytes] = []
        self.open_errors: list[BaseException] = []
        self.refuse = False
        self.open_timeouts: list = []
        self.opens = 0
        self.discards = 0
        self.chunk: int | None = None
        self.overlaps = 0
        self.transports: list["FakeTransport"] = []
        self.lock = threading.Lock()

    def factory(self, settings) -> "FakeTransport":
        transport = FakeTransport(self, settings)
        self.transports.append(transport)
        return transport


class FakeTransport(Transport):
    def __init__(self, link: FakeLink, settings) -> None:
        self.link = link
        self.settings = settings
        self._open = False
        self.closed = False
        self._pending = bytearray()
        self._last = b""

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self, timeout: float | None = None) -> None:
        link = self.link
        link.opens += 1
        link.open_timeouts.append(timeout)
        if link.open_errors:
            raise link.open_errors.pop(0)
        if link.refuse:
            raise ConnectionRefusedError("refused")
        self._open = True

    def close(self) -> None:
        self._open = False
        self.closed = True

    def write(self, data: bytes) -> None:
        if not self._open:
            raise ConnectionError("not open")
        link = self.link
        with link.lock:
            if self._pending:
                link.overlaps += 1
            link.written.append(bytes(data))
        self._last = bytes(data)
        if link.auto_reply is not None:
            time.sleep(0.001)
            self._pending += link.auto_reply(self._last)

    def read(self, size: int) -> bytes:
        if not self._open:
            raise ConnectionError("not open")
        if not self._pending:
            if not self.link.replies:
                raise TimeoutError("no reply")
            item = self.link.replies.pop(0)
            if isinstance(item, BaseException):
                raise item
            if callable(item):
                item = item(self._last)
            self._pending += item
        n = size if self.link.chunk is None else min(size, self.link.chunk)
        data = bytes(self._pending[:n])
        del self._pending[:n]
        return data

    def discard_input(self) -> None:
        self.link.discards += 1
        self._pending.clear()


@pytest.fixture
def link() -> FakeLink:
    return FakeLink()
