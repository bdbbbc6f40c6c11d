"""Physical transports: a TCP socket or a pyserial port behind one read/write contract."""

import errno
import logging
import os
import select
import socket
import threading
import time
from abc import ABC, abstractmethod

import serial

from .config import SerialSettings, TcpSettings

logger = logging.getLogger(__name__)

# granularity at which a pending connect notices cancel()
_CONNECT_POLL_S = 0.1

_CONNECT_IN_PROGRESS = {
    errno.EINPROGRESS,
    errno.EWOULDBLOCK,
    errno.EALREADY,
    getattr(errno, "WSAEWOULDBLOCK", errno.EWOULDBLOCK),
}


class Transport(ABC):
    """
    A single-use handle to the wire. Opened once, closed once; reconnecting
    creates a new instance.

    read() returns at least one byte or raises: TimeoutError when nothing
    arrives within the receive timeout, another OSError when the link drops.
    """

    @abstractmethod
    def open(self, timeout: float | None = None) -> None:
        """Open the handle, waiting at most timeout seconds when the medium supports it."""

    @abstractmethod
    def close(self) -> None:
        """Release the handle. Safe to call more than once."""

    @property
    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    def write(self, data: bytes) -> None: ...

    @abstractmethod
    def read(self, size: int) -> bytes: ...

    def cancel(self) -> None:
        """Unblock a pending open() or read() from another thread."""
        self.close()

    def discard_input(self) -> None:
        """Drop bytes already received but not read."""

    def read_exact(self, size: int) -> bytes:
        """Read exactly size bytes, looping over partial reads."""
        buf = bytearray()
        while len(buf) < size:
            buf += self.read(size - len(buf))
        return bytes(buf)


class TcpTransport(Transport):
    """Modbus TCP socket."""

    def __init__(self, settings: TcpSettings) -> None:
        self._settings = settings
        self._sock: socket.socket | None = None
        self._cancelled = threading.Event()

    def __repr__(self) -> str:
        return f"TcpTransport({self._settings.host}:{self._settings.port})"

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self, timeout: float | None = None) -> None:
        host, port = self._settings.host, self._settings.port
        last_error: OSError | None = None
        for family, type_, proto, _name, sockaddr in socket.getaddrinfo(host, port, type=socket.SOCK_STREAM):
            sock = socket.socket(family, type_, proto)
            try:
                self._connect(sock, sockaddr, timeout)
            except OSError as e:
                sock.close()
                last_error = e
                continue
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.settimeout(self._settings.receive_timeout)
            self._sock = sock
            logger.debug("Connected to %s:%d", host, port)
            return
        raise last_error or OSError(f"No address found for {host}:{port}")

    def _connect(self, sock: socket.socket, sockaddr: tuple, timeout: float | None) -> None:
        sock.setblocking(False)
        err = sock.connect_ex(sockaddr)
        if err == 0:
            return
        if err not in _CONNECT_IN_PROGRESS:
            raise OSError(err, os.strerror(err))
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._cancelled.is_set():
                raise ConnectionAbortedError("Connect cancelled")
            wait = _CONNECT_POLL_S
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"Connect to {self._settings.host}:{self._settings.port} timed out after {timeout}s")
                wait = min(wait, remaining)
            _, writable, failed = select.select([], [sock], [sock], wait)
            if writable or failed:
                err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
                if err:
                    raise OSError(err, os.strerror(err))
                return

    def _require(self) -> socket.socket:
        if self._sock is None:
            raise ConnectionError("Transport is not open")
        return self._sock

    def write(self, data: bytes) -> None:
        sock = self._require()
        sock.settimeout(self._settings.send_timeout)
        try:
            sock.sendall(data)
        except socket.timeout as e:
            raise TimeoutError("Send timed out") from e

    def read(self, size: int) -> bytes:
        sock = self._require()
        sock.settimeout(self._settings.receive_timeout)
        try:
            data = sock.recv(size)
        except socket.timeout as e:
            raise TimeoutError("Receive timed out") from e
        if not data:
            raise ConnectionResetError("Connection closed by peer")
        return data

    def cancel(self) -> None:
        self._cancelled.set()
        sock = self._sock
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # already disconnected

    def close(self) -> None:
        self.cancel()
        sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()


class SerialTransport(Transport):
    """Modbus RTU serial port (pyserial)."""

    def __init__(self, settings: SerialSettings) -> None:
        self._settings = settings
        self._serial: serial.Serial | None = None

    def __repr__(self) -> str:
        return f"SerialTransport({self._settings.port})"

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self, timeout: float | None = None) -> None:
        # serial ports open synchronously; timeout only applies to sockets
        self._serial = serial.Serial(port=self._settings.port, **self._settings.serial_kwargs())
        logger.debug("Opened serial port %s at %d baud", self._settings.port, self._settings.baudrate)

    def _require(self) -> serial.Serial:
        if self._serial is None or not self._serial.is_open:
            raise ConnectionError("Serial port is not open")
        return self._serial

    def write(self, data: bytes) -> None:
        port = self._require()
        try:
            port.write(data)
            port.flush()
        except serial.SerialTimeoutException as e:
            raise TimeoutError("Serial write timed out") from e

    def read(self, size: int) -> bytes:
        data = self._require().read(size)
        if not data:
            raise TimeoutError("Serial read timed out")
        return data

    def discard_input(self) -> None:
        if self.is_open:
            self._serial.reset_input_buffer()

    def cancel(self) -> None:
        port = self._serial
        if port is not None and port.is_open and hasattr(port, "cancel_read"):
            port.cancel_read()

    def close(self) -> None:
        port, self._serial = self._serial, None
        if port is not None:
            if port.is_open and hasattr(port, "cancel_read"):
                port.cancel_read()
            port.close()
