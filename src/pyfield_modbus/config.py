"""Immutable connection settings; a changed value applies on the next (re)connect."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator

import serial

from .consts import DEFAULT_TCP_PORT
from .errors import InvalidArgumentError


class Handshake(str, Enum):
    """Serial flow control."""

    NONE = "none"
    XON_XOFF = "xonxoff"
    RTS_CTS = "rtscts"
    DSR_DTR = "dsrdtr"


_PARITIES = {
    "N": serial.PARITY_NONE,
    "E": serial.PARITY_EVEN,
    "O": serial.PARITY_ODD,
    "M": serial.PARITY_MARK,
    "S": serial.PARITY_SPACE,
}
_STOPBITS = {
    1: serial.STOPBITS_ONE,
    1.5: serial.STOPBITS_ONE_POINT_FIVE,
    2: serial.STOPBITS_TWO,
}
_BYTESIZES = (serial.FIVEBITS, serial.SIXBITS, serial.SEVENBITS, serial.EIGHTBITS)


def _check_positive(name: str, value: float | None, allow_none: bool = False) -> None:
    if value is None and allow_none:
        return
    if value is None or value <= 0:
        raise InvalidArgumentError(name, f"{name} must be > 0, got {value!r}")


@dataclass(frozen=True)
class ClientSettings:
    """Timeouts common to both transports, in seconds. reconnect_timeout None means retry forever."""

    send_timeout: float = 1.0
    receive_timeout: float = 1.0
    reconnect_timeout: float | None = None
    retry_interval: float = 1.0

    def __post_init__(self) -> None:
        _check_positive("send_timeout", self.send_timeout)
        _check_positive("receive_timeout", self.receive_timeout)
        _check_positive("reconnect_timeout", self.reconnect_timeout, allow_none=True)
        if self.retry_interval < 0:
            raise InvalidArgumentError("retry_interval", f"retry_interval must be >= 0, got {self.retry_interval}")

    def connect_timeouts(self) -> Iterator[float | None]:
        """Per-attempt connect timeouts; None means the open call has no timeout."""
        while True:
            yield None


@dataclass(frozen=True)
class TcpSettings(ClientSettings):
    """Modbus TCP endpoint and connect backoff (floor, step and ceiling of the per-attempt timeout)."""

    host: str = ""
    port: int = DEFAULT_TCP_PORT
    connect_timeout_floor: float = 4.0
    connect_timeout_step: float = 2.0
    connect_timeout_ceiling: float = 20.0

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.host or not self.host.strip():
            raise InvalidArgumentError("host", "host must not be empty")
        if not 1 <= self.port <= 65535:
            raise InvalidArgumentError("port", f"port must be within 1..65535, got {self.port}")
        _check_positive("connect_timeout_floor", self.connect_timeout_floor)
        if self.connect_timeout_ceiling < self.connect_timeout_floor:
            raise InvalidArgumentError("connect_timeout_ceiling", "connect_timeout_ceiling must be >= connect_timeout_floor")

    def connect_timeouts(self) -> Iterator[float | None]:
        timeout = self.connect_timeout_floor
        while True:
            yield timeout
            timeout = min(timeout + self.connect_timeout_step, self.connect_timeout_ceiling)


@dataclass(frozen=True)
class SerialSettings(ClientSettings):
    """Serial port parameters for Modbus RTU."""

    port: str = ""
    baudrate: int = 38400
    bytesize: int = 8
    parity: str = "N"
    stopbits: float = 1
    handshake: Handshake = Handshake.NONE

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.port or not self.port.strip():
            raise InvalidArgumentError("port", "serial port name must not be empty")
        _check_positive("baudrate", self.baudrate)
        if self.bytesize not in _BYTESIZES:
            raise InvalidArgumentError("bytesize", f"bytesize must be one of {_BYTESIZES}, got {self.bytesize}")
        if self.parity.upper() not in _PARITIES:
            raise InvalidArgumentError("parity", f"parity must be one of {sorted(_PARITIES)}, got {self.parity!r}")
        if self.stopbits not in _STOPBITS:
            raise InvalidArgumentError("stopbits", f"stopbits must be one of {sorted(_STOPBITS)}, got {self.stopbits}")
        object.__setattr__(self, "parity", self.parity.upper())
        object.__setattr__(self, "handshake", Handshake(self.handshake))

    def serial_kwargs(self) -> dict:
        """Keyword arguments for serial.Serial."""
        return {
            "baudrate": self.baudrate,
            "bytesize": self.bytesize,
            "parity": _PARITIES[self.parity],
            "stopbits": _STOPBITS[self.stopbits],
            "xonxoff": self.handshake == Handshake.XON_XOFF,
            "rtscts": self.handshake == Handshake.RTS_CTS,
            "dsrdtr": self.handshake == Handshake.DSR_DTR,
            "timeout": self.receive_timeout,
            "write_timeout": self.send_timeout,
        }
