"""Exceptions for pyfield-modbus: argument, transport, device and framing failures."""


class ModbusClientError(Exception):
    """Base exception for pyfield-modbus."""

    pass


class InvalidArgumentError(ModbusClientError, ValueError):
    """Raised before any I/O when a device id, address, count or value is out of range."""

    def __init__(self, name: str, message: str | None = None) -> None:
        self.name = name
        self._msg = message or f"Invalid argument: {name}"
        super().__init__(self._msg)


class ModbusIOError(ModbusClientError):
    """Raised when the transport fails (connection reset, port closed, timeout)."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class ConnectionFailedError(ModbusIOError):
    """Raised once reconnecting gave up; the client stays unusable afterwards."""

    def __init__(
        self,
        message: str | None = None,
        *,
        was_connected: bool = False,
        cause: BaseException | None = None,
    ) -> None:
        self.was_connected = was_connected
        if message is None:
            if was_connected:
                message = "Server connection lost, reconnect failed."
            else:
                message = "Could not connect to the server."
        super().__init__(message, cause=cause)


class ModbusDeviceError(ModbusClientError):
    """Raised when the device answers with an exception response."""

    def __init__(self, message: str, *, function: int | None = None, error_code: int | None = None) -> None:
        self.function = function
        self.error_code = error_code
        super().__init__(message)


class ProtocolError(ModbusClientError):
    """Raised when a reply violates the framing or does not belong to the request."""

    pass


class FrameChecksumError(ProtocolError):
    """Raised when the CRC of a serial frame does not match its content."""

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"CRC mismatch: expected 0x{expected:04X}, received 0x{received:04X}")


class ClientClosedError(ModbusClientError, RuntimeError):
    """Raised when a client is used after close()."""

    def __init__(self, name: str = "ModbusClient") -> None:
        super().__init__(f"{name} has been closed")
