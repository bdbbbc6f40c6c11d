"""Core data model: function codes, device identification enums, coils and registers."""

from dataclasses import dataclass
from enum import Enum, IntEnum

from .consts import MAX_ADDRESS, MIN_ADDRESS


class FunctionCode(IntEnum):
    """Modbus function codes supported by the clients."""

    READ_COILS = 0x01
    READ_DISCRETE_INPUTS = 0x02
    READ_HOLDING_REGISTERS = 0x03
    READ_INPUT_REGISTERS = 0x04
    WRITE_SINGLE_COIL = 0x05
    WRITE_SINGLE_REGISTER = 0x06
    WRITE_MULTIPLE_COILS = 0x0F
    WRITE_MULTIPLE_REGISTERS = 0x10
    ENCAPSULATED_INTERFACE = 0x2B


READ_FUNCTIONS = frozenset(
    {
        FunctionCode.READ_COILS,
        FunctionCode.READ_DISCRETE_INPUTS,
        FunctionCode.READ_HOLDING_REGISTERS,
        FunctionCode.READ_INPUT_REGISTERS,
    }
)

WRITE_FUNCTIONS = frozenset(
    {
        FunctionCode.WRITE_SINGLE_COIL,
        FunctionCode.WRITE_SINGLE_REGISTER,
        FunctionCode.WRITE_MULTIPLE_COILS,
        FunctionCode.WRITE_MULTIPLE_REGISTERS,
    }
)


class MEIType(IntEnum):
    """Modbus Encapsulated Interface types."""

    READ_DEVICE_INFORMATION = 0x0E


class DeviceIDCategory(IntEnum):
    """Read device identification access category."""

    BASIC = 0x01
    REGULAR = 0x02
    EXTENDED = 0x03
    INDIVIDUAL = 0x04


class DeviceIDObject(IntEnum):
    """Standard device identification objects (0x80+ are vendor private)."""

    VENDOR_NAME = 0x00
    PRODUCT_CODE = 0x01
    MAJOR_MINOR_REVISION = 0x02
    VENDOR_URL = 0x03
    PRODUCT_NAME = 0x04
    MODEL_NAME = 0x05
    USER_APPLICATION_NAME = 0x06


class ErrorCode(IntEnum):
    """Exception codes a device may answer with."""

    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SLAVE_DEVICE_FAILURE = 0x04
    ACKNOWLEDGE = 0x05
    SLAVE_DEVICE_BUSY = 0x06
    NEGATIVE_ACKNOWLEDGE = 0x07
    MEMORY_PARITY_ERROR = 0x08
    GATEWAY_PATH_UNAVAILABLE = 0x0A
    GATEWAY_TARGET_DEVICE_FAILED_TO_RESPOND = 0x0B

    @property
    def message(self) -> str:
        return _ERROR_MESSAGES[self]


_ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.ILLEGAL_FUNCTION: "Illegal function: the function code is not supported by the device",
    ErrorCode.ILLEGAL_DATA_ADDRESS: "Illegal data address: the address range is not available on the device",
    ErrorCode.ILLEGAL_DATA_VALUE: "Illegal data value: the value is not accepted by the device",
    ErrorCode.SLAVE_DEVICE_FAILURE: "Slave device failure: an unrecoverable error occurred on the device",
    ErrorCode.ACKNOWLEDGE: "Acknowledge: the request was accepted but needs a long time to process",
    ErrorCode.SLAVE_DEVICE_BUSY: "Slave device busy: the device is processing a long-duration command",
    ErrorCode.NEGATIVE_ACKNOWLEDGE: "Negative acknowledge: the device cannot perform the program function",
    ErrorCode.MEMORY_PARITY_ERROR: "Memory parity error: the device detected a parity error in its memory",
    ErrorCode.GATEWAY_PATH_UNAVAILABLE: "Gateway path unavailable: the gateway could not allocate a path",
    ErrorCode.GATEWAY_TARGET_DEVICE_FAILED_TO_RESPOND: "Gateway target device failed to respond",
}


def error_message(code: int) -> str:
    """Return a human-readable message for a Modbus exception code."""
    try:
        return ErrorCode(code).message
    except ValueError:
        return f"Unknown exception code 0x{code:02X}"


class ConnectionState(str, Enum):
    """Lifecycle of a client connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


def _check_address(address: int) -> None:
    if not MIN_ADDRESS <= address <= MAX_ADDRESS:
        raise ValueError(f"address must be within {MIN_ADDRESS}..{MAX_ADDRESS}, got {address}")


@dataclass(frozen=True)
class Coil:
    """Single-bit read/write output."""

    address: int
    value: bool = False

    def __post_init__(self) -> None:
        _check_address(self.address)


@dataclass(frozen=True)
class DiscreteInput:
    """Single-bit read-only input."""

    address: int
    value: bool = False

    def __post_init__(self) -> None:
        _check_address(self.address)


@dataclass(frozen=True)
class Register:
    """16-bit register; value and hi/lo bytes are two views of the same word."""

    address: int
    value: int = 0

    def __post_init__(self) -> None:
        _check_address(self.address)
        if not 0 <= self.value <= 0xFFFF:
            raise ValueError(f"register value must be within 0..65535, got {self.value}")

    @classmethod
    def from_bytes(cls, address: int, hi_byte: int, lo_byte: int) -> "Register":
        return cls(address, (hi_byte << 8) | lo_byte)

    @property
    def hi_byte(self) -> int:
        return (self.value >> 8) & 0xFF

    @property
    def lo_byte(self) -> int:
        return self.value & 0xFF

    @property
    def signed(self) -> int:
        """Value interpreted as a two's complement 16-bit integer."""
        return self.value - 0x10000 if self.value > 0x7FFF else self.value
