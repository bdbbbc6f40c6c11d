"""pyfield-modbus: Modbus TCP and RTU client with reconnect handling and a native PDU codec."""

__version__ = "0.1.0"

from .buffer import DataBuffer
from .client import ModbusClient, SerialModbusClient, TcpModbusClient
from .config import ClientSettings, Handshake, SerialSettings, TcpSettings
from .errors import (
    ClientClosedError,
    ConnectionFailedError,
    FrameChecksumError,
    InvalidArgumentError,
    ModbusClientError,
    ModbusDeviceError,
    ModbusIOError,
    ProtocolError,
)
from .types import (
    Coil,
    ConnectionState,
    DeviceIDCategory,
    DeviceIDObject,
    DiscreteInput,
    ErrorCode,
    FunctionCode,
    Register,
)

__all__ = [
    "__version__",
    "DataBuffer",
    "ModbusClient",
    "SerialModbusClient",
    "TcpModbusClient",
    "ClientSettings",
    "Handshake",
    "SerialSettings",
    "TcpSettings",
    "ClientClosedError",
    "ConnectionFailedError",
    "FrameChecksumError",
    "InvalidArgumentError",
    "ModbusClientError",
    "ModbusDeviceError",
    "ModbusIOError",
    "ProtocolError",
    "Coil",
    "ConnectionState",
    "DeviceIDCategory",
    "DeviceIDObject",
    "DiscreteInput",
    "ErrorCode",
    "FunctionCode",
    "Register",
]
