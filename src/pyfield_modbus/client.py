"""Modbus clients for TCP and serial RTU sharing one set of operations."""

import dataclasses
import logging
import threading
from concurrent.futures import Future
from typing import Any, Iterable

from .config import ClientSettings, SerialSettings, TcpSettings
from .connection import ConnectionManager, TransportFactory
from .consts import DEFAULT_TCP_PORT
from .device_id import collect_device_objects, decode_device_information
from .errors import ModbusDeviceError, ProtocolError
from .events import Event
from .framing import Framer, RtuFramer, TcpFramer
from .protocol import (
    Request,
    Response,
    decode_coils,
    decode_discrete_inputs,
    decode_registers,
    device_information_request,
    is_write_confirmed,
    read_request,
    write_coils_request,
    write_registers_request,
    write_single_coil_request,
    write_single_register_request,
)
from .transport import SerialTransport, TcpTransport, Transport
from .types import (
    Coil,
    ConnectionState,
    DeviceIDCategory,
    DeviceIDObject,
    DiscreteInput,
    FunctionCode,
    Register,
)

logger = logging.getLogger(__name__)


class ModbusClient:
    """
    Operations shared by the TCP and serial clients.

    Every operation blocks until its exchange completes and may be called from
    any thread; exchanges are serialised on the wire. Results:

    - invalid arguments raise InvalidArgumentError before any I/O;
    - a timeout or link failure logs a warning, starts a background reconnect
      and returns None (reads) or False (writes);
    - an exception reply raises ModbusDeviceError;
    - a malformed reply raises ProtocolError;
    - after reconnecting gave up, ConnectionFailedError; after close(),
      ClientClosedError.
    """

    framer: Framer

    def __init__(self, settings: ClientSettings, transport_factory: TransportFactory, name: str) -> None:
        self._connection = ConnectionManager(transport_factory, settings, name=name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def settings(self) -> ClientSettings:
        return self._connection.settings

    def configure(self, **changes: Any) -> ClientSettings:
        """Replace settings fields; an open connection keeps the old values until it reconnects."""
        settings = dataclasses.replace(self._connection.settings, **changes)
        self._connection.settings = settings
        return settings

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.is_connected

    @property
    def connected(self) -> Event:
        """Fired after a connection is established and its timeouts applied."""
        return self._connection.connected

    @property
    def disconnected(self) -> Event:
        """Fired when a working connection is lost or closed, before reconnecting."""
        return self._connection.disconnected

    @property
    def connecting_task(self) -> Future | None:
        return self._connection.connecting_task

    def connect(self) -> None:
        """Connect now, blocking until connected; raises ConnectionFailedError on give-up."""
        self._connection.reconnect()

    def disconnect(self) -> None:
        """Close the link; the next operation reconnects."""
        self._connection.disconnect()

    def close(self) -> None:
        """Dispose the client. Safe to call more than once."""
        self._connection.close()

    def __enter__(self) -> "ModbusClient":
        self.connect()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Exchange plumbing
    # ------------------------------------------------------------------

    def _next_transaction_id(self) -> int:
        return 0

    def _transceive(self, request: Request) -> Response:
        """One exchange. Timeouts come back as timeout responses; link failures raise OSError."""

        def exchange(transport: Transport) -> Response:
            frame = self.framer.encode(request)
            logger.debug("TX %s", frame.hex(" "))
            transport.write(frame)
            try:
                raw = self.framer.read_frame(transport.read_exact)
                logger.debug("RX %s", raw.hex(" "))
                return self.framer.decode(raw, request)
            except ProtocolError:
                transport.discard_input()
                raise

        try:
            return self._connection.exchange(exchange)
        except TimeoutError:
            return Response.timeout(request)

    def _schedule_reconnect(self) -> None:
        if not self._connection.is_closed:
            self._connection.reconnect_in_background()

    def _execute(self, request: Request, action: str) -> Response | None:
        request = dataclasses.replace(request, transaction_id=self._next_transaction_id())
        try:
            response = self._transceive(request)
        except OSError as e:
            logger.warning("%s failed: %s. Reconnecting.", action, e)
            self._schedule_reconnect()
            return None
        if response.is_timeout:
            logger.warning("%s: %s. Reconnecting.", action, response.error_message)
            self._schedule_reconnect()
            return None
        if response.is_error:
            raise ModbusDeviceError(
                f"{action}: {response.error_message}",
                function=int(request.function),
                error_code=response.error_code,
            )
        return response

    def _read(self, function: FunctionCode, device_id: int, start_address: int, count: int) -> Response | None:
        self._connection.check_open()
        request = read_request(function, device_id, start_address, count, device_ids=self.framer.device_ids)
        return self._execute(request, f"Reading {function.name.lower()}")

    def _write(self, request: Request, action: str) -> bool:
        response = self._execute(request, action)
        if response is None:
            return False
        if not is_write_confirmed(request, response):
            logger.warning("%s: device echo does not match the request", action)
            return False
        return True

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def read_coils(self, device_id: int, start_address: int, count: int) -> list[Coil] | None:
        """Read coils (function 1). Returns None on timeout or link failure."""
        logger.debug("read_coils(%d, %d, %d)", device_id, start_address, count)
        response = self._read(FunctionCode.READ_COILS, device_id, start_address, count)
        return None if response is None else decode_coils(response)

    def read_discrete_inputs(self, device_id: int, start_address: int, count: int) -> list[DiscreteInput] | None:
        """Read discrete inputs (function 2)."""
        logger.debug("read_discrete_inputs(%d, %d, %d)", device_id, start_address, count)
        response = self._read(FunctionCode.READ_DISCRETE_INPUTS, device_id, start_address, count)
        return None if response is None else decode_discrete_inputs(response)

    def read_holding_registers(self, device_id: int, start_address: int, count: int) -> list[Register] | None:
        """Read holding registers (function 3)."""
        logger.debug("read_holding_registers(%d, %d, %d)", device_id, start_address, count)
        response = self._read(FunctionCode.READ_HOLDING_REGISTERS, device_id, start_address, count)
        return None if response is None else decode_registers(response)

    def read_input_registers(self, device_id: int, start_address: int, count: int) -> list[Register] | None:
        """Read input registers (function 4)."""
        logger.debug("read_input_registers(%d, %d, %d)", device_id, start_address, count)
        response = self._read(FunctionCode.READ_INPUT_REGISTERS, device_id, start_address, count)
        return None if response is None else decode_registers(response)

    def read_device_information_raw(
        self,
        device_id: int,
        category: DeviceIDCategory = DeviceIDCategory.BASIC,
        object_id: DeviceIDObject | int = DeviceIDObject.VENDOR_NAME,
    ) -> dict[int, bytes] | None:
        """
        Read device identification (function 43 / MEI 14) as raw bytes per object id.
        Continuation replies are followed until the device reports no more objects.
        """
        logger.debug("read_device_information(%d, %s, %s)", device_id, category, object_id)
        self._connection.check_open()
        # validate once up front so bad arguments fail before any I/O
        device_information_request(device_id, category, object_id, device_ids=self.framer.device_ids)

        def fetch(next_id: int) -> Response | None:
            request = device_information_request(device_id, category, next_id, device_ids=self.framer.device_ids)
            return self._execute(request, "Reading device information")

        return collect_device_objects(fetch, object_id)

    def read_device_information(
        self,
        device_id: int,
        category: DeviceIDCategory = DeviceIDCategory.BASIC,
        object_id: DeviceIDObject | int = DeviceIDObject.VENDOR_NAME,
    ) -> dict[DeviceIDObject | int, str] | None:
        """Device identification with values decoded as ASCII text."""
        raw = self.read_device_information_raw(device_id, category, object_id)
        return None if raw is None else decode_device_information(raw)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def write_single_coil(self, device_id: int, coil: Coil) -> bool:
        """Write one coil (function 5). True when the device echoes the request."""
        logger.debug("write_single_coil(%d, %r)", device_id, coil)
        self._connection.check_open()
        request = write_single_coil_request(device_id, coil, device_ids=self.framer.device_ids)
        return self._write(request, "Writing single coil")

    def write_single_register(self, device_id: int, register: Register) -> bool:
        """Write one holding register (function 6)."""
        logger.debug("write_single_register(%d, %r)", device_id, register)
        self._connection.check_open()
        request = write_single_register_request(device_id, register, device_ids=self.framer.device_ids)
        return self._write(request, "Writing single register")

    def write_coils(self, device_id: int, coils: Iterable[Coil]) -> bool:
        """Write contiguous coils (function 15); order of the input does not matter."""
        coils = list(coils)
        logger.debug("write_coils(%d, %d coils)", device_id, len(coils))
        self._connection.check_open()
        request = write_coils_request(device_id, coils, device_ids=self.framer.device_ids)
        return self._write(request, "Writing coils")

    def write_registers(self, device_id: int, registers: Iterable[Register]) -> bool:
        """Write contiguous holding registers (function 16)."""
        registers = list(registers)
        logger.debug("write_registers(%d, %d registers)", device_id, len(registers))
        self._connection.check_open()
        request = write_registers_request(device_id, registers, device_ids=self.framer.device_ids)
        return self._write(request, "Writing registers")


class TcpModbusClient(ModbusClient):
    """Modbus TCP client. Extra keyword arguments become TcpSettings fields."""

    framer = TcpFramer()

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_TCP_PORT,
        *,
        transport_factory: TransportFactory | None = None,
        **options: Any,
    ) -> None:
        settings = TcpSettings(host=host, port=port, **options)
        super().__init__(settings, transport_factory or TcpTransport, name=f"tcp://{host}:{port}")
        self._transaction_id = 0
        self._transaction_lock = threading.Lock()

    def _next_transaction_id(self) -> int:
        with self._transaction_lock:
            self._transaction_id = (self._transaction_id + 1) & 0xFFFF
            return self._transaction_id

    def __repr__(self) -> str:
        return f"Modbus TCP {self.settings.host}:{self.settings.port} - Connected: {self.is_connected}"


class SerialModbusClient(ModbusClient):
    """Modbus RTU client over a serial port. Extra keyword arguments become SerialSettings fields."""

    framer = RtuFramer()

    def __init__(
        self,
        port: str,
        *,
        transport_factory: TransportFactory | None = None,
        **options: Any,
    ) -> None:
        settings = SerialSettings(port=port, **options)
        super().__init__(settings, transport_factory or SerialTransport, name=f"serial://{port}")

    def __repr__(self) -> str:
        return f"Modbus Serial {self.settings.port} - Connected: {self.is_connected}"
