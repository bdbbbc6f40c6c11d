#!/usr/bin/env python3
"""Command line for pyfield-modbus using Typer."""

import json
import logging
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from .client import ModbusClient, SerialModbusClient, TcpModbusClient
from .errors import ClientClosedError, ModbusDeviceError, ModbusIOError, ProtocolError
from .types import Coil, DeviceIDCategory, Register

app = typer.Typer(
    name="pyfield-modbus",
    help="Poll and command Modbus TCP and RTU field devices.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

HostOption = Annotated[
    Optional[str],
    typer.Option("--host", "-h", help="Device hostname or IP address (Modbus TCP)", envvar="PYFIELD_HOST"),
]
PortOption = Annotated[
    int,
    typer.Option("--port", "-p", help="Modbus TCP port", envvar="PYFIELD_PORT"),
]
SerialPortOption = Annotated[
    Optional[str],
    typer.Option("--serial-port", "-s", help="Serial port (Modbus RTU), e.g. /dev/ttyUSB0", envvar="PYFIELD_SERIAL_PORT"),
]
BaudrateOption = Annotated[
    int,
    typer.Option("--baudrate", "-b", help="Serial baud rate", envvar="PYFIELD_BAUDRATE"),
]
ParityOption = Annotated[
    str,
    typer.Option("--parity", help="Serial parity: N, E, O, M or S", envvar="PYFIELD_PARITY"),
]
StopbitsOption = Annotated[
    float,
    typer.Option("--stopbits", help="Serial stop bits: 1, 1.5 or 2", envvar="PYFIELD_STOPBITS"),
]
BytesizeOption = Annotated[
    int,
    typer.Option("--bytesize", help="Serial data bits", envvar="PYFIELD_BYTESIZE"),
]
DeviceIdOption = Annotated[
    int,
    typer.Option("--device-id", "-d", help="Modbus device (unit) id", envvar="PYFIELD_DEVICE_ID"),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", "-t", help="Send/receive timeout in seconds", envvar="PYFIELD_TIMEOUT"),
]
ReconnectTimeoutOption = Annotated[
    float,
    typer.Option("--reconnect-timeout", help="Give up connecting after this many seconds", envvar="PYFIELD_RECONNECT_TIMEOUT"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]
SignedOption = Annotated[
    bool,
    typer.Option("--signed", help="Interpret register values as signed 16-bit integers"),
]


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_client(
    host: Optional[str],
    port: int,
    serial_port: Optional[str],
    baudrate: int,
    parity: str,
    stopbits: float,
    bytesize: int,
    timeout: float,
    reconnect_timeout: float,
) -> ModbusClient:
    """Create a TCP client for --host or an RTU client for --serial-port."""
    common = {
        "send_timeout": timeout,
        "receive_timeout": timeout,
        "reconnect_timeout": reconnect_timeout,
    }
    if host and serial_port:
        typer.echo("Error: use either --host or --serial-port, not both", err=True)
        raise typer.Exit(2)
    if serial_port:
        return SerialModbusClient(
            serial_port,
            baudrate=baudrate,
            parity=parity,
            stopbits=stopbits,
            bytesize=bytesize,
            **common,
        )
    if host:
        return TcpModbusClient(host, port, **common)
    typer.echo("Error: --host or --serial-port is required for this command", err=True)
    raise typer.Exit(2)


def parse_bool(value: str) -> bool:
    """Parse boolean value from string."""
    v = value.lower().strip()
    if v in ("true", "1", "on", "yes"):
        return True
    if v in ("false", "0", "off", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def parse_int(value: str, signed: bool = False) -> int:
    """Parse a 16-bit register value, decimal or 0x hex; signed values are returned as unsigned."""
    v = value.strip()
    if v.lower().startswith("0x"):
        num = int(v, 16)
    else:
        num = int(v)

    if signed:
        if not (-32768 <= num <= 32767):
            raise ValueError(f"Signed 16-bit integer out of range: {num}")
        return from_signed(num)
    if not (0 <= num <= 65535):
        raise ValueError(f"Unsigned 16-bit integer out of range: {num}")
    return num


def to_signed(value: int) -> int:
    """Convert unsigned 16-bit to signed."""
    if value > 32767:
        return value - 65536
    return value


def from_signed(value: int) -> int:
    """Convert signed 16-bit to unsigned."""
    if value < 0:
        return value + 65536
    return value


def format_value(value: bool | int, signed: bool = False) -> str:
    """Format value for display."""
    if isinstance(value, bool):
        return str(value).lower()
    if signed:
        return str(to_signed(value))
    return str(value)


def fail(message: str, code: int, verbose: bool = False) -> None:
    typer.echo(f"Error: {message}", err=True)
    if verbose and code == 4:
        import traceback
        traceback.print_exc()
    raise typer.Exit(code)


def run_guarded(verbose: bool, action: Any) -> None:
    """Run action() and map library errors to exit codes 2 (arguments), 3 (device/link) and 4."""
    try:
        action()
    except typer.Exit:
        raise
    except ValueError as e:
        fail(f"Invalid argument: {e}", 2)
    except ModbusDeviceError as e:
        fail(f"Device exception: {e}", 3)
    except (ModbusIOError, ProtocolError, ClientClosedError) as e:
        fail(f"Connection/Modbus error: {e}", 3)
    except Exception as e:
        fail(f"Unexpected error: {e}", 4, verbose)


def echo_points(points: list, json_output: bool, signed: bool = False) -> None:
    if json_output:
        data = [
            {"address": p.address, "value": to_signed(p.value) if signed and not isinstance(p.value, bool) else p.value}
            for p in points
        ]
        typer.echo(json.dumps(data, indent=2))
        return
    for p in points:
        typer.echo(f"{p.address}={format_value(p.value, signed)}")


def _read_command(
    method: str,
    address: int,
    count: int,
    client: ModbusClient,
    device_id: int,
    json_output: bool,
    signed: bool = False,
) -> None:
    with client:
        points = getattr(client, method)(device_id, address, count)
        if points is None:
            fail("No response from device", 3)
        echo_points(points, json_output, signed)


# ============================================================================
# Commands
# ============================================================================


@app.command()
def ping(
    host: HostOption = None,
    port: PortOption = 502,
    serial_port: SerialPortOption = None,
    baudrate: BaudrateOption = 38400,
    parity: ParityOption = "N",
    stopbits: StopbitsOption = 1,
    bytesize: BytesizeOption = 8,
    device_id: DeviceIdOption = 1,
    timeout: TimeoutOption = 1.0,
    reconnect_timeout: ReconnectTimeoutOption = 5.0,
    verbose: VerboseOption = False,
) -> None:
    """
    Test connectivity by reading holding register 0.
    """
    setup_logging(verbose)

    def action() -> None:
        client = create_client(host, port, serial_port, baudrate, parity, stopbits, bytesize, timeout, reconnect_timeout)
        with client:
            if client.read_holding_registers(device_id, 0, 1) is None:
                fail("No response from device", 3)
            typer.echo(f"OK: {client!r}")

    run_guarded(verbose, action)


def _make_read_command(name: str, method: str, help_text: str, registers: bool) -> None:
    def command(
        address: Annotated[int, typer.Argument(help="First address (0-based)")],
        count: Annotated[int, typer.Argument(help="Number of elements")] = 1,
        host: HostOption = None,
        port: PortOption = 502,
        serial_port: SerialPortOption = None,
        baudrate: BaudrateOption = 38400,
        parity: ParityOption = "N",
        stopbits: StopbitsOption = 1,
        bytesize: BytesizeOption = 8,
        device_id: DeviceIdOption = 1,
        timeout: TimeoutOption = 1.0,
        reconnect_timeout: ReconnectTimeoutOption = 5.0,
        verbose: VerboseOption = False,
        json_output: JsonOption = False,
        signed: SignedOption = False,
    ) -> None:
        setup_logging(verbose)

        def action() -> None:
            client = create_client(
                host, port, serial_port, baudrate, parity, stopbits, bytesize, timeout, reconnect_timeout
            )
            _read_command(method, address, count, client, device_id, json_output, signed and registers)

        run_guarded(verbose, action)

    command.__doc__ = help_text
    app.command(name=name)(command)


_make_read_command("read-coils", "read_coils", "Read coils (function 1).", registers=False)
_make_read_command("read-discrete-inputs", "read_discrete_inputs", "Read discrete inputs (function 2).", registers=False)
_make_read_command("read-holding", "read_holding_registers", "Read holding registers (function 3).", registers=True)
_make_read_command("read-input", "read_input_registers", "Read input registers (function 4).", registers=True)


@app.command(name="write-coil")
def write_coil(
    address: Annotated[int, typer.Argument(help="Coil address (0-based)")],
    value: Annotated[str, typer.Argument(help="true/false, 1/0, on/off, yes/no")],
    host: HostOption = None,
    port: PortOption = 502,
    serial_port: SerialPortOption = None,
    baudrate: BaudrateOption = 38400,
    parity: ParityOption = "N",
    stopbits: StopbitsOption = 1,
    bytesize: BytesizeOption = 8,
    device_id: DeviceIdOption = 1,
    timeout: TimeoutOption = 1.0,
    reconnect_timeout: ReconnectTimeoutOption = 5.0,
    verbose: VerboseOption = False,
) -> None:
    """Write a single coil (function 5)."""
    setup_logging(verbose)
    try:
        parsed = parse_bool(value)
    except ValueError as e:
        fail(f"Invalid value: {e}", 2)

    def action() -> None:
        client = create_client(host, port, serial_port, baudrate, parity, stopbits, bytesize, timeout, reconnect_timeout)
        with client:
            if not client.write_single_coil(device_id, Coil(address, parsed)):
                fail(f"Write of coil {address} was not confirmed", 3)
            typer.echo(f"OK: Wrote coil {address} = {format_value(parsed)}")

    run_guarded(verbose, action)


@app.command(name="write-register")
def write_register(
    address: Annotated[int, typer.Argument(help="Register address (0-based)")],
    value: Annotated[str, typer.Argument(help="Value (decimal or 0x hex)")],
    host: HostOption = None,
    port: PortOption = 502,
    serial_port: SerialPortOption = None,
    baudrate: BaudrateOption = 38400,
    parity: ParityOption = "N",
    stopbits: StopbitsOption = 1,
    bytesize: BytesizeOption = 8,
    device_id: DeviceIdOption = 1,
    timeout: TimeoutOption = 1.0,
    reconnect_timeout: ReconnectTimeoutOption = 5.0,
    verbose: VerboseOption = False,
    signed: SignedOption = False,
) -> None:
    """Write a single holding register (function 6)."""
    setup_logging(verbose)
    try:
        parsed = parse_int(value, signed)
    except ValueError as e:
        fail(f"Invalid value: {e}", 2)

    def action() -> None:
        client = create_client(host, port, serial_port, baudrate, parity, stopbits, bytesize, timeout, reconnect_timeout)
        with client:
            if not client.write_single_register(device_id, Register(address, parsed)):
                fail(f"Write of register {address} was not confirmed", 3)
            typer.echo(f"OK: Wrote register {address} = {value.strip()}")

    run_guarded(verbose, action)


@app.command(name="write-registers")
def write_registers(
    address: Annotated[int, typer.Argument(help="First register address (0-based)")],
    values: Annotated[list[str], typer.Argument(help="Values for consecutive registers")],
    host: HostOption = None,
    port: PortOption = 502,
    serial_port: SerialPortOption = None,
    baudrate: BaudrateOption = 38400,
    parity: ParityOption = "N",
    stopbits: StopbitsOption = 1,
    bytesize: BytesizeOption = 8,
    device_id: DeviceIdOption = 1,
    timeout: TimeoutOption = 1.0,
    reconnect_timeout: ReconnectTimeoutOption = 5.0,
    verbose: VerboseOption = False,
    signed: SignedOption = False,
) -> None:
    """Write consecutive holding registers (function 16)."""
    setup_logging(verbose)
    try:
        parsed = [parse_int(v, signed) for v in values]
    except ValueError as e:
        fail(f"Invalid value: {e}", 2)

    def action() -> None:
        registers = [Register(address + i, v) for i, v in enumerate(parsed)]
        client = create_client(host, port, serial_port, baudrate, parity, stopbits, bytesize, timeout, reconnect_timeout)
        with client:
            if not client.write_registers(device_id, registers):
                fail(f"Write of {len(registers)} register(s) at {address} was not confirmed", 3)
            typer.echo(f"OK: Wrote {len(registers)} register(s) starting at {address}")

    run_guarded(verbose, action)


@app.command(name="device-info")
def device_info(
    category: Annotated[str, typer.Option("--category", "-c", help="basic, regular, extended or individual")] = "basic",
    object_id: Annotated[int, typer.Option("--object-id", help="First object id to read")] = 0,
    host: HostOption = None,
    port: PortOption = 502,
    serial_port: SerialPortOption = None,
    baudrate: BaudrateOption = 38400,
    parity: ParityOption = "N",
    stopbits: StopbitsOption = 1,
    bytesize: BytesizeOption = 8,
    device_id: DeviceIdOption = 1,
    timeout: TimeoutOption = 1.0,
    reconnect_timeout: ReconnectTimeoutOption = 5.0,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """Read device identification (function 43, MEI type 14)."""
    setup_logging(verbose)
    try:
        parsed_category = DeviceIDCategory[category.strip().upper()]
    except KeyError:
        fail(f"Invalid category: {category!r}", 2)

    def action() -> None:
        client = create_client(host, port, serial_port, baudrate, parity, stopbits, bytesize, timeout, reconnect_timeout)
        with client:
            info = client.read_device_information(device_id, parsed_category, object_id)
            if info is None:
                fail("No response from device", 3)
            named = {getattr(k, "name", f"0x{k:02X}").lower(): v for k, v in info.items()}
            if json_output:
                typer.echo(json.dumps(named, indent=2))
            else:
                for name, text in named.items():
                    typer.echo(f"{name + ':':24} {text}")

    run_guarded(verbose, action)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"pyfield-modbus {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """pyfield-modbus - Modbus TCP/RTU client for field devices."""
    pass


if __name__ == "__main__":
    app()
