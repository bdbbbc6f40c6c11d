#!/usr/bin/env python3
"""Example: connect to a Modbus TCP device, read a few registers and coils, identify it."""

import sys

from pyfield_modbus import Coil, Register, TcpModbusClient
from pyfield_modbus.errors import InvalidArgumentError, ModbusDeviceError, ModbusIOError


def main() -> None:
    host = "192.168.1.10"  # change to your device IP
    port = 502
    device_id = 1
    write_enabled = False

    try:
        with TcpModbusClient(host, port, reconnect_timeout=10.0) as client:
            # Holding registers 0..3
            regs = client.read_holding_registers(device_id, 0, 4)
            if regs is None:
                print("No response (timeout); reconnecting in the background", file=sys.stderr)
            else:
                for reg in regs:
                    print(f"HR{reg.address} = {reg.value} (signed {reg.signed})")

            # Coils 0..7
            coils = client.read_coils(device_id, 0, 8)
            print(f"coils: {coils}")

            # Write a register and a coil (set write_enabled if your device allows)
            if write_enabled:
                print(f"HR10 written: {client.write_single_register(device_id, Register(10, 1234))}")
                print(f"coil 0 written: {client.write_single_coil(device_id, Coil(0, True))}")

            # Device identification
            info = client.read_device_information(device_id)
            print(f"device info: {info}")
    except InvalidArgumentError as e:
        print(f"Invalid argument: {e}", file=sys.stderr)
        sys.exit(1)
    except ModbusDeviceError as e:
        print(f"Device exception: {e}", file=sys.stderr)
        sys.exit(1)
    except ModbusIOError as e:
        print(f"Modbus/connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
