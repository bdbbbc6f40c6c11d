#!/usr/bin/env python3
"""Example: poll input registers over Modbus RTU, logging connection events; Ctrl+C to stop."""

import sys
import time

from pyfield_modbus import SerialModbusClient
from pyfield_modbus.errors import ModbusDeviceError, ModbusIOError


def main() -> None:
    port = "/dev/ttyUSB0"  # change to your serial adapter
    device_id = 1
    interval_s = 1.0

    client = SerialModbusClient(port, baudrate=19200, parity="E", receive_timeout=0.5)
    client.connected.subscribe(lambda c: print(f"connected: {c!r}"))
    client.disconnected.subscribe(lambda c: print(f"disconnected: {c!r}"))

    try:
        with client:
            print(f"Polling input registers 0..9 every {interval_s}s (Ctrl+C to stop)...")
            while True:
                regs = client.read_input_registers(device_id, 0, 10)
                if regs is not None:
                    print([r.value for r in regs])
                time.sleep(interval_s)
    except KeyboardInterrupt:
        print("\nStopped.")
    except ModbusDeviceError as e:
        print(f"Device exception: {e}", file=sys.stderr)
        sys.exit(1)
    except ModbusIOError as e:
        print(f"Modbus/connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
