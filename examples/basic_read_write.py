#!/usr/bin/env python3
"""Example: connect to a Modbus/TCP device and read/write a few addresses."""

import sys

from mbtcp_master import ModbusMaster
from mbtcp_master.errors import InvalidAddressError, ModbusIOError, TransportError


def main() -> None:
    host = "192.168.1.10"  # change to your device IP
    port = 502
    unit_id = 1

    try:
        with ModbusMaster(host=host, port=port, unit_id=unit_id) as master:
            # Typed helpers by 0-based offset
            regs = master.read_holding_registers(0, 4)
            print(f"HR0..HR3 = {regs}")

            # Address strings (prefix or reference number)
            v = master.read("400008")
            print(f"400008 (HR7) = {v}")

            # Write a coil (example; uncomment if your device allows)
            # master.write("CO1", True)

            # Explain an address
            print(f"explain(hr100): {master.explain('hr100')}")

            # Batch read: contiguous offsets go out as one request
            snapshot = master.read_many(["HR0", "HR1", "HR2", "CO5"])
            print(f"read_many: {snapshot}")
    except InvalidAddressError as e:
        print(f"Invalid address: {e}", file=sys.stderr)
        sys.exit(1)
    except (ModbusIOError, TransportError) as e:
        print(f"Modbus/connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
