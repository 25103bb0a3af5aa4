#!/usr/bin/env python3
"""Example: submit reads without blocking and collect them through futures and listeners; Ctrl+C to stop."""

import sys
import time

from mbtcp_master import DataResponse, FaultResponse, ModbusMaster, Operation
from mbtcp_master.errors import TransportError


def main() -> None:
    host = "192.168.1.10"  # change to your device IP
    port = 502
    unit_id = 1
    offsets = [0, 10, 20, 30]
    interval_s = 1.0

    try:
        with ModbusMaster(host=host, port=port, unit_id=unit_id) as master:

            @master.on_response
            def show(response: DataResponse) -> None:
                print(f"tid={response.transaction_id} registers={response.registers()}")

            @master.on_fault
            def warn(fault: FaultResponse) -> None:
                print(f"tid={fault.transaction_id} fault {fault.code}: {fault.description}", file=sys.stderr)

            print(f"Polling HR{offsets} every {interval_s}s (Ctrl+C to stop)...")
            while master.connected:
                futures = [
                    master.submit(Operation.read_holding_registers(master.next_transaction_id(), unit_id, off, 2))
                    for off in offsets
                ]
                # all requests are in flight at once; wait for the batch before the next cycle
                for f in futures:
                    f.result()
                time.sleep(interval_s)
    except KeyboardInterrupt:
        print("\nStopped.")
    except TransportError as e:
        print(f"Connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
