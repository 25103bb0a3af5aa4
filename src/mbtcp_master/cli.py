#!/usr/bin/env python3
"""Command line tool for Modbus/TCP master operations using Typer."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from . import codec
from .address import normalize_address, parse_address
from .client import ModbusMaster
from .connection import MasterConfig
from .convert import from_signed, to_signed
from .errors import InvalidAddressError, MalformedADUError, ModbusIOError, TransportError
from .types import DataResponse, FaultResponse, FunctionCode, ModbusTable, Operation

app = typer.Typer(
    name="mbtcp",
    help="Modbus/TCP master: read and write coils and registers on a remote device.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

HostOption = Annotated[
    Optional[str],
    typer.Option("--host", "-h", help="Device hostname or IP address", envvar="MBTCP_HOST"),
]
PortOption = Annotated[
    int,
    typer.Option("--port", "-p", help="Modbus TCP port", envvar="MBTCP_PORT"),
]
UnitIdOption = Annotated[
    int,
    typer.Option("--unit-id", "-u", help="Modbus unit ID", envvar="MBTCP_UNIT_ID"),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", "-t", help="Response timeout in seconds", envvar="MBTCP_TIMEOUT"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging (includes ADU hex dumps)"),
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


def create_master(
    host: Optional[str],
    port: int,
    unit_id: int,
    timeout: float,
) -> ModbusMaster:
    """Create and return a ModbusMaster instance."""
    if not host:
        typer.echo("Error: --host is required for this command", err=True)
        raise typer.Exit(2)
    return ModbusMaster(host=host, port=port, unit_id=unit_id, timeout=timeout, connect_timeout=timeout)


def parse_bool(value: str) -> bool:
    """Parse boolean value from string."""
    v = value.lower().strip()
    if v in ("true", "1", "on", "yes"):
        return True
    if v in ("false", "0", "off", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def parse_int(value: str, signed: bool = False) -> int:
    """Parse integer value from string, supporting hex and validation."""
    v = value.strip()
    if v.lower().startswith("0x"):
        num = int(v, 16)
    else:
        num = int(v)

    if signed:
        if not (-32768 <= num <= 32767):
            raise ValueError(f"Signed 16-bit integer out of range: {num}")
    else:
        if not (0 <= num <= 65535):
            raise ValueError(f"Unsigned 16-bit integer out of range: {num}")

    return num


def parse_value(table: ModbusTable, value: str, signed: bool = False) -> bool | int:
    """Parse a write value for the given table: bool for coils, 16-bit int for registers."""
    if table == ModbusTable.COIL:
        return parse_bool(value)
    num = parse_int(value, signed)
    return from_signed(num) if signed else num


def format_value(value: bool | int, signed: bool = False) -> str:
    """Format value for display."""
    if isinstance(value, bool):
        return str(value).lower()
    if signed:
        return str(to_signed(value))
    return str(value)


def format_poll_value(value: bool | int) -> str:
    """Format value for poll output: registers as integers, bits as true/false."""
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def _apply_signed(values: dict[str, bool | int], signed: bool) -> dict[str, bool | int]:
    if not signed:
        return values
    return {k: v if isinstance(v, bool) else to_signed(v) for k, v in values.items()}


def _fail(message: str, code: int, verbose: bool = False) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    if verbose and code == 4:
        import traceback

        traceback.print_exc()
    return typer.Exit(code)


def describe_response(response: DataResponse | FaultResponse, count: int | None = None) -> dict[str, Any]:
    """Summarize a decoded response for display."""
    out: dict[str, Any] = {
        "transaction_id": response.transaction_id,
        "unit_id": response.unit_id,
        "function": response.function,
    }
    if isinstance(response, FaultResponse):
        out["fault"] = response.code
        out["description"] = response.description
        return out
    out["payload"] = codec.hexdump(response.payload)
    if response.function in (FunctionCode.READ_COILS, FunctionCode.READ_DISCRETE_INPUTS):
        out["bits"] = response.bits(count)
    elif response.function in (
        FunctionCode.READ_HOLDING_REGISTERS,
        FunctionCode.READ_INPUT_REGISTERS,
        FunctionCode.READ_WRITE_MULTIPLE_REGISTERS,
    ):
        out["registers"] = response.registers()
    return out


def describe_request(op: Operation) -> dict[str, Any]:
    """Summarize a decoded request for display."""
    out: dict[str, Any] = {
        "transaction_id": op.transaction_id,
        "unit_id": op.unit_id,
        "function": int(op.function),
        "function_name": op.function.name.lower(),
        "address": op.address,
    }
    if op.quantity:
        out["quantity"] = op.quantity
    if op.payload:
        out["payload"] = codec.hexdump(op.payload)
    if op.function == FunctionCode.READ_WRITE_MULTIPLE_REGISTERS:
        out["write_address"] = op.write_address
    return out


# ============================================================================
# Commands
# ============================================================================

@app.command()
def ping(
    host: HostOption = None,
    port: PortOption = 502,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 0.5,
    verbose: VerboseOption = False,
    address: Annotated[
        Optional[str], typer.Option("--address", "-a", help="Address to read (default: holding register 0)")
    ] = None,
) -> None:
    """
    Test connectivity to the device by performing a minimal Modbus read.

    By default, reads 1 holding register at offset 0.
    Use --address to test a specific address.
    """
    setup_logging(verbose)

    try:
        master = create_master(host, port, unit_id, timeout)

        with master:
            target = address or "HR0"
            value = master.read(target)
            typer.echo(f"OK: Connected to {host}:{port}, read {normalize_address(target)} = {format_value(value)}")
    except typer.Exit:
        raise
    except InvalidAddressError as e:
        raise _fail(f"Invalid address: {e}", 2)
    except (ModbusIOError, TransportError) as e:
        raise _fail(f"Connection/Modbus error: {e}", 3)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)


@app.command()
def info(
    host: HostOption = None,
    port: PortOption = 502,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 0.5,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show package version and effective settings, and optionally test connectivity.

    Without --host: shows local metadata only.
    With --host: also tests connectivity.
    """
    setup_logging(verbose)

    info_data: dict[str, Any] = {
        "version": __version__,
        "port": port,
        "unit_id": unit_id,
        "timeout": timeout,
    }

    if host:
        try:
            master = create_master(host, port, unit_id, timeout)
            with master:
                master.read_holding_registers(0, 1)
                info_data["connectivity"] = {
                    "status": "connected",
                    "host": host,
                    "port": port,
                    "unit_id": unit_id,
                }
        except (ModbusIOError, TransportError) as e:
            info_data["connectivity"] = {
                "status": "failed",
                "host": host,
                "port": port,
                "unit_id": unit_id,
                "error": str(e),
            }
        except Exception as e:
            info_data["connectivity"] = {
                "status": "error",
                "error": str(e),
            }

    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        typer.echo(f"mbtcp-master version: {info_data['version']}")
        typer.echo(f"Unit ID: {unit_id}  Port: {port}  Timeout: {timeout}s")
        if "connectivity" in info_data:
            status = info_data["connectivity"]["status"]
            if status == "connected":
                typer.echo(f"Connectivity: OK ({host}:{port})")
            elif status == "failed":
                typer.echo(f"Connectivity: FAILED ({host}:{port})")
            else:
                typer.echo(f"Connectivity: ERROR - {info_data['connectivity'].get('error', 'unknown')}")


@app.command()
def read(
    address: Annotated[str, typer.Argument(help="Address to read (e.g., HR100, coil:5, 400101)")],
    count: Annotated[int, typer.Option("--count", "-n", min=1, help="Number of consecutive items to read")] = 1,
    host: HostOption = None,
    port: PortOption = 502,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 0.5,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
    signed: SignedOption = False,
) -> None:
    """
    Read one address, or --count consecutive items starting at it.

    Returns the value(s) as text by default, or JSON with --json.
    Use --signed to interpret register values as signed 16-bit integers.
    """
    setup_logging(verbose)

    try:
        parse_address(address)
        master = create_master(host, port, unit_id, timeout)

        with master:
            if count == 1:
                values = [master.read(address)]
            else:
                values = list(master.read_range(address, count))
            if signed:
                values = [v if isinstance(v, bool) else to_signed(v) for v in values]

            if json_output:
                payload: Any = values[0] if count == 1 else values
                typer.echo(json.dumps({"address": normalize_address(address), "value": payload}))
            else:
                typer.echo(" ".join(format_value(v) for v in values))
    except typer.Exit:
        raise
    except InvalidAddressError as e:
        raise _fail(f"Invalid address: {e}", 2)
    except (ModbusIOError, TransportError) as e:
        raise _fail(f"Connection/Modbus error: {e}", 3)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)


@app.command()
def write(
    address: Annotated[str, typer.Argument(help="Address to write (coils and holding registers, e.g., CO1, HR7)")],
    values: Annotated[
        list[str],
        typer.Argument(help="Value(s) to write (bool: true/false/1/0/on/off/yes/no; int: decimal or 0x hex)"),
    ],
    host: HostOption = None,
    port: PortOption = 502,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 0.5,
    verbose: VerboseOption = False,
    signed: SignedOption = False,
) -> None:
    """
    Write one value, or several consecutive values, starting at an address.

    A single value uses write-single-coil/register; several values use
    write-multiple-coils/registers.
    Use --signed to allow negative values for registers (-32768 to 32767).
    """
    setup_logging(verbose)

    try:
        addr = parse_address(address)
        if not addr.table.writable:
            raise _fail(f"Address {normalize_address(address)} is not writable", 2)
        try:
            parsed = [parse_value(addr.table, v, signed) for v in values]
        except ValueError as e:
            raise _fail(f"Invalid value: {e}", 2)

        master = create_master(host, port, unit_id, timeout)
        with master:
            if len(parsed) == 1:
                master.write(address, parsed[0])
            elif addr.table == ModbusTable.COIL:
                master.write_coils(addr.offset, [bool(v) for v in parsed])
            else:
                master.write_registers(addr.offset, [int(v) for v in parsed])
            typer.echo(f"OK: Wrote {normalize_address(address)} = {' '.join(values)}")
    except typer.Exit:
        raise
    except InvalidAddressError as e:
        raise _fail(f"Invalid address: {e}", 2)
    except (ModbusIOError, TransportError) as e:
        raise _fail(f"Connection/Modbus error: {e}", 3)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)


@app.command()
def explain(
    address: Annotated[str, typer.Argument(help="Address to explain (e.g., hr100, 300001)")],
    unit_id: UnitIdOption = 1,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show the Modbus table, offset, read function and request ADU for an address.

    Does not require a connection.
    """
    setup_logging(verbose)

    try:
        explained = ModbusMaster(config=MasterConfig(unit_id=unit_id)).explain(address)

        if json_output:
            typer.echo(json.dumps(explained, indent=2))
        else:
            typer.echo(f"Address:         {explained['address']}")
            typer.echo(f"Modbus table:    {explained['table']}")
            typer.echo(f"Offset:          {explained['offset']}")
            typer.echo(f"Width:           {explained['width']}")
            typer.echo(f"Function:        {explained['function']} ({explained['function_name']})")
            typer.echo(f"Request ADU:     {explained['request']}")
    except InvalidAddressError as e:
        raise _fail(f"Invalid address: {e}", 2)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)


@app.command()
def decode(
    data: Annotated[str, typer.Argument(help="ADU as hex (spaces and colons allowed)")],
    request: Annotated[bool, typer.Option("--request", help="Decode as a request instead of a response")] = False,
    count: Annotated[
        Optional[int], typer.Option("--count", "-n", help="Bit count for coil/discrete input responses")
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """
    Decode a captured ADU and print its fields as JSON.

    Does not require a connection.
    """
    setup_logging(verbose)

    try:
        raw = bytes.fromhex(data.replace(":", " "))
    except ValueError as e:
        raise _fail(f"Invalid hex: {e}", 2)

    try:
        if request:
            out = describe_request(codec.decode_request(raw))
        else:
            out = describe_response(codec.decode(raw), count)
        typer.echo(json.dumps(out, indent=2))
    except (MalformedADUError, ValueError) as e:
        raise _fail(f"Malformed ADU: {e}", 2)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)


@app.command(name="read-many")
def read_many(
    addresses: Annotated[list[str], typer.Argument(help="Addresses to read (space-separated)")],
    host: HostOption = None,
    port: PortOption = 502,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 0.5,
    verbose: VerboseOption = False,
    signed: SignedOption = False,
    partial: Annotated[bool, typer.Option("--partial", help="Return partial results if some addresses are invalid")] = False,
) -> None:
    """
    Read multiple addresses in a single batch operation.

    Groups addresses by table and coalesces contiguous offsets into one request.
    By default, fails entirely if any address is invalid.
    Use --partial to return results for valid addresses only.
    """
    setup_logging(verbose)

    try:
        valid: list[str] = []
        errors: dict[str, str] = {}
        for a in addresses:
            try:
                parse_address(a)
                valid.append(a)
            except InvalidAddressError as e:
                if not partial:
                    raise
                errors[a] = str(e)

        master = create_master(host, port, unit_id, timeout)
        results: dict[str, Any] = {}
        with master:
            if partial:
                if valid:
                    try:
                        results = _apply_signed(master.read_many(valid), signed)
                    except ModbusIOError as e:
                        for a in valid:
                            errors[a] = f"Modbus error: {e}"
                        results = {}
                output: dict[str, Any] = {"values": results}
                if errors:
                    output["errors"] = errors
                typer.echo(json.dumps(output, indent=2))
            else:
                results = _apply_signed(master.read_many(valid), signed)
                typer.echo(json.dumps(results, indent=2))
    except typer.Exit:
        raise
    except InvalidAddressError as e:
        raise _fail(f"Invalid address: {e}", 2)
    except (ModbusIOError, TransportError) as e:
        raise _fail(f"Connection/Modbus error: {e}", 3)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)


@app.command()
def poll(
    addresses: Annotated[list[str], typer.Argument(help="Addresses to poll (e.g., HR0 HR1 CO5)")],
    host: HostOption = None,
    port: PortOption = 502,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 0.5,
    verbose: VerboseOption = False,
    signed: SignedOption = False,
    interval: Annotated[float, typer.Option("--interval", "-i", help="Polling interval in seconds")] = 1.0,
    once: Annotated[bool, typer.Option("--once", help="Poll once and exit")] = False,
    format: Annotated[str, typer.Option("--format", "-f", help="Output format: text, json, csv")] = "text",
) -> None:
    """
    Continuously poll addresses at the specified interval.

    Outputs format:
    - text: timestamp + address=value pairs (default)
    - json: NDJSON with {"timestamp": "...", "values": {...}} per line
    - csv: addresses as columns, one row per poll cycle

    Use --once to poll once and exit.
    Press Ctrl+C to stop gracefully.
    """
    setup_logging(verbose)

    if format not in ("text", "json", "csv"):
        raise _fail(f"Invalid format '{format}'. Must be text, json, or csv.", 2)

    if interval <= 0:
        raise _fail(f"Interval must be positive, got {interval}", 2)

    if not addresses:
        raise _fail("At least one address is required for poll", 2)

    try:
        for a in addresses:
            parse_address(a)
        master = create_master(host, port, unit_id, timeout)

        if format == "csv":
            typer.echo("timestamp," + ",".join(addresses))

        with master:
            for results in master.poll_iter(addresses, interval):
                results = _apply_signed(results, signed)
                timestamp = datetime.now(timezone.utc).isoformat()
                formatted = {a: format_poll_value(results[a]) for a in addresses}

                if format == "text":
                    pairs = " ".join(f"{a}={formatted[a]}" for a in addresses)
                    typer.echo(f"{timestamp} {pairs}")
                elif format == "json":
                    typer.echo(json.dumps({"timestamp": timestamp, "values": formatted}))
                else:
                    typer.echo(timestamp + "," + ",".join(formatted[a] for a in addresses))

                if once:
                    break
    except typer.Exit:
        raise
    except InvalidAddressError as e:
        raise _fail(f"Invalid address: {e}", 2)
    except (ModbusIOError, TransportError) as e:
        raise _fail(f"Connection/Modbus error: {e}", 3)
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"mbtcp-master {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """mbtcp - Modbus/TCP master command line tool."""
    pass


if __name__ == "__main__":
    app()
