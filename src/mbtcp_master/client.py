"""ModbusMaster: owns both connections and exposes typed and address-based operations."""

import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import Future
from typing import Any, Callable, Iterator, Sequence

from . import codec
from .address import format_address, parse_address
from .async_exchange import AsyncExchange
from .connection import Connection, Connector, MasterConfig, TcpConnector
from .errors import ModbusIOError, NotConnectedError, TransportError
from .faults import FaultMapper
from .sync_exchange import SyncExchange
from .transactions import TransactionRegistry
from .types import (
    Address,
    ChannelRole,
    DataResponse,
    FaultResponse,
    FunctionCode,
    ModbusTable,
    Operation,
    Response,
)

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


def _coalesce_ranges(offset_to_key: dict[int, str]) -> list[tuple[int, int, list[tuple[int, str]]]]:
    """
    Group (offset, key) into contiguous ranges. Returns list of (start_offset, count, [(offset, key), ...]).
    """
    if not offset_to_key:
        return []
    sorted_offsets = sorted(offset_to_key.keys())
    ranges: list[tuple[int, int, list[tuple[int, str]]]] = []
    start = sorted_offsets[0]
    prev = start
    group: list[tuple[int, str]] = [(start, offset_to_key[start])]
    for off in sorted_offsets[1:]:
        if off == prev + 1:
            group.append((off, offset_to_key[off]))
            prev = off
        else:
            ranges.append((start, len(group), group))
            start = off
            prev = off
            group = [(off, offset_to_key[off])]
    ranges.append((start, len(group), group))
    return ranges


class ModbusMaster:
    """
    Modbus/TCP master holding one synchronous and one asynchronous connection.

    exchange() blocks on the sync connection; submit() returns a Future and the
    response is matched by transaction id on the async connection. Faults come
    back as FaultResponse values from the low-level calls and are raised as
    ModbusIOError by the typed helpers.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int = 502,
        unit_id: int = 1,
        timeout: float = 0.5,
        connect_timeout: float = 0.5,
        *,
        config: MasterConfig | None = None,
        connector: Connector | None = None,
    ) -> None:
        if config is None:
            config = MasterConfig(
                host=host or "localhost",
                port=port,
                unit_id=unit_id,
                timeout=timeout,
                connect_timeout=connect_timeout,
            )
        self._config = config
        self._connector: Connector = connector if connector is not None else TcpConnector(config)
        self._registry = TransactionRegistry()
        self._faults = FaultMapper(on_connection_lost=self._teardown)
        self._sync = SyncExchange(self._faults, config.timeout)
        self._async = AsyncExchange(self._faults, config.timeout, registry=self._registry)
        self._state_lock = threading.RLock()

    @property
    def config(self) -> MasterConfig:
        return self._config

    @property
    def unit_id(self) -> int:
        return self._config.unit_id

    @property
    def connected(self) -> bool:
        sync, async_ = self._sync.connection, self._async.connection
        return sync is not None and sync.connected and async_ is not None and async_.connected

    def connect(self) -> None:
        """Open the synchronous and asynchronous connections."""
        if self.connected:
            return
        # drop any half-open pair and let the old reader finish failing its requests
        self._teardown()
        self._async.join()
        with self._state_lock:
            opened: list[Connection] = []
            try:
                for role in (ChannelRole.SYNC, ChannelRole.ASYNC):
                    opened.append(self._connector.acquire_connection(role))
            except (TransportError, OSError) as e:
                for conn in opened:
                    conn.close()
                if isinstance(e, NotConnectedError):
                    raise
                raise NotConnectedError(
                    f"Failed to connect to {self._config.host}:{self._config.port}: {e}", cause=e
                ) from e
            sync_conn, async_conn = opened
            self._sync.attach(sync_conn)
            self._async.attach(async_conn)
        logger.info("Connected to %s:%d", self._config.host, self._config.port)

    def _teardown(self) -> None:
        # may run on the reader thread, so never joins it
        with self._state_lock:
            connections = [self._sync.detach(), self._async.detach()]
        for conn in connections:
            if conn is not None:
                conn.close()

    def close(self) -> None:
        """Close both connections; pending async requests complete with connection-lost faults."""
        self._teardown()
        self._async.join()

    def __enter__(self) -> "ModbusMaster":
        self.connect()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # -- low-level -------------------------------------------------------

    def next_transaction_id(self) -> int:
        return self._registry.next_id()

    def exchange(self, operation: Operation, timeout: float | None = None) -> Response:
        """Blocking exchange on the sync connection; faults are returned, not raised."""
        return self._sync.exchange(operation, timeout)

    def submit(self, operation: Operation) -> "Future[Response]":
        """Non-blocking exchange on the async connection."""
        return self._async.submit(operation)

    def on_response(self, listener: Callable[[DataResponse], None]) -> Callable[[DataResponse], None]:
        """Register a data listener for async responses. Usable as a decorator."""
        return self._async.add_listener(listener)

    def on_fault(self, listener: Callable[[FaultResponse], None]) -> Callable[[FaultResponse], None]:
        """Register a fault listener (sync and async faults). Usable as a decorator."""
        return self._faults.add_listener(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._async.remove_listener(listener)
        self._faults.remove_listener(listener)

    # -- typed helpers ---------------------------------------------------

    def _unit(self, unit_id: int | None) -> int:
        return self._config.unit_id if unit_id is None else unit_id

    def _call(self, operation: Operation, address: str | None = None) -> DataResponse:
        response = self.exchange(operation)
        if isinstance(response, FaultResponse):
            raise ModbusIOError(
                f"{response.description} (code {response.code}) for function {response.function}",
                transaction_id=response.transaction_id,
                unit_id=response.unit_id,
                function=response.function,
                address=address,
                fault=response,
            )
        return response

    def _read_bits(self, function: FunctionCode, address: int, count: int, unit_id: int | None) -> list[bool]:
        op = Operation(function, self.next_transaction_id(), self._unit(unit_id), address, count)
        bits = self._call(op).bits(count)
        if len(bits) < count:
            raise ModbusIOError("Short bit response", function=int(function), unit_id=op.unit_id)
        return bits

    def _read_words(self, function: FunctionCode, address: int, count: int, unit_id: int | None) -> list[int]:
        op = Operation(function, self.next_transaction_id(), self._unit(unit_id), address, count)
        registers = self._call(op).registers()
        if len(registers) < count:
            raise ModbusIOError("Short register response", function=int(function), unit_id=op.unit_id)
        return registers[:count]

    def read_coils(self, address: int, count: int = 1, unit_id: int | None = None) -> list[bool]:
        return self._read_bits(FunctionCode.READ_COILS, address, count, unit_id)

    def read_discrete_inputs(self, address: int, count: int = 1, unit_id: int | None = None) -> list[bool]:
        return self._read_bits(FunctionCode.READ_DISCRETE_INPUTS, address, count, unit_id)

    def read_holding_registers(self, address: int, count: int = 1, unit_id: int | None = None) -> list[int]:
        return self._read_words(FunctionCode.READ_HOLDING_REGISTERS, address, count, unit_id)

    def read_input_registers(self, address: int, count: int = 1, unit_id: int | None = None) -> list[int]:
        return self._read_words(FunctionCode.READ_INPUT_REGISTERS, address, count, unit_id)

    def write_coil(self, address: int, value: bool, unit_id: int | None = None) -> None:
        self._call(Operation.write_single_coil(self.next_transaction_id(), self._unit(unit_id), address, value))

    def write_register(self, address: int, value: int, unit_id: int | None = None) -> None:
        self._call(Operation.write_single_register(self.next_transaction_id(), self._unit(unit_id), address, value))

    def write_coils(self, address: int, values: Sequence[bool], unit_id: int | None = None) -> None:
        self._call(Operation.write_multiple_coils(self.next_transaction_id(), self._unit(unit_id), address, values))

    def write_registers(self, address: int, values: Sequence[int], unit_id: int | None = None) -> None:
        self._call(
            Operation.write_multiple_registers(self.next_transaction_id(), self._unit(unit_id), address, values)
        )

    def read_write_registers(
        self,
        read_address: int,
        read_count: int,
        write_address: int,
        values: Sequence[int],
        unit_id: int | None = None,
    ) -> list[int]:
        """Function 23: write values at write_address, then read read_count registers at read_address."""
        op = Operation.read_write_multiple_registers(
            self.next_transaction_id(), self._unit(unit_id), read_address, read_count, write_address, values
        )
        registers = self._call(op).registers()
        if len(registers) < read_count:
            raise ModbusIOError("Short register response", function=int(op.function), unit_id=op.unit_id)
        return registers[:read_count]

    # -- address API -----------------------------------------------------

    def _read_address(self, addr: Address, count: int = 1) -> list[bool] | list[int]:
        if addr.table == ModbusTable.COIL:
            return self.read_coils(addr.offset, count)
        if addr.table == ModbusTable.DISCRETE_INPUT:
            return self.read_discrete_inputs(addr.offset, count)
        if addr.table == ModbusTable.INPUT_REGISTER:
            return self.read_input_registers(addr.offset, count)
        return self.read_holding_registers(addr.offset, count)

    def read(self, address: str) -> bool | int:
        """Read a single address; returns bool for bits, int for registers."""
        addr = parse_address(address)
        try:
            return self._read_address(addr)[0]
        except ModbusIOError as e:
            e.address = format_address(addr)
            raise

    def read_range(self, address: str, count: int) -> list[bool] | list[int]:
        """Read count consecutive items of the same table starting at address."""
        addr = parse_address(address)
        try:
            return self._read_address(addr, count)
        except ModbusIOError as e:
            e.address = format_address(addr)
            raise

    def write(self, address: str, value: bool | int) -> None:
        """Write a single address (coils and holding registers only)."""
        addr = parse_address(address)
        if not addr.table.writable:
            raise ModbusIOError(
                f"Write not supported for table {addr.table.value}",
                address=format_address(addr),
            )
        try:
            if addr.table == ModbusTable.COIL:
                self.write_coil(addr.offset, bool(value))
            else:
                self.write_register(addr.offset, int(value))
        except ModbusIOError as e:
            e.address = format_address(addr)
            raise

    def read_many(self, addresses: list[str]) -> dict[str, bool | int]:
        """
        Read multiple addresses. Groups by table and coalesces contiguous offsets
        into one request per run, then demultiplexes results per address.
        """
        if not addresses:
            return {}
        by_table: dict[ModbusTable, dict[int, str]] = defaultdict(dict)
        canonical_to_originals: dict[str, list[str]] = defaultdict(list)
        for a in addresses:
            addr = parse_address(a)
            canonical = format_address(addr)
            canonical_to_originals[canonical].append(a)
            by_table[addr.table][addr.offset] = canonical

        out: dict[str, bool | int] = {}
        for table, offset_to_canonical in by_table.items():
            for start, count, group in _coalesce_ranges(offset_to_canonical):
                try:
                    values = self._read_address(Address(table, start), count)
                except ModbusIOError as e:
                    e.address = group[0][1]
                    raise
                for i, (_off, canonical) in enumerate(group):
                    for orig in canonical_to_originals[canonical]:
                        out[orig] = values[i]
        return out

    def explain(self, address: str) -> dict[str, Any]:
        """Return the parsed table, offset, read function and request ADU (for debugging)."""
        addr = parse_address(address)
        function = addr.table.read_function
        op = Operation(function, 0, self._config.unit_id, addr.offset, 1)
        return {
            "address": format_address(addr),
            "table": addr.table.value,
            "offset": addr.offset,
            "width": addr.width,
            "function": int(function),
            "function_name": function.name.lower(),
            "request": codec.hexdump(codec.encode(op)),
        }

    def poll_iter(
        self,
        addresses: list[str],
        interval_s: float,
    ) -> Iterator[dict[str, bool | int]]:
        """Yield read_many(addresses) every interval_s seconds indefinitely."""
        while True:
            yield self.read_many(addresses)
            time.sleep(interval_s)

    def __getitem__(self, address: str) -> bool | int:
        return self.read(address)

    def __setitem__(self, address: str, value: bool | int) -> None:
        self.write(address, value)
