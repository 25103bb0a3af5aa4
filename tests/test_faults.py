"""Tests for fault classification and routing."""

import socket
from unittest.mock import MagicMock

import pytest

from mbtcp_master.errors import (
    ConnectionLostError,
    MalformedADUError,
    ModbusIOError,
    NotConnectedError,
    ResponseTimeoutError,
    SendFailureError,
)
from mbtcp_master.faults import FaultMapper, classify
from mbtcp_master.types import FaultCode, FaultResponse, Operation


@pytest.mark.parametrize(
    ("exc", "code"),
    [
        (ResponseTimeoutError(), FaultCode.TIMEOUT),
        (socket.timeout(), FaultCode.TIMEOUT),
        (SendFailureError(), FaultCode.SEND_FAILURE),
        (NotConnectedError(), FaultCode.NOT_CONNECTED),
        (ConnectionLostError(), FaultCode.CONNECTION_LOST),
        (MalformedADUError("bad"), FaultCode.CONNECTION_LOST),
        (ConnectionResetError(), FaultCode.CONNECTION_LOST),
        (BrokenPipeError(), FaultCode.CONNECTION_LOST),
    ],
)
def test_classify(exc: BaseException, code: FaultCode) -> None:
    assert classify(exc) == code


def test_classify_rejects_non_transport_errors() -> None:
    with pytest.raises(TypeError):
        classify(KeyError("x"))


def test_fault_codes() -> None:
    assert [int(c) for c in FaultCode] == [1, 2, 3, 4, 5, 6, 10, 100, 253, 254, 255]
    assert FaultCode.DEVICE_BUSY.is_device
    assert not FaultCode.TIMEOUT.is_device
    assert FaultCode.TIMEOUT.description == "response timeout"


class TestFaultMapper:
    """Emitting faults to listeners and the teardown hook."""

    def test_for_operation_carries_request_ids(self) -> None:
        mapper = FaultMapper()
        op = Operation.write_single_register(77, 9, 1, 5)
        fault = mapper.for_operation(op, FaultCode.TIMEOUT)
        assert fault == FaultResponse(77, 9, 6, 255)

    def test_from_exception(self) -> None:
        mapper = FaultMapper()
        op = Operation.read_coils(3, 1, 0, 1)
        assert mapper.from_exception(SendFailureError(), op).code == 100

    def test_listeners_notified(self) -> None:
        mapper = FaultMapper()
        seen: list[FaultResponse] = []
        mapper.add_listener(seen.append)
        fault = FaultResponse(1, 1, 3, 2)
        assert mapper.emit(fault) is fault
        assert seen == [fault]

    def test_remove_listener(self) -> None:
        mapper = FaultMapper()
        seen: list[FaultResponse] = []
        mapper.add_listener(seen.append)
        mapper.remove_listener(seen.append)
        mapper.emit(FaultResponse(1, 1, 3, 2))
        assert seen == []

    def test_listener_exception_does_not_propagate(self) -> None:
        mapper = FaultMapper()
        seen: list[FaultResponse] = []
        mapper.add_listener(MagicMock(side_effect=RuntimeError("boom")))
        mapper.add_listener(seen.append)
        mapper.emit(FaultResponse(1, 1, 3, 2))
        assert len(seen) == 1

    def test_connection_lost_runs_teardown_before_listeners(self) -> None:
        order: list[str] = []
        mapper = FaultMapper(on_connection_lost=lambda: order.append("teardown"))
        mapper.add_listener(lambda f: order.append("listener"))
        mapper.emit(FaultResponse(1, 1, 3, FaultCode.CONNECTION_LOST))
        assert order == ["teardown", "listener"]

    def test_other_faults_do_not_tear_down(self) -> None:
        teardown = MagicMock()
        mapper = FaultMapper(on_connection_lost=teardown)
        mapper.emit(FaultResponse(1, 1, 3, FaultCode.TIMEOUT))
        mapper.emit(FaultResponse(1, 1, 3, FaultCode.DEVICE_BUSY))
        teardown.assert_not_called()


class TestFaultResponse:
    """FaultResponse accessors and raise_for_fault."""

    def test_unknown_code(self) -> None:
        fault = FaultResponse(1, 1, 3, 42)
        assert fault.fault is None
        assert fault.description == "unknown fault 42"
        assert fault.is_device_fault

    def test_raise_for_fault(self) -> None:
        fault = FaultResponse(5, 2, 3, FaultCode.ILLEGAL_DATA_VALUE)
        with pytest.raises(ModbusIOError) as exc_info:
            fault.raise_for_fault()
        err = exc_info.value
        assert err.code == 3
        assert err.fault is fault
        assert (err.transaction_id, err.unit_id, err.function) == (5, 2, 3)
        assert "illegal data value" in str(err)
