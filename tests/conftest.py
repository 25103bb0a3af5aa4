"""Shared fixtures: socketpair connections served by fake devices."""

import socket

import pytest

from devices import FakeDevice
from mbtcp_master.client import ModbusMaster
from mbtcp_master.connection import Connection, MasterConfig
from mbtcp_master.errors import NotConnectedError
from mbtcp_master.types import ChannelRole

TEST_TIMEOUT = 0.3


class PairConnector:
    """Hands out one end of a fresh socketpair per role; a FakeDevice serves the other end."""

    def __init__(self, timeout: float = TEST_TIMEOUT) -> None:
        self.timeout = timeout
        self.devices: dict[ChannelRole, FakeDevice] = {}
        self.fail_roles: set[ChannelRole] = set()
        self.acquired: list[Connection] = []
        self.all_devices: list[FakeDevice] = []

    def acquire_connection(self, role: ChannelRole) -> Connection:
        if role in self.fail_roles:
            raise NotConnectedError(f"refused {role.value}")
        ours, theirs = socket.socketpair()
        ours.settimeout(self.timeout)
        device = FakeDevice(theirs).start()
        self.devices[role] = device
        self.all_devices.append(device)
        conn = Connection(ours, role, peer=f"pair-{role.value}")
        self.acquired.append(conn)
        return conn

    def close(self) -> None:
        for device in self.all_devices:
            device.close()


@pytest.fixture
def connector():
    c = PairConnector()
    yield c
    c.close()


@pytest.fixture
def master(connector):
    m = ModbusMaster(config=MasterConfig(timeout=TEST_TIMEOUT), connector=connector)
    m.connect()
    yield m
    m.close()


@pytest.fixture
def sync_device(master, connector) -> FakeDevice:
    return connector.devices[ChannelRole.SYNC]


@pytest.fixture
def async_device(master, connector) -> FakeDevice:
    return connector.devices[ChannelRole.ASYNC]


@pytest.fixture
def pair():
    """A (Connection, FakeDevice) pair without a master."""
    ours, theirs = socket.socketpair()
    ours.settimeout(TEST_TIMEOUT)
    device = FakeDevice(theirs).start()
    conn = Connection(ours, ChannelRole.SYNC, peer="pair")
    yield conn, device
    conn.close()
    device.close()
