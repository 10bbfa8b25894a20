import itertools
import json

import pytest

from finixrelay.app import RelayServer
from finixrelay.core import (
    ConnectionRegistry,
    DirectorySnapshotProducer,
    EventDispatcher,
    LifecycleManager,
    NegotiationCoordinator,
    SignalRelay,
    TunnelAddresses,
)
from finixrelay.utils.config import DEFAULT_CONFIG, Config


class FakeConnection:
    """Stand-in for a transport handle"""

    def __init__(self, name):
        self.name = name

    def __repr__(self):
        return f"<FakeConnection {self.name}>"


class RecordingDirectory:
    """Connection directory that records every delivery instead of sending it"""

    def __init__(self):
        self.sent = []
        self.broadcasts = []

    def send_to(self, connection, event, payload):
        self.sent.append((connection, event, payload))
        return True

    def broadcast_all(self, event, payload):
        self.broadcasts.append((event, payload))
        return 1

    def sent_to(self, connection, event=None):
        return [payload for conn, ev, payload in self.sent
                if conn is connection and (event is None or ev == event)]

    def clear(self):
        self.sent.clear()
        self.broadcasts.clear()


class Core:
    """Core components wired to a RecordingDirectory"""

    def __init__(self, pending=None):
        counter = itertools.count(1)
        self.connections = RecordingDirectory()
        self.addresses = TunnelAddresses()
        self.registry = ConnectionRegistry(tunnel_id_factory=lambda: f"tunnel-{next(counter)}")
        self.directory = DirectorySnapshotProducer(self.registry, self.connections)
        self.negotiations = NegotiationCoordinator(
            self.registry, self.connections, self.addresses, pending=pending)
        self.relay = SignalRelay(self.registry, self.connections)
        self.lifecycle = LifecycleManager(
            self.registry, self.connections, self.directory, self.addresses, self.negotiations)
        self.dispatcher = EventDispatcher(self.lifecycle, self.negotiations, self.relay)


@pytest.fixture
def core():
    return Core()


@pytest.fixture
def relay_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(DEFAULT_CONFIG))
    return Config(config_path=str(path), environ={})


@pytest.fixture
def relay(relay_config):
    return RelayServer(relay_config)


@pytest.fixture
async def client(aiohttp_client, relay):
    return await aiohttp_client(relay.app)
