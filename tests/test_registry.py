import threading

from finixrelay.core import ConnectionRegistry

from conftest import FakeConnection


def test_register_returns_session_with_fresh_tunnel():
    registry = ConnectionRegistry()
    conn = FakeConnection("a")

    session = registry.register(conn, "a", "Laptop A", "198.51.100.7")

    assert session.device_id == "a"
    assert session.device_name == "Laptop A"
    assert session.source_address == "198.51.100.7"
    assert session.connection is conn
    assert session.tunnel_id
    assert session.has_tunnel


def test_reregistration_replaces_entry_with_new_tunnel(core):
    first = core.registry.register(FakeConnection("a1"), "a", "A")
    second = core.registry.register(FakeConnection("a2"), "a", "A (renamed)")

    snapshot = core.registry.snapshot()

    assert [s.device_id for s in snapshot] == ["a"]
    assert snapshot[0].tunnel_id == second.tunnel_id
    assert snapshot[0].tunnel_id != first.tunnel_id
    assert snapshot[0].device_name == "A (renamed)"
    assert core.registry.replacements == 1


def test_snapshot_has_one_entry_per_distinct_device():
    registry = ConnectionRegistry()
    for i in range(5):
        registry.register(FakeConnection(i), f"dev-{i}", f"Device {i}")

    snapshot = registry.snapshot()

    assert len(snapshot) == 5
    assert len({s.device_id for s in snapshot}) == 5
    assert len(registry) == 5


def test_lookup_missing_device_returns_none():
    registry = ConnectionRegistry()
    assert registry.lookup("nobody") is None
    assert "nobody" not in registry


def test_remove_by_connection_is_idempotent():
    registry = ConnectionRegistry()
    conn = FakeConnection("a")
    registry.register(conn, "a", "A")

    removed = registry.remove_by_connection(conn)

    assert removed is not None and removed.device_id == "a"
    assert registry.remove_by_connection(conn) is None
    assert registry.lookup("a") is None


def test_superseded_connection_does_not_remove_new_session():
    registry = ConnectionRegistry()
    old, new = FakeConnection("old"), FakeConnection("new")
    registry.register(old, "a", "A")
    registry.register(new, "a", "A")

    assert registry.remove_by_connection(old) is None
    assert registry.lookup("a").connection is new


def test_connection_owns_at_most_one_session():
    registry = ConnectionRegistry()
    conn = FakeConnection("a")
    registry.register(conn, "a", "A")
    registry.register(conn, "b", "B")

    assert registry.lookup("a") is None
    assert registry.lookup_by_connection(conn).device_id == "b"
    assert len(registry) == 1


def test_snapshot_is_a_copy():
    registry = ConnectionRegistry()
    registry.register(FakeConnection("a"), "a", "A")

    snapshot = registry.snapshot()
    snapshot[0].device_name = "tampered"
    snapshot.clear()

    assert registry.lookup("a").device_name == "A"
    assert len(registry.snapshot()) == 1


def test_listing_entry_hides_connection():
    registry = ConnectionRegistry()
    session = registry.register(FakeConnection("a"), "a", "A", "203.0.113.5")

    entry = session.to_listing()

    assert entry == {
        'deviceId': 'a',
        'deviceName': 'A',
        'publicIp': '203.0.113.5',
        'isOnline': True,
        'connectionTime': session.connected_at.isoformat(),
        'hasTunnel': True,
    }


def test_concurrent_registration_and_removal():
    registry = ConnectionRegistry()
    connections = [FakeConnection(i) for i in range(200)]

    def register_range(start):
        for i in range(start, start + 50):
            registry.register(connections[i], f"dev-{i}", f"Device {i}")

    def remove_range(start):
        for i in range(start, start + 50):
            registry.remove_by_connection(connections[i])

    workers = [threading.Thread(target=register_range, args=(i * 50,)) for i in range(4)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert len(registry.snapshot()) == 200

    workers = [threading.Thread(target=remove_range, args=(i * 50,)) for i in range(2)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    remaining = registry.snapshot()
    assert len(remaining) == 100
    assert {s.device_id for s in remaining} == {f"dev-{i}" for i in range(100, 200)}


def test_reregistered_device_moves_to_end_of_snapshot():
    registry = ConnectionRegistry()
    registry.register(FakeConnection("a1"), "a", "A")
    registry.register(FakeConnection("b"), "b", "B")
    registry.register(FakeConnection("a2"), "a", "A")

    assert [s.device_id for s in registry.snapshot()] == ["b", "a"]


def test_removed_session_is_a_copy():
    registry = ConnectionRegistry()
    conn = FakeConnection("a")
    registry.register(conn, "a", "A")
    stored = registry._sessions["a"]

    removed = registry.remove_by_connection(conn)

    assert removed is not stored
    assert removed == stored
    removed.device_name = "tampered"
    assert stored.device_name == "A"


def test_count_tracks_online_devices():
    registry = ConnectionRegistry()
    conn = FakeConnection("a")
    assert registry.count() == 0

    registry.register(conn, "a", "A")
    registry.register(FakeConnection("b"), "b", "B")
    registry.register(FakeConnection("a2"), "a", "A")
    assert registry.count() == 2 == len(registry)

    registry.remove_by_connection(conn)
    assert registry.count() == 2
