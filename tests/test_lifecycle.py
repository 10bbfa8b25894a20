from finixrelay.core import protocol

from conftest import FakeConnection


def test_register_sends_tunnel_and_pushes_directory(core):
    conn = FakeConnection("a")

    session = core.lifecycle.register_device(conn, "a", "Laptop A", "198.51.100.1")

    assert core.connections.sent_to(conn, protocol.TUNNEL_CREATED) == [{
        'tunnelId': session.tunnel_id,
        'publicUrl': f"finixdesk://{session.tunnel_id}.render.com",
    }]
    assert len(core.connections.broadcasts) == 1
    event, payload = core.connections.broadcasts[0]
    assert event == protocol.DEVICES_UPDATED
    assert [d['deviceId'] for d in payload['devices']] == ["a"]


def test_register_sends_only_tunnel_created_directly(core):
    conn = FakeConnection("a")
    core.lifecycle.register_device(conn, "a", "A")

    assert [ev for _, ev, _ in core.connections.sent] == [protocol.TUNNEL_CREATED]


def test_each_registration_pushes_full_listing(core):
    core.lifecycle.register_device(FakeConnection("a"), "a", "A")
    core.lifecycle.register_device(FakeConnection("b"), "b", "B")

    latest = core.connections.broadcasts[-1][1]['devices']

    assert len(core.connections.broadcasts) == 2
    assert sorted(d['deviceId'] for d in latest) == ["a", "b"]
    assert all(d['isOnline'] for d in latest)


def test_disconnect_removes_device_and_broadcasts_once(core):
    a, b = FakeConnection("a"), FakeConnection("b")
    core.lifecycle.register_device(a, "a", "A")
    core.lifecycle.register_device(b, "b", "B")
    core.connections.clear()

    removed = core.lifecycle.disconnect(b)

    assert removed.device_id == "b"
    assert len(core.connections.broadcasts) == 1
    assert [d['deviceId'] for d in core.connections.broadcasts[0][1]['devices']] == ["a"]
    assert core.directory.listing()[0]['deviceId'] == "a"


def test_second_disconnect_is_a_no_op(core):
    conn = FakeConnection("a")
    core.lifecycle.register_device(conn, "a", "A")
    core.connections.clear()

    core.lifecycle.disconnect(conn)
    assert core.lifecycle.disconnect(conn) is None

    assert len(core.connections.broadcasts) == 1
    assert core.lifecycle.disconnects == 1


def test_disconnect_of_unregistered_connection_is_silent(core):
    assert core.lifecycle.disconnect(FakeConnection("ghost")) is None
    assert core.connections.broadcasts == []


def test_disconnect_of_superseded_connection_keeps_new_session(core):
    old, new = FakeConnection("old"), FakeConnection("new")
    core.lifecycle.register_device(old, "a", "A")
    core.lifecycle.register_device(new, "a", "A")
    core.connections.clear()

    assert core.lifecycle.disconnect(old) is None
    assert core.connections.broadcasts == []
    assert core.registry.lookup("a").connection is new


def test_directory_pull_matches_registry(core):
    core.lifecycle.register_device(FakeConnection("a"), "a", "A", "192.0.2.10")

    listing = core.directory.listing()

    assert listing[0]['publicIp'] == "192.0.2.10"
    assert listing[0]['hasTunnel'] is True
    assert 'connection' not in listing[0]
