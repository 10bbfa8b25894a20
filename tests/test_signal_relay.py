import copy

from finixrelay.core import protocol

from conftest import FakeConnection


def test_signal_is_forwarded_unchanged(core):
    a, b = FakeConnection("a"), FakeConnection("b")
    core.registry.register(a, "a", "A")
    core.registry.register(b, "b", "B")
    signal = {
        'type': 'offer',
        'sdp': 'v=0\r\no=- 4611731400430051336 2 IN IP4 127.0.0.1\r\n',
        'candidates': [{'candidate': 'candidate:1 1 udp 2122260223 10.0.0.2 54321 typ host', 'sdpMLineIndex': 0}],
        'meta': {'unicode': 'مرحبا', 'n': 1.5, 'none': None},
    }
    original = copy.deepcopy(signal)

    assert core.relay.relay_signal("a", "b", signal) is True

    assert core.connections.sent_to(b, protocol.RELAY_SIGNAL) == [{'fromDeviceId': 'a', 'signal': original}]
    assert core.connections.sent_to(a) == []


def test_signal_to_offline_target_is_dropped(core):
    core.registry.register(FakeConnection("a"), "a", "A")

    assert core.relay.relay_signal("a", "b", {'type': 'answer'}) is False
    assert core.connections.sent == []
    assert core.relay.dropped == 1


def test_signals_keep_issue_order(core):
    b = FakeConnection("b")
    core.registry.register(b, "b", "B")

    for i in range(5):
        core.relay.relay_signal("a", "b", {'seq': i})

    assert [p['signal']['seq'] for p in core.connections.sent_to(b)] == [0, 1, 2, 3, 4]
