"""Wire protocol: event names, required payload fields and JSON framing.

Every frame is a JSON object ``{"type": <event>, "data": {...}}``.
"""

import json
from typing import Any, Dict, Tuple

from finixrelay.exceptions import MalformedMessage

# device -> server
REGISTER_DEVICE = 'register-device'
REQUEST_CONNECTION = 'request-connection'
ACCEPT_CONNECTION = 'accept-connection'
REJECT_CONNECTION = 'reject-connection'
RELAY_SIGNAL = 'relay-signal'

# server -> device
TUNNEL_CREATED = 'tunnel-created'
DEVICES_UPDATED = 'devices-updated'
INCOMING_CONNECTION = 'incoming-connection'
CONNECTION_ACCEPTED = 'connection-accepted'
CONNECTION_REJECTED = 'connection-rejected'

REQUIRED_FIELDS: Dict[str, Tuple[str, ...]] = {
    REGISTER_DEVICE: ('deviceId', 'deviceName'),
    REQUEST_CONNECTION: ('fromDeviceId', 'fromDeviceName', 'targetDeviceId'),
    ACCEPT_CONNECTION: ('fromDeviceId', 'targetDeviceId', 'targetDeviceName'),
    REJECT_CONNECTION: ('fromDeviceId', 'targetDeviceName'),
    RELAY_SIGNAL: ('fromDeviceId', 'targetDeviceId', 'signal'),
}

OPTIONAL_FIELDS: Tuple[str, ...] = ('requestId',)

INBOUND_EVENTS = frozenset(REQUIRED_FIELDS)


def encode(event: str, payload: Dict[str, Any]) -> str:
    """Frame an event for the wire"""
    return json.dumps({'type': event, 'data': payload})


def decode(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse and validate an inbound frame.

    Returns ``(event, payload)``. Raises MalformedMessage for anything that is
    not a known device->server event carrying all of its required fields.
    ``signal`` may be any JSON value, including null; the other fields must be
    present, non-empty strings.
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        raise MalformedMessage("invalid JSON")

    if not isinstance(message, dict):
        raise MalformedMessage("frame is not an object")

    event = message.get('type')
    if event not in INBOUND_EVENTS:
        raise MalformedMessage(f"unknown event type: {event!r}")

    payload = message.get('data')
    if not isinstance(payload, dict):
        raise MalformedMessage(f"{event}: missing data object")

    missing = [
        name for name in REQUIRED_FIELDS[event]
        if name not in payload or (name != 'signal' and payload[name] in (None, ''))
    ]
    if missing:
        raise MalformedMessage(f"{event}: missing {', '.join(missing)}")

    # Ids and names key the registry; only the signal is free-form
    wrong_type = [
        name for name in REQUIRED_FIELDS[event] + OPTIONAL_FIELDS
        if name != 'signal' and name in payload and not isinstance(payload[name], str)
    ]
    if wrong_type:
        raise MalformedMessage(f"{event}: {', '.join(wrong_type)} must be strings")

    return event, payload
