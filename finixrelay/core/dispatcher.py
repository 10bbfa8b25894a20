"""Routes decoded device->server events to the core components"""

import logging
from typing import Any, Dict, Optional

from finixrelay.core import protocol
from finixrelay.core.lifecycle import LifecycleManager
from finixrelay.core.negotiation import NegotiationCoordinator
from finixrelay.core.relay import SignalRelay

logger = logging.getLogger(__name__)


class EventDispatcher:

    def __init__(self, lifecycle: LifecycleManager, negotiations: NegotiationCoordinator,
                 relay: SignalRelay):
        self.lifecycle = lifecycle
        self.negotiations = negotiations
        self.relay = relay
        self.events_by_type: Dict[str, int] = {}

    def handle(self, connection: Any, event: str, data: Dict[str, Any],
               source_address: Optional[str] = None):
        """Apply one validated event on behalf of connection"""
        self.events_by_type[event] = self.events_by_type.get(event, 0) + 1

        if event == protocol.REGISTER_DEVICE:
            self.lifecycle.register_device(
                connection, data['deviceId'], data['deviceName'], source_address)

        elif event == protocol.REQUEST_CONNECTION:
            self.negotiations.request_connection(
                data['fromDeviceId'], data['fromDeviceName'], data['targetDeviceId'],
                sender=connection)

        elif event == protocol.ACCEPT_CONNECTION:
            self.negotiations.accept_connection(
                data['fromDeviceId'], data['targetDeviceId'], data['targetDeviceName'],
                sender=connection, request_id=data.get('requestId'))

        elif event == protocol.REJECT_CONNECTION:
            self.negotiations.reject_connection(
                data['fromDeviceId'], data['targetDeviceName'],
                sender=connection, request_id=data.get('requestId'))

        elif event == protocol.RELAY_SIGNAL:
            self.relay.relay_signal(data['fromDeviceId'], data['targetDeviceId'], data['signal'])

        else:
            logger.warning(f"No handler for event: {event}")
