"""Opaque signal forwarding between online devices"""

import logging
from typing import Any

from finixrelay.core import protocol
from finixrelay.core.directory import ConnectionDirectory
from finixrelay.core.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class SignalRelay:
    """Forwards relay-signal payloads verbatim; never inspects the signal"""

    def __init__(self, registry: ConnectionRegistry, connections: ConnectionDirectory):
        self.registry = registry
        self.connections = connections
        self.signals_relayed = 0
        self.dropped = 0

    def relay_signal(self, from_device_id: str, target_device_id: str, signal: Any) -> bool:
        target = self.registry.lookup(target_device_id)
        if target is None:
            self.dropped += 1
            logger.debug(f"Dropped signal {from_device_id} -> {target_device_id}: target offline")
            return False

        self.connections.send_to(target.connection, protocol.RELAY_SIGNAL, {
            'fromDeviceId': from_device_id,
            'signal': signal,
        })
        self.signals_relayed += 1
        logger.debug(f"Relayed signal {from_device_id} -> {target_device_id}")
        return True

    def get_stats(self) -> dict:
        return {
            'signals_relayed': self.signals_relayed,
            'dropped': self.dropped,
        }
