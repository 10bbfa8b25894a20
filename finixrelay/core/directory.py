"""Directory listing of online devices, pulled on demand or pushed to everyone"""

import logging
from typing import Any, Dict, List, Protocol

from finixrelay.core import protocol
from finixrelay.core.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class ConnectionDirectory(Protocol):
    """Outbound delivery capability the transport exposes to the core.

    Both calls are best-effort and must return without waiting for delivery.
    """

    def send_to(self, connection: Any, event: str, payload: Dict[str, Any]) -> bool:
        ...

    def broadcast_all(self, event: str, payload: Dict[str, Any]) -> int:
        ...


class DirectorySnapshotProducer:
    """Derives the public device listing from the registry"""

    def __init__(self, registry: ConnectionRegistry, connections: ConnectionDirectory):
        self.registry = registry
        self.connections = connections
        self.broadcasts = 0

    def listing(self) -> List[Dict[str, Any]]:
        """Current listing (pull)"""
        return [session.to_listing() for session in self.registry.snapshot()]

    def push(self) -> List[Dict[str, Any]]:
        """Broadcast the complete listing to every open connection"""
        devices = self.listing()
        reached = self.connections.broadcast_all(protocol.DEVICES_UPDATED, {'devices': devices})
        self.broadcasts += 1
        logger.debug(f"Directory pushed: {len(devices)} devices to {reached} connections")
        return devices
