"""Registration and disconnect handling"""

import logging
from typing import Any, Optional

from finixrelay.core import protocol
from finixrelay.core.directory import ConnectionDirectory, DirectorySnapshotProducer
from finixrelay.core.negotiation import NegotiationCoordinator
from finixrelay.core.registry import ConnectionRegistry, DeviceSession
from finixrelay.core.tunnel import TunnelAddresses

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Keeps the registry in step with transport sessions.

    Every registry mutation is followed by a full directory push.
    """

    def __init__(self, registry: ConnectionRegistry, connections: ConnectionDirectory,
                 directory: DirectorySnapshotProducer,
                 addresses: Optional[TunnelAddresses] = None,
                 negotiations: Optional[NegotiationCoordinator] = None):
        self.registry = registry
        self.connections = connections
        self.directory = directory
        self.addresses = addresses or TunnelAddresses()
        self.negotiations = negotiations

        self.disconnects = 0

    def register_device(self, connection: Any, device_id: str, device_name: str,
                        source_address: Optional[str] = None) -> DeviceSession:
        session = self.registry.register(connection, device_id, device_name, source_address)

        self.connections.send_to(connection, protocol.TUNNEL_CREATED, {
            'tunnelId': session.tunnel_id,
            'publicUrl': self.addresses.public_url(session.tunnel_id),
        })
        self.directory.push()

        logger.info(f"Device registered: {device_name} ({device_id}) - Tunnel: {session.tunnel_id}")
        return session

    def disconnect(self, connection: Any) -> Optional[DeviceSession]:
        """Purge the session owned by a closed connection.

        Safe to call repeatedly; only the call that actually removes a
        session pushes the directory.
        """
        session = self.registry.remove_by_connection(connection)
        if session is None:
            return None

        if self.negotiations is not None:
            self.negotiations.forget_device(session.device_id)

        self.disconnects += 1
        self.directory.push()
        logger.info(f"Device disconnected: {session.device_name} ({session.device_id})")
        return session

    def get_stats(self) -> dict:
        return {
            'disconnects': self.disconnects,
            'directory_broadcasts': self.directory.broadcasts,
        }
