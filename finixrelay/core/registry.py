"""Connection registry: who is online, and on which connection"""

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DeviceSession:
    """Represents one online device."""
    device_id: str
    device_name: str
    connection: Any  # opaque transport handle, never shared between sessions
    source_address: Optional[str] = None
    connected_at: datetime = field(default_factory=_utcnow)
    tunnel_id: Optional[str] = None

    @property
    def has_tunnel(self) -> bool:
        return self.tunnel_id is not None

    def to_listing(self) -> Dict[str, Any]:
        """Public directory entry (never includes the connection handle)"""
        return {
            'deviceId': self.device_id,
            'deviceName': self.device_name,
            'publicIp': self.source_address,
            'isOnline': True,
            'connectionTime': self.connected_at.isoformat(),
            'hasTunnel': self.has_tunnel,
        }


class ConnectionRegistry:
    """Maps device ids to live sessions and back.

    All mutations and snapshot reads are serialized on one lock, so a
    snapshot never observes a half-applied register or remove.
    """

    def __init__(self, tunnel_id_factory: Callable[[], str] = None,
                 clock: Callable[[], datetime] = None):
        self._sessions: Dict[str, DeviceSession] = {}
        self._lock = threading.RLock()
        self._new_tunnel_id = tunnel_id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock or _utcnow

        self.registrations = 0
        self.replacements = 0
        self.removals = 0

    def register(self, connection: Any, device_id: str, device_name: str,
                 source_address: Optional[str] = None) -> DeviceSession:
        """Create or replace the session for device_id with a fresh tunnel id"""
        session = DeviceSession(
            device_id=device_id,
            device_name=device_name,
            connection=connection,
            source_address=source_address,
            connected_at=self._clock(),
            tunnel_id=self._new_tunnel_id(),
        )

        with self._lock:
            previous = self._sessions.get(device_id)
            if previous is not None:
                self.replacements += 1
                if previous.connection is not connection:
                    logger.info(f"Device {device_id} re-registered from a new connection, "
                                f"superseding the previous one")

            # A connection owns at most one session
            for other_id, other in list(self._sessions.items()):
                if other_id != device_id and other.connection is connection:
                    logger.info(f"Connection re-registered as {device_id}, dropping {other_id}")
                    del self._sessions[other_id]

            # Re-insert so the replacement moves to the end of registration order
            self._sessions.pop(device_id, None)
            self._sessions[device_id] = session
            self.registrations += 1

        return replace(session)

    def lookup(self, device_id: str) -> Optional[DeviceSession]:
        """Resolve a device id; None when the device is not online"""
        with self._lock:
            session = self._sessions.get(device_id)
            return replace(session) if session is not None else None

    def lookup_by_connection(self, connection: Any) -> Optional[DeviceSession]:
        with self._lock:
            for session in self._sessions.values():
                if session.connection is connection:
                    return replace(session)
        return None

    def remove_by_connection(self, connection: Any) -> Optional[DeviceSession]:
        """Remove and return the session owned by connection.

        Returns None when nothing matches, e.g. the session was already
        removed or superseded by a newer registration of the same id.
        """
        with self._lock:
            for device_id, session in list(self._sessions.items()):
                if session.connection is connection:
                    del self._sessions[device_id]
                    self.removals += 1
                    return replace(session)
        return None

    def snapshot(self) -> List[DeviceSession]:
        """Point-in-time copy of all sessions, in order of their latest registration"""
        with self._lock:
            return [replace(session) for session in self._sessions.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def count(self) -> int:
        """Number of devices currently online"""
        return len(self)

    def __contains__(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._sessions

    def get_stats(self) -> dict:
        return {
            'online': self.count(),
            'registrations': self.registrations,
            'replacements': self.replacements,
            'removals': self.removals,
        }
