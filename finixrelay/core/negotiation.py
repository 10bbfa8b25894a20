"""Request / accept / reject handshake between two online devices.

By default the coordinator is a stateless router: every message is resolved
with a fresh registry lookup and dropped when the peer is offline. With a
PendingNegotiations tracker attached, accept and reject are only honoured when
they answer a live, unexpired request.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from finixrelay.core import protocol
from finixrelay.core.directory import ConnectionDirectory
from finixrelay.core.registry import ConnectionRegistry
from finixrelay.core.tunnel import TunnelAddresses

logger = logging.getLogger(__name__)


class NegotiationState(str, Enum):
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    EXPIRED = 'expired'


@dataclass
class Negotiation:
    request_id: str
    initiator_id: str
    target_id: str
    created_at: float
    state: NegotiationState = NegotiationState.PENDING


class PendingNegotiations:
    """Open requests keyed by request id, expired lazily on access"""

    def __init__(self, ttl: float = 60, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._pending: Dict[str, Negotiation] = {}
        self._lock = threading.Lock()
        self.expired = 0

    def open(self, initiator_id: str, target_id: str) -> Negotiation:
        negotiation = Negotiation(
            request_id=uuid.uuid4().hex,
            initiator_id=initiator_id,
            target_id=target_id,
            created_at=self._clock(),
        )
        with self._lock:
            self._expire()
            self._pending[negotiation.request_id] = negotiation
        return negotiation

    def resolve(self, initiator_id: str, target_id: str, outcome: NegotiationState,
                request_id: Optional[str] = None) -> Optional[Negotiation]:
        """Close the matching pending request with outcome.

        Matches on request_id when given, otherwise the oldest pending request
        for the initiator/target pair. Returns None when nothing matches.
        """
        with self._lock:
            self._expire()
            if request_id is not None:
                candidate = self._pending.get(request_id)
                if candidate is None or (candidate.initiator_id, candidate.target_id) != (initiator_id, target_id):
                    return None
            else:
                candidate = next(
                    (n for n in self._pending.values()
                     if n.initiator_id == initiator_id and n.target_id == target_id),
                    None,
                )
                if candidate is None:
                    return None

            del self._pending[candidate.request_id]
            candidate.state = outcome
            return candidate

    def discard_device(self, device_id: str) -> int:
        """Drop every pending request the device takes part in"""
        with self._lock:
            stale = [request_id for request_id, n in self._pending.items()
                     if device_id in (n.initiator_id, n.target_id)]
            for request_id in stale:
                del self._pending[request_id]
        return len(stale)

    def _expire(self):
        now = self._clock()
        for request_id, negotiation in list(self._pending.items()):
            if now - negotiation.created_at >= self.ttl:
                negotiation.state = NegotiationState.EXPIRED
                del self._pending[request_id]
                self.expired += 1
                logger.debug(f"Negotiation {request_id} expired "
                             f"({negotiation.initiator_id} -> {negotiation.target_id})")

    def __len__(self) -> int:
        with self._lock:
            self._expire()
            return len(self._pending)


class NegotiationCoordinator:
    """Routes incoming-connection / connection-accepted / connection-rejected"""

    def __init__(self, registry: ConnectionRegistry, connections: ConnectionDirectory,
                 addresses: Optional[TunnelAddresses] = None,
                 pending: Optional[PendingNegotiations] = None):
        self.registry = registry
        self.connections = connections
        self.addresses = addresses or TunnelAddresses()
        self.pending = pending

        self.requests_forwarded = 0
        self.accepted = 0
        self.rejected = 0
        self.dropped = 0

    @property
    def strict(self) -> bool:
        return self.pending is not None

    def request_connection(self, from_device_id: str, from_device_name: str,
                           target_device_id: str, sender: Any = None) -> bool:
        if self.strict:
            owner = self.registry.lookup_by_connection(sender)
            if owner is None or owner.device_id != from_device_id:
                return self._drop(f"request {from_device_id} -> {target_device_id}: sender is not the initiator")

        target = self.registry.lookup(target_device_id)
        if target is None:
            return self._drop(f"request {from_device_id} -> {target_device_id}: target offline")

        payload = {
            'fromDeviceId': from_device_id,
            'fromDeviceName': from_device_name,
            'tunnelId': target.tunnel_id,
        }
        if self.strict:
            negotiation = self.pending.open(from_device_id, target_device_id)
            payload['requestId'] = negotiation.request_id

        self.connections.send_to(target.connection, protocol.INCOMING_CONNECTION, payload)
        self.requests_forwarded += 1
        logger.info(f"Connection request from {from_device_name} to {target.device_name}")
        return True

    def accept_connection(self, from_device_id: str, target_device_id: str,
                          target_device_name: str, sender: Any = None,
                          request_id: Optional[str] = None) -> bool:
        if self.strict and not self._close_pending(from_device_id, target_device_id, sender,
                                                   NegotiationState.ACCEPTED, request_id):
            return self._drop(f"accept {target_device_id} -> {from_device_id}: no pending request")

        initiator = self.registry.lookup(from_device_id)
        if initiator is None:
            return self._drop(f"accept {target_device_id} -> {from_device_id}: initiator offline")

        self.connections.send_to(initiator.connection, protocol.CONNECTION_ACCEPTED, {
            'targetDeviceId': target_device_id,
            'targetDeviceName': target_device_name,
            'tunnelUrl': self.addresses.peer_url(target_device_id),
        })
        self.accepted += 1
        logger.info(f"Connection accepted between {target_device_name} and {initiator.device_name}")
        return True

    def reject_connection(self, from_device_id: str, target_device_name: str,
                          sender: Any = None, request_id: Optional[str] = None) -> bool:
        if self.strict:
            owner = self.registry.lookup_by_connection(sender)
            target_id = owner.device_id if owner is not None else None
            if not self._close_pending(from_device_id, target_id, sender,
                                       NegotiationState.REJECTED, request_id):
                return self._drop(f"reject {target_device_name} -> {from_device_id}: no pending request")

        initiator = self.registry.lookup(from_device_id)
        if initiator is None:
            return self._drop(f"reject {target_device_name} -> {from_device_id}: initiator offline")

        self.connections.send_to(initiator.connection, protocol.CONNECTION_REJECTED, {
            'targetDeviceName': target_device_name,
        })
        self.rejected += 1
        logger.info(f"Connection rejected by {target_device_name} for {initiator.device_name}")
        return True

    def forget_device(self, device_id: str):
        """Discard pending requests of a device that went offline"""
        if self.strict:
            self.pending.discard_device(device_id)

    def _close_pending(self, initiator_id: str, target_id: Optional[str], sender: Any,
                       outcome: NegotiationState, request_id: Optional[str]) -> bool:
        # Only the device that was asked may answer
        owner = self.registry.lookup_by_connection(sender)
        if owner is None or target_id is None or owner.device_id != target_id:
            return False
        return self.pending.resolve(initiator_id, target_id, outcome, request_id) is not None

    def _drop(self, reason: str) -> bool:
        self.dropped += 1
        logger.debug(f"Dropped {reason}")
        return False

    def get_stats(self) -> dict:
        stats = {
            'requests_forwarded': self.requests_forwarded,
            'accepted': self.accepted,
            'rejected': self.rejected,
            'dropped': self.dropped,
            'strict': self.strict,
        }
        if self.strict:
            stats['pending'] = len(self.pending)
            stats['expired'] = self.pending.expired
        return stats
