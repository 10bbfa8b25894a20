"""Session directory and signaling relay core"""

from finixrelay.core.directory import ConnectionDirectory, DirectorySnapshotProducer
from finixrelay.core.dispatcher import EventDispatcher
from finixrelay.core.lifecycle import LifecycleManager
from finixrelay.core.negotiation import (
    Negotiation,
    NegotiationCoordinator,
    NegotiationState,
    PendingNegotiations,
)
from finixrelay.core.registry import ConnectionRegistry, DeviceSession
from finixrelay.core.relay import SignalRelay
from finixrelay.core.tunnel import TunnelAddresses

__all__ = [
    'ConnectionDirectory',
    'ConnectionRegistry',
    'DeviceSession',
    'DirectorySnapshotProducer',
    'EventDispatcher',
    'LifecycleManager',
    'Negotiation',
    'NegotiationCoordinator',
    'NegotiationState',
    'PendingNegotiations',
    'SignalRelay',
    'TunnelAddresses',
]
