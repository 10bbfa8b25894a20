"""FinixDesk Relay: device rendezvous, directory and signaling relay"""

__version__ = "1.0.0"
