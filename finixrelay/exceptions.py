"""Exceptions raised by the relay"""


class RelayError(Exception):
    """Base class for relay errors"""


class ConfigError(RelayError):
    """Invalid or unusable configuration"""


class MalformedMessage(RelayError):
    """Inbound frame could not be decoded into a known event"""
