"""Configuration management for the relay"""

import copy
import json
import os
from typing import Any, Dict, Optional
import logging

from finixrelay.exceptions import ConfigError

logger = logging.getLogger(__name__)

# Environment variable -> dot-notation key
ENV_OVERRIDES = {
    'PORT': 'server.port',
    'RELAY_HOST': 'server.host',
    'RELAY_LOG_LEVEL': 'logging.level',
}


class Config:
    """Configuration manager for the relay"""

    def __init__(self, config_path: str = "config.json", environ: Optional[Dict[str, str]] = None):
        self.config_path = config_path
        self.environ = os.environ if environ is None else environ
        self.config: Dict[str, Any] = {}
        self.load()

    def load(self):
        """Load configuration from file, then apply environment overrides"""
        try:
            if os.path.exists(self.config_path):
                with open(self.config_path, 'r') as f:
                    self.config = json.load(f)
                logger.info(f"Configuration loaded from {self.config_path}")
            else:
                example_path = "config.example.json"
                if os.path.exists(example_path):
                    with open(example_path, 'r') as f:
                        self.config = json.load(f)
                    logger.warning(f"No {self.config_path} found, loaded from {example_path}")
                else:
                    logger.info("No configuration file found, using defaults")
                    self.config = self._default_config()
        except (OSError, ValueError) as e:
            logger.error(f"Error loading configuration: {e}")
            self.config = self._default_config()

        self.apply_env()

    def apply_env(self):
        """Override values from environment variables"""
        for env_name, key in ENV_OVERRIDES.items():
            value = self.environ.get(env_name)
            if value:
                self.set(key, value)
                logger.debug(f"{key} overridden by ${env_name}")

    def save(self):
        """Save configuration to file"""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.config, f, indent=2)
            logger.info(f"Configuration saved to {self.config_path}")
        except OSError as e:
            logger.error(f"Error saving configuration: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-notation key"""
        keys = key.split('.')
        value = self.config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any):
        """Set configuration value by dot-notation key"""
        keys = key.split('.')
        config = self.config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def get_int(self, key: str, default: int) -> int:
        """Get an integer value, accepting numeric strings from the environment"""
        value = self.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be an integer, got {value!r}")

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(value)

    def log_level(self) -> int:
        """Numeric level for logging.level; names are case-insensitive"""
        value = self.get('logging.level', 'INFO')
        level = logging.getLevelName(str(value).strip().upper())
        if not isinstance(level, int):
            raise ConfigError(f"logging.level must be a logging level name, got {value!r}")
        return level

    @staticmethod
    def _default_config() -> Dict[str, Any]:
        """Return default configuration"""
        return copy.deepcopy(DEFAULT_CONFIG)


DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 3000,
        "ws_path": "/ws",
        "send_queue_size": 256,
        "trust_forwarded_for": False,
        "cors_origins": "*",
        "heartbeat": 25
    },
    "tunnel": {
        "public_url_template": "finixdesk://{tunnel_id}.render.com",
        "peer_url_template": "rdp://{device_id}.finixdesk.com:3389"
    },
    "negotiation": {
        "track_pending": False,
        "pending_ttl": 60
    },
    "logging": {
        "level": "INFO"
    }
}
