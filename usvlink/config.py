"""
Configuration management for usvlink

All parameters are configurable and can be overridden via:
1. config/default.yaml
2. Environment variables (prefixed with USVLINK_)
3. Command line arguments
"""

import os
import logging
import yaml
from dataclasses import asdict, dataclass, field
from typing import Optional
from pathlib import Path

logger = logging.getLogger(__name__)

SECTIONS = ('bridge', 'mission', 'interface', 'logging')
ENV_PREFIX = "USVLINK_"
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "default.yaml"


@dataclass
class BridgeConfig:
    """Vehicle link configuration"""

    # mavutil connection string: serial device, udpin:/udpout:, tcp:
    connection_string: str = "udpin:0.0.0.0:14550"
    baudrate: int = 57600

    # MAVLink identities
    source_system: int = 255            # GCS
    source_component: int = 190         # MAV_COMP_ID_MISSIONPLANNER
    target_system: int = 1              # Replaced by heartbeat source
    target_component: int = 1

    # Deadlines
    heartbeat_timeout_s: float = 3.0    # Link lost after this long
    upload_timeout_s: float = 15.0      # Whole upload
    item_timeout_s: float = 2.0         # Each protocol reply

    # Serve from the in-memory bridge instead of a vehicle
    use_mock: bool = False


@dataclass
class MissionConfig:
    """Client-side mission defaults"""

    default_name: str = "USV Mission"


@dataclass
class InterfaceConfig:
    """Interface configuration"""

    # REST API
    rest_host: str = "0.0.0.0"
    rest_port: int = 8080
    cors_enabled: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration"""

    level: str = "INFO"
    file: str = ""                      # Empty = console only
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass
class Config:
    """Main configuration container"""

    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    mission: MissionConfig = field(default_factory=MissionConfig)
    interface: InterfaceConfig = field(default_factory=InterfaceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """
        Load configuration

        Defaults, then the YAML file (config/default.yaml unless given),
        then USVLINK_* environment variables.

        Raises:
            ValueError: If the file or an environment value is malformed
        """
        config = cls()

        path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        if path.exists():
            with open(path, 'r') as f:
                try:
                    data = yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise ValueError(f"Invalid YAML in {path}: {e}")
            if data:
                config._update_from_dict(data)
        elif config_path:
            logger.warning(f"Config file {path} not found, using defaults")

        config._update_from_env()

        return config

    def _section(self, name: str):
        return getattr(self, name) if name in SECTIONS else None

    def _update_from_dict(self, d: dict):
        """Update config from dictionary (e.g., YAML)"""
        for section_name, section_data in d.items():
            section = self._section(section_name)
            if section is None or not isinstance(section_data, dict):
                logger.warning(f"Ignoring config section '{section_name}'")
                continue
            for key, value in section_data.items():
                if not hasattr(section, key):
                    logger.warning(f"Ignoring unknown config key {section_name}.{key}")
                    continue
                setattr(section, key, value)

    def _update_from_env(self, environ=None):
        """Override config from USVLINK_<SECTION>_<KEY> variables"""
        if environ is None:
            environ = os.environ
        for name, raw in environ.items():
            if not name.startswith(ENV_PREFIX):
                continue
            # The key part may itself contain underscores
            section_name, _, key = name[len(ENV_PREFIX):].lower().partition("_")
            section = self._section(section_name)
            if section is None or not hasattr(section, key):
                continue
            setattr(section, key, _coerce(raw, getattr(section, key), name))

    def to_dict(self) -> dict:
        return {name: asdict(getattr(self, name)) for name in SECTIONS}

    def save(self, config_path: str):
        """Save current configuration to YAML file"""
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def _coerce(raw: str, current, name: str):
    """Parse an environment string to the type of the current value"""
    if isinstance(current, bool):
        return raw.strip().lower() in ('true', '1', 'yes', 'on')
    try:
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
    except ValueError:
        raise ValueError(f"{name}: expected {type(current).__name__}, got {raw!r}")
    return raw


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config):
    """Set the global configuration instance"""
    global _config
    _config = config
