"""Configuration manager for the Limbo BBS server.

This module handles loading, validating, and persisting server configuration.
"""

import os
import yaml
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass

from core.cursors import PostRange


@dataclass
class ServerConfig:
    """Network listener settings."""
    host: str = "127.0.0.1"
    port: int = 8828
    codec: str = "json"
    max_frame_size: int = 1048576  # 1 MB


@dataclass
class BoardConfig:
    """Board identity announced to clients."""
    name: str = "limbo"
    description: str = ""
    icon_url: str = "/static/icon.png"


@dataclass
class StorageConfig:
    """Storage configuration settings."""
    db_path: str = "~/.limbo/data/limbo.db"


@dataclass
class ListingConfig:
    """Thread listing settings."""
    page_size: int = 50
    anchor_skew_seconds: int = 5

    @property
    def anchor_skew(self) -> timedelta:
        return timedelta(seconds=self.anchor_skew_seconds)


@dataclass
class ThreadConfig:
    """Thread view settings."""
    default_range_start: int = 1
    default_range_end: int = 50

    @property
    def default_range(self) -> PostRange:
        return PostRange(self.default_range_start, self.default_range_end)


@dataclass
class SecurityConfig:
    """Account security settings."""
    username_length_limit: int = 32
    min_password_length: int = 3
    scrypt_n: int = 16384


@dataclass
class LoggingConfig:
    """Logging configuration settings."""
    level: str = "INFO"
    log_path: str = "~/.limbo/logs/limbo.log"
    max_log_size: int = 10485760  # 10 MB
    backup_count: int = 5


class ConfigManager:
    """Manages server configuration with validation and persistence."""

    DEFAULT_CONFIG_PATH = Path.home() / ".limbo" / "config" / "settings.yaml"
    BUNDLED_CONFIG_PATH = Path(__file__).parent / "settings.yaml"
    ENV_PREFIX = "LIMBO_"

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Optional custom path to configuration file.
                        If None, uses default user config path.
        """
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file with fallback to defaults."""
        # First, load bundled default config
        default_config = self._load_yaml(self.BUNDLED_CONFIG_PATH)

        # Then try to load user config
        if self.config_path.exists():
            user_config = self._load_yaml(self.config_path)
            # Merge user config over defaults
            self._config = self._merge_configs(default_config, user_config)
        else:
            # Use defaults and save to user config location
            self._config = default_config
            self.save_config()

        # Apply environment variable overrides
        self._apply_env_overrides()

        # Validate configuration
        self._validate_config()

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        """Load YAML configuration file.

        Args:
            path: Path to YAML file

        Returns:
            Dictionary containing configuration
        """
        try:
            with open(path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
                return config if config else {}
        except FileNotFoundError:
            return {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {path}: {e}")

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge two configuration dictionaries.

        Args:
            base: Base configuration dictionary
            override: Override configuration dictionary

        Returns:
            Merged configuration dictionary
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration.

        Environment variables should be prefixed with LIMBO_ and use
        double underscores for nested keys. For example:
        LIMBO_SERVER__PORT=9001
        """
        prefix = self.ENV_PREFIX

        for env_key, env_value in os.environ.items():
            if not env_key.startswith(prefix):
                continue

            # Remove prefix and split by double underscore
            config_key = env_key[len(prefix):].lower()
            parts = config_key.split("__")

            if len(parts) != 2:
                continue

            section, key = parts

            if section not in self._config:
                continue

            self._config[section][key] = self._convert_env_value(env_value)

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type.

        Args:
            value: String value from environment variable

        Returns:
            Converted value (int, bool, or str)
        """
        if value.lower() in ('true', 'yes'):
            return True
        if value.lower() in ('false', 'no'):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        return value

    def _validate_config(self) -> None:
        """Validate configuration has all required fields and correct types."""
        required_sections = [
            'server', 'bbs', 'storage', 'listing', 'thread', 'security', 'logging'
        ]

        for section in required_sections:
            if section not in self._config:
                raise ValueError(f"Missing required configuration section: {section}")

        server = self._config['server']
        self._validate_field(server, 'host', str)
        self._validate_field(server, 'port', int, 0, 65535)
        self._validate_field(server, 'codec', str)
        self._validate_field(server, 'max_frame_size', int, 1024, 67108864)
        if server['codec'] not in ('json', 'cbor'):
            raise ValueError(f"Field codec must be 'json' or 'cbor', got {server['codec']}")

        bbs = self._config['bbs']
        self._validate_field(bbs, 'name', str)
        self._validate_field(bbs, 'description', str)

        storage = self._config['storage']
        self._validate_field(storage, 'db_path', str)

        listing = self._config['listing']
        self._validate_field(listing, 'page_size', int, 1, 1000)
        self._validate_field(listing, 'anchor_skew_seconds', int, 0, 3600)

        thread = self._config['thread']
        self._validate_field(thread, 'default_range_start', int, 1, 1000000)
        self._validate_field(thread, 'default_range_end', int, 1, 1000000)
        if thread['default_range_end'] < thread['default_range_start']:
            raise ValueError("Field default_range_end must be >= default_range_start")

        security = self._config['security']
        self._validate_field(security, 'username_length_limit', int, 1, 256)
        self._validate_field(security, 'min_password_length', int, 0, 1024)
        self._validate_field(security, 'scrypt_n', int, 2, 2**20)
        if security['scrypt_n'] & (security['scrypt_n'] - 1):
            raise ValueError(f"Field scrypt_n must be a power of 2, got {security['scrypt_n']}")

        logging = self._config['logging']
        self._validate_field(logging, 'level', str)
        self._validate_field(logging, 'log_path', str)
        self._validate_field(logging, 'max_log_size', int, 1024, 104857600)
        self._validate_field(logging, 'backup_count', int, 0, 100)

    def _validate_field(self, section: Dict[str, Any], field: str,
                        expected_type: type, min_val: Optional[int] = None,
                        max_val: Optional[int] = None) -> None:
        """Validate a configuration field.

        Args:
            section: Configuration section dictionary
            field: Field name to validate
            expected_type: Expected type of the field
            min_val: Optional minimum value for numeric fields
            max_val: Optional maximum value for numeric fields

        Raises:
            ValueError: If validation fails
        """
        if field not in section:
            raise ValueError(f"Missing required field: {field}")

        value = section[field]

        # bool is an int subclass; a flag is never a valid count
        if expected_type is int and isinstance(value, bool):
            raise ValueError(f"Field {field} must be of type int, got bool")

        if not isinstance(value, expected_type):
            raise ValueError(
                f"Field {field} must be of type {expected_type.__name__}, "
                f"got {type(value).__name__}"
            )

        if expected_type in (int, float) and min_val is not None and value < min_val:
            raise ValueError(f"Field {field} must be >= {min_val}, got {value}")

        if expected_type in (int, float) and max_val is not None and value > max_val:
            raise ValueError(f"Field {field} must be <= {max_val}, got {value}")

    def save_config(self) -> None:
        """Save current configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.dump(self._config, f, default_flow_style=False, sort_keys=False)

    def get_config(self, section: str, key: Optional[str] = None) -> Any:
        """Get configuration value.

        Args:
            section: Configuration section name
            key: Optional key within section. If None, returns entire section.

        Returns:
            Configuration value

        Raises:
            KeyError: If section or key doesn't exist
        """
        if section not in self._config:
            raise KeyError(f"Configuration section not found: {section}")

        if key is None:
            return self._config[section]

        if key not in self._config[section]:
            raise KeyError(f"Configuration key not found: {section}.{key}")

        return self._config[section][key]

    def set_config(self, section: str, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            section: Configuration section name
            key: Key within section
            value: Value to set

        Raises:
            KeyError: If section doesn't exist
        """
        if section not in self._config:
            raise KeyError(f"Configuration section not found: {section}")

        self._config[section][key] = value

    def get_server_config(self) -> ServerConfig:
        """Get server configuration as dataclass."""
        return ServerConfig(**self._config['server'])

    def get_board_config(self) -> BoardConfig:
        """Get board configuration as dataclass."""
        return BoardConfig(**self._config['bbs'])

    def get_storage_config(self) -> StorageConfig:
        """Get storage configuration as dataclass."""
        return StorageConfig(**self._config['storage'])

    def get_listing_config(self) -> ListingConfig:
        """Get listing configuration as dataclass."""
        return ListingConfig(**self._config['listing'])

    def get_thread_config(self) -> ThreadConfig:
        """Get thread view configuration as dataclass."""
        return ThreadConfig(**self._config['thread'])

    def get_security_config(self) -> SecurityConfig:
        """Get security configuration as dataclass."""
        return SecurityConfig(**self._config['security'])

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration as dataclass."""
        return LoggingConfig(**self._config['logging'])

    def expand_path(self, path: str) -> Path:
        """Expand user home directory and environment variables in path.

        Args:
            path: Path string potentially containing ~ or environment variables

        Returns:
            Expanded Path object
        """
        return Path(os.path.expanduser(os.path.expandvars(path)))
