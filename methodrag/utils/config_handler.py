import os
import yaml
from typing import Any, Dict, List, Optional
import logging

from methodrag.utils.error_handler import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.environ.get("METHODRAG_CONFIG", "config/config.yaml")

# Environment variables consulted when the YAML leaves a key unset
ENV_FALLBACKS = {
    "sync.token": "GITHUB_TOKEN",
    "sync.repo": "METHODRAG_REPO",
    "catalog.directory": "METHODRAG_CATALOG_DIR",
}

class ConfigHandler:
    """Process-wide settings read from one YAML file.

    Components never hold a reference to the parsed document; they call
    ``config.get('section.key', default)`` when they are constructed, so a
    later ``load_config`` affects components built after it.
    """

    _instance = None
    _config = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigHandler, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self._config = {}
            self.source_path: Optional[str] = None

    @staticmethod
    def load(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
        """
        Parse a YAML configuration file.

        Args:
            config_path: Path to the configuration file

        Returns:
            The parsed mapping (empty for an empty file)

        Raises:
            ConfigurationError: If the file is missing, unreadable, not YAML,
                or not a mapping at the top level
        """
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            logger.error(f"Configuration file not readable: {config_path}")
            raise ConfigurationError(f"Could not load configuration from {config_path}: {str(e)}",
                                     {"path": config_path}) from e
        except yaml.YAMLError as e:
            logger.error(f"Error parsing configuration file: {str(e)}")
            raise ConfigurationError(f"Could not load configuration from {config_path}: invalid YAML",
                                     {"path": config_path, "error": str(e)}) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration in {config_path} must be a mapping",
                                     {"path": config_path})
        logger.info(f"Configuration loaded from {config_path}")
        return data

    @classmethod
    def get_instance(cls) -> 'ConfigHandler':
        if cls._instance is None:
            cls._instance = ConfigHandler()
        return cls._instance

    def load_config(self, config_path: str = DEFAULT_CONFIG_PATH) -> None:
        """Load a file into the shared instance. On error the previous settings stay."""
        self._config = self.load(config_path)
        self.source_path = config_path

    def update(self, values: Dict[str, Any]) -> None:
        """Replace the settings wholesale without reading a file."""
        self._config = dict(values)
        self.source_path = None

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a dotted key such as 'sync.interval_minutes'.

        Missing keys, explicit nulls and empty sections fall back to the
        environment variable named in ENV_FALLBACKS, then to ``default``.
        False and 0 are returned as set.
        """
        value = self._config
        for part in key.split('.'):
            if not isinstance(value, dict):
                logger.error(f"Error retrieving config key '{key}': '{part}' is not under a section")
                value = None
                break
            value = value.get(part)

        if value is None or value == {}:
            env_name = ENV_FALLBACKS.get(key)
            if env_name and os.environ.get(env_name):
                return os.environ[env_name]
            return default
        return value

    def require(self, key: str) -> Any:
        """Like ``get`` but a missing value raises ConfigurationError."""
        value = self.get(key)
        if value is None:
            raise ConfigurationError(f"Missing required configuration key: {key}", {"key": key})
        return value

    def validate_required_keys(self, required_keys: List[str]) -> bool:
        """
        Check that every key resolves to a value.

        Returns:
            True if all keys are present, False (after logging each gap) otherwise
        """
        missing = [key for key in required_keys if self.get(key) is None]
        for key in missing:
            logger.error(f"Missing required configuration key: {key}")
        return not missing

# Global instance
config = ConfigHandler.get_instance()
