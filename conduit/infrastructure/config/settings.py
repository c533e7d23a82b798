"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
configuration file (``~/.conduit/config.yaml``). Provider overrides live
under the YAML ``providers:`` section; secrets (system API keys, OAuth
client credentials) are read from the environment variables named in the
provider registry.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".conduit"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS = 60.0

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values passed to the accessors

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. YAML file (lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. .env file; override=False keeps real environment variables on top
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no file found).")

    # 3. Environment variables are consulted by get_config on each lookup

    _loaded = True
    logger.debug("Configuration loading process completed.")


def reload_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Discards loaded values and loads again, e.g. after ``--config``."""
    global _loaded
    _loaded = False
    load_configuration(config_file=config_file, env_file=env_file)


def _coerce_env_value(value: str) -> Any:
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def _lookup_nested(data: Dict[str, Any], key: str) -> Any:
    """Resolves a dotted key against nested YAML mappings."""
    if key in data:
        return data[key]
    node: Any = data
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (``logging.level`` -> ``LOGGING_LEVEL``)
    3. YAML config (dotted keys walk nested sections)
    4. Default value

    Args:
        key: The configuration key
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace('.', '_')
    if env_key in os.environ:
        return _coerce_env_value(os.environ[env_key])

    try:
        return _lookup_nested(_config, key)
    except KeyError:
        logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
        return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    try:
        cwd = Path.cwd()
        for path in [cwd] + list(cwd.parents):
            env_path = path / ENV_FILE_NAME
            if env_path.is_file():
                return env_path
    except OSError as e:
        logger.warning(f"Error searching for .env file: {e}")
    return None


def set_config(key: str, value: Any) -> None:
    """Sets a configuration value by key for the rest of the process.

    Args:
        key: Configuration key (e.g., 'logging.level')
        value: Value to set
    """
    logger.debug(f"Setting config: {key} = {value}")
    _config[key] = value


# --- Convenience Functions ---

def get_log_level() -> str:
    level = get_config('logging.level', DEFAULT_LOG_LEVEL)
    return str(level).upper()


def get_log_file() -> Optional[str]:
    log_file = get_config('logging.file')
    return str(log_file) if log_file else None


def get_default_timeout() -> float:
    """Per-call HTTP timeout in seconds for providers that set none."""
    value = get_config('http.timeout_seconds', DEFAULT_TIMEOUT_SECONDS)
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid http.timeout_seconds value '{value}'. Using {DEFAULT_TIMEOUT_SECONDS}.")
        return DEFAULT_TIMEOUT_SECONDS


def get_cache_sweep_interval() -> float:
    value = get_config('cache.sweep_interval_seconds', DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS)
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid cache.sweep_interval_seconds value '{value}'. Using default.")
        return DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS


def get_provider_overrides() -> Dict[str, Dict[str, Any]]:
    """The ``providers:`` section: per-provider overrides and extra providers."""
    section = get_config('providers', {})
    if not isinstance(section, dict):
        logger.warning("Config 'providers' section is not a mapping. Ignoring it.")
        return {}
    return {str(name): dict(values or {}) for name, values in section.items()}


def get_credentials_file() -> Optional[Path]:
    """Path of the JSON credential store, when one is configured."""
    path = get_config('credentials.file')
    return Path(str(path)).expanduser() if path else None


def get_env_secret(env_var: Optional[str]) -> Optional[str]:
    """Reads a secret from the environment (after .env loading)."""
    if not env_var:
        return None
    value = os.environ.get(env_var)
    return value or None


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Set configuration values for testing purposes.

    These values override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# Load configuration when the module is imported
load_configuration()
