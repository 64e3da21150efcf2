"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
configuration file (~/.ecountgate/config.yaml). load_gate_settings() turns
the merged view into the GateSettings the composition root consumes.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

# Domain Layer Imports
from ecountgate.domain.errors import ValidationError

# Infrastructure Layer Imports
from ecountgate.infrastructure.resilience.api_retry import RetryConfig

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".ecountgate"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
DEFAULT_CACHE_TTL_MS = 10 * 60 * 1000

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file

    YAML keys use the same names as the environment variables, e.g.
    `ECOUNT_COM_CODE: "123456"`.

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
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
        else:
            if isinstance(yaml_config, dict):
                _config.update({str(k).upper(): v for k, v in yaml_config.items()})
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. .env file; override=False so real environment variables win
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug(".env file not found at or above current directory.")

    # 3. Environment variables are read on demand by get_config
    _loaded = True
    logger.debug("Configuration loading process completed.")


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def get_config(key: str, default: Any = None) -> Any:
    """Gets a configuration value by key.

    Priority: test overrides, environment variable, YAML config, default.
    Values are returned as found; only the typed getters below convert.
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper()
    if env_key in os.environ:
        return os.environ[env_key]

    if env_key in _config:
        return _config[env_key]

    logger.debug(f"Config key '{key}' not found. Returning default: {default}")
    return default


def get_bool_config(key: str, default: bool = False) -> bool:
    value = get_config(key, default)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in ("true", "1", "yes", "on"):
            return True
        if normalized in ("false", "0", "no", "off", ""):
            return False
        logger.warning(f"Unexpected value for {key}: '{value}'. Defaulting to {default}.")
        return default
    return bool(value) if value is not None else default


def get_int_config(key: str, default: Optional[int] = None) -> Optional[int]:
    value = get_config(key, default)
    if value is None or isinstance(value, int):
        return value
    if not str(value).strip():
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError.invalid_format(key, "an integer", value) from None


def get_str_config(key: str, default: Optional[str] = None) -> Optional[str]:
    value = get_config(key, default)
    if value is None:
        return None
    text = str(value).strip()
    return text or default


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Sets configuration values that override everything else.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {sorted(config_dict)}")


def clear_test_config() -> None:
    """Clears all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# --- Typed settings ---

@dataclass(frozen=True)
class GateSettings:
    com_code: str
    user_id: str
    api_cert_key: str
    use_test_server: bool = False
    session_file_path: Optional[Path] = None
    rate_limit_file_path: Optional[Path] = None
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS
    debug: bool = False
    retry: Optional[RetryConfig] = None


def _optional_path(key: str) -> Optional[Path]:
    value = get_str_config(key)
    return Path(value).expanduser() if value else None


def load_gate_settings() -> GateSettings:
    """Builds GateSettings from the merged configuration.

    Raises:
        ValidationError: If a credential is missing or a number is malformed.
    """
    load_configuration()

    credentials = {}
    for key in ("ECOUNT_COM_CODE", "ECOUNT_USER_ID", "ECOUNT_API_CERT_KEY"):
        value = get_str_config(key)
        if not value:
            raise ValidationError.required(key)
        credentials[key] = value

    retry_attempts = get_int_config("ECOUNT_RETRY_MAX_ATTEMPTS")
    retry = RetryConfig(max_attempts=retry_attempts) if retry_attempts else None

    return GateSettings(
        com_code=credentials["ECOUNT_COM_CODE"],
        user_id=credentials["ECOUNT_USER_ID"],
        api_cert_key=credentials["ECOUNT_API_CERT_KEY"],
        use_test_server=get_bool_config("ECOUNT_USE_TEST_SERVER"),
        session_file_path=_optional_path("ECOUNT_SESSION_FILE"),
        rate_limit_file_path=_optional_path("ECOUNT_RATE_LIMIT_FILE"),
        cache_ttl_ms=get_int_config("ECOUNT_CACHE_TTL_MS", DEFAULT_CACHE_TTL_MS),
        debug=get_bool_config("DEBUG"),
        retry=retry,
    )
