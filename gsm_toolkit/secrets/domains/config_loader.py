"""Configuration loader for gsm-toolkit."""
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .preferences import get_preference

logger = logging.getLogger(__name__)

DEFAULT_METADATA_URL = "http://metadata.google.internal/computeMetadata/v1"
DEFAULT_API_URL = "https://secretmanager.googleapis.com/v1"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "gsm-toolkit" / "config.yml"

# Environment overrides, applied after the config file
ENV_METADATA_URL = "GSM_METADATA_URL"
ENV_API_URL = "GSM_API_URL"


class ConfigError(Exception):
    """Configuration error exception."""
    pass


@dataclass(frozen=True)
class ClientConfig:
    """Endpoints, retry policy and transport limits for one client instance."""
    metadata_url: str = DEFAULT_METADATA_URL
    api_url: str = DEFAULT_API_URL
    retry_delay: float = 1.0
    max_attempts: int = 3
    request_timeout: float = 30.0
    max_body_size: int = 10 * 1024 * 1024
    max_idle_conns: int = 10
    max_idle_conns_per_host: int = 2


# YAML section -> {YAML key: (ClientConfig field, type)}
_SCHEMA = {
    "endpoints": {
        "metadata_url": ("metadata_url", str),
        "api_url": ("api_url", str),
    },
    "retry": {
        "delay_seconds": ("retry_delay", float),
        "max_attempts": ("max_attempts", int),
    },
    "http": {
        "timeout_seconds": ("request_timeout", float),
        "max_body_bytes": ("max_body_size", int),
        "max_idle_connections": ("max_idle_conns", int),
        "max_idle_connections_per_host": ("max_idle_conns_per_host", int),
    },
}


def _get_config_path() -> Optional[Path]:
    """
    Locate the config file.

    Priority order:
    1. User preference (stored in ~/.config/gsm-toolkit/preferences.json)
    2. Default location: ~/.config/gsm-toolkit/config.yml

    Returns:
        Path to the config file, or None when neither exists
    """
    config_path_pref = get_preference("config_path")
    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            logger.debug(f"Using config from preference: {config_path}")
            return config_path
        logger.warning(f"Config path from preference doesn't exist: {config_path}")

    if DEFAULT_CONFIG_PATH.exists():
        logger.debug(f"Using default config location: {DEFAULT_CONFIG_PATH}")
        return DEFAULT_CONFIG_PATH

    return None


def _coerce(section: str, key: str, value: Any, expected: type) -> Any:
    # bool is an int subclass but never a valid number here
    if isinstance(value, bool):
        raise ConfigError(f"'{section}.{key}' must be {expected.__name__}, got {value!r}")
    if expected is float and isinstance(value, int):
        return float(value)
    if not isinstance(value, expected):
        raise ConfigError(f"'{section}.{key}' must be {expected.__name__}, got {value!r}")
    return value


def _validate(config: ClientConfig) -> ClientConfig:
    for url_field in ("metadata_url", "api_url"):
        url = getattr(config, url_field)
        if not url.startswith(("http://", "https://")):
            raise ConfigError(f"{url_field} must be an http(s) URL, got {url!r}")

    if config.retry_delay < 0:
        raise ConfigError("retry.delay_seconds cannot be negative")
    if config.max_attempts < 1:
        raise ConfigError("retry.max_attempts must be at least 1")
    if config.request_timeout <= 0:
        raise ConfigError("http.timeout_seconds must be positive")
    if config.max_body_size < 1:
        raise ConfigError("http.max_body_bytes must be positive")
    if config.max_idle_conns < 1 or config.max_idle_conns_per_host < 1:
        raise ConfigError("http idle connection limits must be positive")

    # Trailing slashes would double up when paths are appended
    return replace(
        config,
        metadata_url=config.metadata_url.rstrip("/"),
        api_url=config.api_url.rstrip("/"),
    )


def config_from_dict(data: Dict[str, Any], source: str = "<dict>") -> ClientConfig:
    """
    Build a ClientConfig from the parsed YAML structure.

    Args:
        data: Mapping with optional 'endpoints', 'retry' and 'http' sections
        source: Where the data came from, used in error messages

    Raises:
        ConfigError: On unknown sections or keys, wrong types or bad ranges
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Config at {source} must be a mapping")

    overrides: Dict[str, Any] = {}
    for section, values in data.items():
        if section not in _SCHEMA:
            raise ConfigError(f"Unknown section '{section}' in config at {source}")
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"Section '{section}' in config at {source} must be a mapping")

        for key, value in values.items():
            if key not in _SCHEMA[section]:
                raise ConfigError(f"Unknown key '{section}.{key}' in config at {source}")
            field_name, expected = _SCHEMA[section][key]
            overrides[field_name] = _coerce(section, key, value, expected)

    return _validate(ClientConfig(**overrides))


def load_config(path: Optional[Union[str, Path]] = None) -> ClientConfig:
    """
    Load client configuration.

    The file is optional: without one, defaults apply. Environment variables
    GSM_METADATA_URL and GSM_API_URL override the file.

    Args:
        path: Explicit config file; resolved from preferences/default location if omitted

    Returns:
        Validated ClientConfig

    Raises:
        ConfigError: If an explicit path is missing, or the file is unreadable or invalid
    """
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found at: {config_path}")
    else:
        config_path = _get_config_path()

    data: Dict[str, Any] = {}
    if config_path is not None:
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
        except OSError as e:
            raise ConfigError(f"Failed to read config file at {config_path}: {e}")
        logger.info(f"Configuration loaded from {config_path}")

    config = config_from_dict(data, source=str(config_path or "<defaults>"))

    env_overrides = {}
    if os.getenv(ENV_METADATA_URL):
        env_overrides["metadata_url"] = os.environ[ENV_METADATA_URL]
    if os.getenv(ENV_API_URL):
        env_overrides["api_url"] = os.environ[ENV_API_URL]
    if env_overrides:
        logger.debug(f"Applying environment overrides: {sorted(env_overrides)}")
        config = _validate(replace(config, **env_overrides))

    return config
