"""Configuration file loader with validation and environment overrides"""

import copy
import os
from pathlib import Path
from typing import Any, Dict

import yaml

from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = "config/settings.yaml"

REQUIRED_KEYS = ['version', 'local_cache', 'remote_store', 'sheets', 'logging']

# (environment variable, config section, key)
ENV_OVERRIDES = [
    ("BIZFLOW_CACHE_BACKEND", "local_cache", "backend"),
    ("BIZFLOW_CACHE_DIR", "local_cache", "directory"),
    ("REDIS_HOST", "local_cache", "redis_host"),
    ("SUPABASE_URL", "remote_store", "url"),
    ("SUPABASE_ANON_KEY", "remote_store", "api_key"),
    ("BIZFLOW_SHEET_TRANSPORT", "sheets", "transport"),
    ("BIZFLOW_CLIENT_ORIGIN", "sheets", "client_origin"),
    ("LOG_LEVEL", "logging", "level"),
]

ENDPOINT_ENV_OVERRIDES = {
    "BIZFLOW_TRANSACTIONS_SCRIPT_URL": "transactions",
    "BIZFLOW_CUSTOMERS_SCRIPT_URL": "customers",
    "BIZFLOW_OPERATIONS_SCRIPT_URL": "operations",
}


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load YAML configuration file with validation.
    Environment variables (see ENV_OVERRIDES) take precedence over the file.

    Args:
        config_path: Path to configuration file

    Returns:
        Dictionary with configuration

    Raises:
        ConfigurationError: If file doesn't exist, is invalid YAML or misses keys
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
    except OSError as e:
        raise ConfigurationError(f"Error loading configuration: {e}")

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    # Validate required keys
    missing_keys = [key for key in REQUIRED_KEYS if key not in config]

    if missing_keys:
        raise ConfigurationError(f"Missing required configuration keys: {missing_keys}")

    return apply_env_overrides(config)


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of config with environment variable overrides applied"""
    merged = copy.deepcopy(config)

    for env_var, section, key in ENV_OVERRIDES:
        value = os.getenv(env_var)
        if value:
            merged.setdefault(section, {})[key] = value

    endpoints = merged.setdefault('sheets', {}).setdefault('endpoints', {})
    for env_var, group in ENDPOINT_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            endpoints[group] = value

    return merged


def save_config(config_path: str, config: Dict[str, Any]) -> None:
    """
    Save configuration to YAML file

    Args:
        config_path: Path to configuration file
        config: Configuration dictionary

    Raises:
        ConfigurationError: If unable to write file
    """
    try:
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w') as f:
            yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    except OSError as e:
        raise ConfigurationError(f"Error saving configuration: {e}")


def get_section(config: Dict[str, Any], section: str) -> Dict[str, Any]:
    """
    Get one configuration section, empty dict if absent

    Args:
        config: Full configuration dictionary
        section: Top-level section name

    Returns:
        Section dictionary
    """
    return config.get(section) or {}
