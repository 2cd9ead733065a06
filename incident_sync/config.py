# incident_sync/config.py
# Description: Configuration management for the incident sync client.
#
# Imports
import copy
import tomllib
import uuid
from pathlib import Path
from typing import Dict, Any, Optional
#
# Third-Party Imports
import toml
from loguru import logger
#
# Local Imports
from .Constants import (
    DEFAULT_API_TIMEOUT_SECONDS, DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_SUBMIT_TIMEOUT_SECONDS
)
#
#######################################################################################################################
#
# Functions:

# --- Path to the client's configuration file ---
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "incident_sync" / "config.toml"

# --- Default data directory ---
BASE_DATA_DIR = Path.home() / ".local" / "share" / "incident_sync"

CONFIG_TOML_CONTENT = f"""
# Configuration for the incident sync client
# This file is created with default values the first time the client runs.

[general]
log_level = "INFO"

[api]
# Base URL of the reports server (without the /api suffix)
base_url = "http://localhost:3000"
# Bearer token sent with every request, leave empty for none
token = ""
timeout_seconds = {DEFAULT_API_TIMEOUT_SECONDS}

[sync]
auto_sync = true
poll_interval_seconds = {DEFAULT_POLL_INTERVAL_SECONDS}
submit_timeout_seconds = {DEFAULT_SUBMIT_TIMEOUT_SECONDS}
# Initial connectivity assumption until the platform reports otherwise
start_online = true
# Generated on first run, identifies this device in idempotency keys
device_id = ""

[database]
records_db_path = "{(BASE_DATA_DIR / "incident_records.db").as_posix()}"

[logging]
log_filename = "incident_sync.log"
metrics_log_filename = "incident_sync_metrics.json"
rotation = "10 MB"
retention = "7 days"
"""

DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)


def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None

def load_settings(force_reload: bool = False) -> Dict[str, Any]:
    """
    Loads settings from ~/.config/incident_sync/config.toml.
    If the file doesn't exist, it's created with default values.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not DEFAULT_CONFIG_PATH.exists():
        logger.info(f"Config file not found at {DEFAULT_CONFIG_PATH}. Creating with default values.")
        try:
            DEFAULT_CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
            with open(DEFAULT_CONFIG_PATH, "w", encoding="utf-8") as f:
                # Write the commented template, not the parsed dictionary
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {DEFAULT_CONFIG_PATH}")
        except OSError as e:
            logger.error(f"Could not create default config file {DEFAULT_CONFIG_PATH}: {e}. Using internal defaults.")
    else:
        logger.info(f"Attempting to load config from: {DEFAULT_CONFIG_PATH}")
        try:
            with open(DEFAULT_CONFIG_PATH, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Successfully loaded and merged config from {DEFAULT_CONFIG_PATH}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {DEFAULT_CONFIG_PATH}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {DEFAULT_CONFIG_PATH}: {e}. Using internal defaults.")

    _CONFIG_CACHE = loaded_config
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return _CONFIG_CACHE


def get_cli_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_settings()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def save_setting_to_config(section: str, key: str, value: Any) -> bool:
    """
    Persists a single setting into the user's config file and the in-memory cache.
    Returns False if the file could not be written; the cached value is updated either way.
    """
    config = load_settings()
    config.setdefault(section, {})[key] = value

    file_data: Dict[str, Any] = {}
    if DEFAULT_CONFIG_PATH.exists():
        try:
            with open(DEFAULT_CONFIG_PATH, "r", encoding="utf-8") as f:
                file_data = toml.load(f)
        except (toml.TomlDecodeError, OSError) as e:
            logger.warning(f"Could not re-read {DEFAULT_CONFIG_PATH} before saving '{section}.{key}': {e}")
            file_data = copy.deepcopy(config)
    file_data.setdefault(section, {})[key] = value

    try:
        DEFAULT_CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
        with open(DEFAULT_CONFIG_PATH, "w", encoding="utf-8") as f:
            toml.dump(file_data, f)
    except OSError as e:
        logger.error(f"Failed to save setting '{section}.{key}' to {DEFAULT_CONFIG_PATH}: {e}")
        return False
    logger.info(f"Saved setting '{section}.{key}' to {DEFAULT_CONFIG_PATH}")
    return True


def get_or_create_device_id() -> str:
    """Returns the persistent device id, generating and saving one on first use."""
    device_id = get_cli_setting("sync", "device_id", "")
    if device_id:
        return str(device_id)
    device_id = uuid.uuid4().hex
    logger.info(f"No device id configured. Generated new device id {device_id}.")
    save_setting_to_config("sync", "device_id", device_id)
    return device_id


# --- Database and Log File Path Getters ---
def get_records_db_path() -> Path:
    default_db_path_str = DEFAULT_CONFIG_FROM_TOML["database"]["records_db_path"]
    db_path_str = get_cli_setting("database", "records_db_path", default_db_path_str)
    return Path(db_path_str).expanduser().resolve()


def _get_log_path(key: str) -> Path:
    log_filename = get_cli_setting("logging", key, DEFAULT_CONFIG_FROM_TOML["logging"][key])
    log_file_path = get_records_db_path().parent / log_filename
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create log directory {log_file_path.parent}: {e}")
    return log_file_path


def get_log_file_path() -> Path:
    return _get_log_path("log_filename")


def get_metrics_log_file_path() -> Path:
    return _get_log_path("metrics_log_filename")

#
# End of incident_sync/config.py
#######################################################################################################################
