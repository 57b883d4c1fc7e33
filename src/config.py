"""Configuration loading and validation module.

This module handles all YAML configuration loading and provides a typed
Config dataclass consumed by all other modules.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

import yaml


# Minimum poll interval to help avoid Helix rate limits
MIN_POLL_INTERVAL_MS = 30000


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


@dataclass
class TwitchConfig:
    """Twitch Helix credentials and polling configuration."""
    client_id: str
    client_secret: str
    check_interval_ms: int = MIN_POLL_INTERVAL_MS
    channels: List[str] = field(default_factory=list)


@dataclass
class SpreadsheetConfig:
    """Google Sheets channel list descriptor."""
    spreadsheet_id: str
    headers: List[str]
    sheet: Optional[str] = None


@dataclass
class DatabaseConfig:
    """Database configuration."""
    path: str


@dataclass
class Config:
    """Root configuration dataclass."""
    twitch: TwitchConfig
    database: DatabaseConfig
    google_spreadsheet: Optional[SpreadsheetConfig] = None


def _get_nested(data: dict, path: str, required: bool = True, default: Any = None) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Args:
        data: The dictionary to search
        path: Dot-separated path to the value (e.g., "twitch.client_id")
        required: If True, raises ConfigError when value is missing
        default: Default value if not required and missing

    Returns:
        The value at the path, or default if not required and missing

    Raises:
        ConfigError: If required value is missing
    """
    keys = path.split(".")
    current = data

    for key in keys:
        if not isinstance(current, dict):
            if required:
                raise ConfigError(f"Configuration path '{path}' is not a valid nested structure")
            return default
        if key not in current or current[key] is None:
            if required:
                raise ConfigError(f"Missing required configuration field: {path}")
            return default
        current = current[key]

    return current


def _validate_type(value: Any, expected_type: type, field_name: str) -> None:
    """Validate that a value is of the expected type.

    Args:
        value: The value to validate
        expected_type: The expected type
        field_name: Name of the field for error messages

    Raises:
        ConfigError: If value is not of the expected type
    """
    if not isinstance(value, expected_type):
        raise ConfigError(
            f"Field '{field_name}' must be of type {expected_type.__name__}, got {type(value).__name__}"
        )


def split_csv(value: str) -> List[str]:
    """Split a comma-separated config string, dropping empty entries."""
    return [part.strip() for part in value.split(",") if part.strip()]


def effective_poll_interval_ms(value: Any) -> int:
    """Return the poll interval floored to MIN_POLL_INTERVAL_MS.

    Values that cannot be read as an integer fall back to the minimum.
    """
    try:
        interval = int(value)
    except (TypeError, ValueError):
        return MIN_POLL_INTERVAL_MS
    return max(interval, MIN_POLL_INTERVAL_MS)


def load_config(path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Config: Validated configuration object

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a YAML dictionary")

    # Twitch configuration
    twitch_data = _get_nested(data, "twitch")

    client_id = _get_nested(twitch_data, "client_id")
    _validate_type(client_id, str, "twitch.client_id")

    client_secret = _get_nested(twitch_data, "client_secret")
    _validate_type(client_secret, str, "twitch.client_secret")

    check_interval_ms = _get_nested(
        twitch_data, "check_interval_ms", required=False, default=MIN_POLL_INTERVAL_MS
    )
    check_interval_ms = effective_poll_interval_ms(check_interval_ms)

    channels_value = _get_nested(twitch_data, "channels", required=False, default="")
    if isinstance(channels_value, list):
        for i, name in enumerate(channels_value):
            _validate_type(name, str, f"twitch.channels[{i}]")
        channels = [name.strip().lower() for name in channels_value if name.strip()]
    else:
        _validate_type(channels_value, str, "twitch.channels")
        channels = [name.lower() for name in split_csv(channels_value)]

    twitch = TwitchConfig(
        client_id=client_id,
        client_secret=client_secret,
        check_interval_ms=check_interval_ms,
        channels=channels,
    )

    # Spreadsheet configuration, only required without a static channel list
    google_spreadsheet = None
    sheet_data = _get_nested(data, "google_spreadsheet", required=not channels, default=None)
    if sheet_data is not None:
        spreadsheet_id = _get_nested(sheet_data, "spreadsheet_id")
        _validate_type(spreadsheet_id, str, "google_spreadsheet.spreadsheet_id")

        headers_value = _get_nested(sheet_data, "headers")
        _validate_type(headers_value, str, "google_spreadsheet.headers")
        headers = split_csv(headers_value)
        if not headers:
            raise ConfigError("google_spreadsheet.headers must name at least one column")

        sheet = _get_nested(sheet_data, "sheet", required=False, default=None)
        if sheet is not None:
            _validate_type(sheet, str, "google_spreadsheet.sheet")

        google_spreadsheet = SpreadsheetConfig(
            spreadsheet_id=spreadsheet_id,
            headers=headers,
            sheet=sheet,
        )

    # Database configuration
    database_data = _get_nested(data, "database")
    database_path = _get_nested(database_data, "path")
    _validate_type(database_path, str, "database.path")

    database = DatabaseConfig(path=database_path)

    return Config(
        twitch=twitch,
        database=database,
        google_spreadsheet=google_spreadsheet,
    )
