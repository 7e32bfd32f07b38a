from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

logger = logging.getLogger("ec2_runner_manager")

# Load environment variables from .env file; the process environment wins
_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path, override=False)
    logger.debug("Loaded environment from %s", _env_path)

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


def get_env(key: str, default: str | None = None) -> str | None:
    """
    Get environment variable with optional default value.

    Blank values count as unset, which is how CI systems pass
    optional inputs that were left empty.

    Args:
        key: Environment variable name.
        default: Default value if variable is not set.

    Returns:
        Environment variable value or default.
    """
    value = os.environ.get(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def get_env_int(key: str, default: int | None) -> int | None:
    """
    Get environment variable as integer.

    Args:
        key: Environment variable name.
        default: Default value if variable is not set or invalid.

    Returns:
        Integer value from environment or default.
    """
    value = get_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid int value for %s, using default: %s", key, default)
        return default


def get_env_bool(key: str, default: bool = False) -> bool:
    """
    Get environment variable as boolean.

    Accepts 1/true/yes/on and 0/false/no/off, case-insensitive.
    """
    value = os.environ.get(key)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logger.warning("Invalid bool value for %s, using default: %s", key, default)
    return default


def get_env_json(key: str, default: Any = None) -> Any:
    """Get environment variable decoded as JSON, or default if unset or malformed."""
    value = get_env(key)
    if value is None:
        return default
    try:
        return json.loads(value)
    except ValueError:
        logger.warning("Invalid JSON value for %s, using default: %s", key, default)
        return default
