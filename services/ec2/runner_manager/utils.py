from __future__ import annotations

import json
import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("ec2_runner_manager")

_LABEL_ALPHABET = string.ascii_lowercase + string.digits


def generate_label(length: int = 5) -> str:
    """Return a random lowercase alphanumeric runner label."""
    return "".join(secrets.choice(_LABEL_ALPHABET) for _ in range(length))


def parse_instance_ids(raw: str | list[str] | None) -> list[str]:
    """
    Parse instance ids passed between CI steps.

    Args:
        raw: A JSON list string such as '["i-1", "i-2"]', a bare id,
            or an already-parsed list.

    Returns:
        Instance ids in the order given.

    Examples:
        '["i-0abc", "i-0def"]' -> ["i-0abc", "i-0def"]
        "i-0abc" -> ["i-0abc"]
        "" -> []
    """
    if raw is None:
        return []
    if isinstance(raw, list):
        return [str(item) for item in raw]
    text = raw.strip()
    if not text:
        return []
    if text.startswith("["):
        data = json.loads(text)
        if not isinstance(data, list):
            raise ValueError(f"Expected a JSON list of instance ids, got {raw!r}")
        return [str(item) for item in data]
    if text.startswith('"'):
        return [str(json.loads(text))]
    return [text]


def parse_creation_date(value: Any) -> datetime:
    """
    Parse an EC2 image CreationDate into an aware datetime.

    EC2 returns ISO 8601 strings like "2024-05-01T12:30:00.000Z"; boto3
    stubs and older SDKs may hand back datetime objects directly. Missing
    or unparseable values sort before every real date.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable image CreationDate %r, treating it as oldest", value)
            return datetime.min.replace(tzinfo=timezone.utc)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.min.replace(tzinfo=timezone.utc)
