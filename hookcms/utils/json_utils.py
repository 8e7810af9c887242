import json
from typing import Any


def normalize_value(value: Any) -> str | None:
    """Serialize a meta/option value; structured values get sorted keys."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str)


def parse_value(value: str | None) -> Any:
    """Best-effort inverse of normalize_value."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return value
