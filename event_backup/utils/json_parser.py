# event_backup/utils/json_parser.py
"""
Helpers for parsing webhook and queue JSON payloads.
Bodies arrive as str (API Gateway, SQS) or bytes (FastAPI).
"""

import json
from typing import Optional, Any, Union


def safe_parse_json(raw_body: Union[str, bytes, None]) -> Optional[Any]:
    """Parse a JSON body safely. Returns None on empty or invalid input."""
    if not raw_body:
        return None
    if isinstance(raw_body, bytes):
        raw_body = raw_body.decode("utf-8", errors="replace")
    try:
        return json.loads(raw_body)
    except (json.JSONDecodeError, TypeError):
        return None


def get_nested(data: dict, *keys: str, default: Any = None) -> Any:
    """Safely navigate nested dict keys. Returns default if any key is missing."""
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return default
        current = current.get(key, default)
        if current is default:
            return default
    return current


def pretty_json(data: Any) -> str:
    """Indented JSON for notification attachments."""
    return json.dumps(data, indent=2, default=str)
