import json
from datetime import datetime
from typing import Any, Dict

_DATETIME_TAG = "__datetime__"


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, dict):
        return {str(key): _encode_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode_value(item) for item in value]
    return value


def _decode_hook(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1 and _DATETIME_TAG in obj:
        return datetime.fromisoformat(obj[_DATETIME_TAG])
    return obj


def encode_value(value: Any) -> str:
    """
    Serialize a row (or any slot value) to a JSON string.
    Timestamps are tagged so they come back as datetime objects.
    """
    return json.dumps(_encode_value(value), separators=(",", ":"))


def decode_value(text: str) -> Any:
    return json.loads(text, object_hook=_decode_hook)
