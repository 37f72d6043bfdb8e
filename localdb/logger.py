from __future__ import annotations

import logging
import sys
from typing import Any, Dict

LOGGER_NAME = "wassel.localdb"
_SENSITIVE_KEYS = {"password", "access_token", "refresh_token"}

logger = logging.getLogger(LOGGER_NAME)
logger.setLevel(logging.INFO)
logger.propagate = False
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logger.addHandler(handler)


def scrub_sensitive(value: Any) -> Any:
    """Mask credential fields before a payload reaches the log."""
    if isinstance(value, dict):
        sanitized: Dict[str, Any] = {}
        for key, val in value.items():
            if isinstance(key, str) and key.lower() in _SENSITIVE_KEYS:
                sanitized[key] = "***"
            else:
                sanitized[key] = scrub_sensitive(val)
        return sanitized
    if isinstance(value, (list, tuple)):
        return [scrub_sensitive(item) for item in value]
    return value
