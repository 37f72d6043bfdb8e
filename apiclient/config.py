"""Connection settings for the hosted backend."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_DEFAULT_TIMEOUT = 10.0

# Load project-level and apiclient/.env configuration without overriding the
# real environment.
_ENV_CANDIDATES = [
    Path(__file__).resolve().parent / ".env",
    Path(__file__).resolve().parents[1] / ".env",
]
for env_path in _ENV_CANDIDATES:
    if env_path.exists():
        load_dotenv(env_path, override=False)


@dataclass(frozen=True)
class BackendSettings:
    url: str = ""
    anon_key: str = ""
    timeout: float = _DEFAULT_TIMEOUT

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.anon_key)

    @property
    def is_demo_mode(self) -> bool:
        return not self.is_configured


def _parse_timeout(raw: Optional[str]) -> float:
    cleaned = (raw or "").strip()
    if not cleaned:
        return _DEFAULT_TIMEOUT
    try:
        value = float(cleaned)
    except ValueError:
        raise ValueError(f"WASSEL_BACKEND_TIMEOUT must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError("WASSEL_BACKEND_TIMEOUT must be positive.")
    return value


def load_backend_settings() -> BackendSettings:
    url = (os.getenv("WASSEL_BACKEND_URL") or "").strip().rstrip("/")
    anon_key = (os.getenv("WASSEL_BACKEND_ANON_KEY") or "").strip()
    return BackendSettings(
        url=url,
        anon_key=anon_key,
        timeout=_parse_timeout(os.getenv("WASSEL_BACKEND_TIMEOUT")),
    )
