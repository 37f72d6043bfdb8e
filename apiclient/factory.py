"""
Process-wide backend client selection.

The choice between the hosted backend and the local demo store is made the
first time `get_client()` runs and is cached for the life of the process. In
hosted mode the local store is never opened.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import Optional, Union

from localdb.client import LocalBackendClient

from .config import BackendSettings, load_backend_settings
from .remote_client import RemoteBackendClient

BackendClient = Union[LocalBackendClient, RemoteBackendClient]

_CLIENT_LOCK = threading.Lock()
_CLIENT: Optional[BackendClient] = None
_DEMO_MODE: Optional[bool] = None

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)
logger.propagate = False
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logger.addHandler(handler)


def create_client(
    settings: Optional[BackendSettings] = None, *, store_url: Optional[str] = None
) -> BackendClient:
    """Build a fresh client for the given settings without caching it."""
    resolved = settings or load_backend_settings()
    if resolved.is_configured:
        return RemoteBackendClient(resolved)
    logger.warning("Backend not configured - running in demo mode.")
    return LocalBackendClient.open(store_url)


def get_client(
    settings: Optional[BackendSettings] = None, *, store_url: Optional[str] = None
) -> BackendClient:
    """Return the process-wide client, deciding the backend mode on first use."""
    global _CLIENT, _DEMO_MODE
    if _CLIENT is not None:
        return _CLIENT
    with _CLIENT_LOCK:
        if _CLIENT is not None:
            return _CLIENT
        client = create_client(settings, store_url=store_url)
        _DEMO_MODE = isinstance(client, LocalBackendClient)
        _CLIENT = client
        logger.info("Backend mode decided: demo=%s", _DEMO_MODE)
        return client


def is_demo_mode() -> bool:
    if _DEMO_MODE is None:
        get_client()
    return bool(_DEMO_MODE)


def reset_client_for_tests() -> None:
    """Forget the cached client so a test can decide the mode again."""
    global _CLIENT, _DEMO_MODE
    with _CLIENT_LOCK:
        if isinstance(_CLIENT, LocalBackendClient):
            _CLIENT.close()
        _CLIENT = None
        _DEMO_MODE = None
