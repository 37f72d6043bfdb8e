"""
Offline stand-in for the hosted authentication service.

Credentials live in the `auth_users` slot of the table store and the current
session in `auth_session`; at most one session exists at a time. Passwords are
kept verbatim because this store only ever holds demo accounts.

`sign_in_with_oauth` performs no identity check at all: it invents an account
for the named provider and signs it in so the demo can exercise social login
without network access.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import secrets
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from .logger import logger
from .protocol import (
    INVALID_CREDENTIALS_CODE,
    USER_EXISTS_CODE,
    AuthResponse,
    QueryError,
    Row,
    Session,
    auth_event,
    db_msg_status,
)
from .table_store import TableStore

USERS_SLOT = "auth_users"
SESSION_SLOT = "auth_session"
SESSION_LIFETIME_SECONDS = 3600

AuthCallback = Callable[[auth_event, Optional[Session]], Any]


def _generate_token(prefix: str, nbytes: int = 24) -> str:
    return f"{prefix}-{secrets.token_urlsafe(nbytes)}"


def _public_user(record: Row) -> Row:
    return {key: copy.deepcopy(val) for key, val in record.items() if key != "password"}


class Subscription:
    """Handle returned by `on_auth_state_change`; call it to unsubscribe."""

    def __init__(self, owner: "AuthListenerRegistry", handle: int) -> None:
        self._owner = owner
        self.handle = handle

    def unsubscribe(self) -> None:
        self._owner._remove_listener(self.handle)

    def __call__(self) -> None:
        self.unsubscribe()


class AuthListenerRegistry:
    """
    In-process table of auth state callbacks keyed by subscription handle.

    Dispatch takes a snapshot of the callbacks and calls each one in turn; a
    callback that raises is logged and skipped, and coroutine callbacks are
    scheduled on the running loop without being awaited. Nothing here is
    persisted.
    """

    def __init__(self) -> None:
        self._listeners: Dict[int, AuthCallback] = {}
        self._listeners_lock = threading.Lock()
        self._next_handle = 1
        self._pending_tasks: Set["asyncio.Task[Any]"] = set()

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        if not callable(callback):
            raise TypeError("Auth state callback must be callable.")
        with self._listeners_lock:
            handle = self._next_handle
            self._next_handle += 1
            self._listeners[handle] = callback
        return Subscription(self, handle)

    def _remove_listener(self, handle: int) -> None:
        with self._listeners_lock:
            self._listeners.pop(handle, None)

    @property
    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    def notify(self, event: auth_event, session: Optional[Session]) -> None:
        with self._listeners_lock:
            callbacks = list(self._listeners.values())
        for callback in callbacks:
            try:
                outcome = callback(event, session)
            except Exception:
                logger.exception("Auth listener failed while handling %s", event.value)
                continue
            if inspect.isawaitable(outcome):
                self._schedule(outcome, event)

    def _schedule(self, awaitable: Any, event: auth_event) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "Dropping async auth listener for %s: no running event loop.",
                event.value,
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = loop.create_task(awaitable)
        self._pending_tasks.add(task)
        task.add_done_callback(self._task_finished)

    def _task_finished(self, task: "asyncio.Task[Any]") -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async auth listener failed: %s", exc)


class AuthEmulator:
    def __init__(self, store: TableStore) -> None:
        self._store = store
        self.listeners = AuthListenerRegistry()

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        return self.listeners.on_auth_state_change(callback)

    def notify(self, event: auth_event, session: Optional[Session]) -> None:
        self.listeners.notify(event, session)

    # Credential store -------------------------------------------------------------
    def _load_users(self) -> List[Row]:
        return list(self._store.read_slot(USERS_SLOT, []) or [])

    def _save_users(self, users: List[Row]) -> None:
        self._store.write_slot(USERS_SLOT, users)

    def _new_record(
        self,
        *,
        email: str,
        password: Optional[str],
        user_metadata: Optional[Dict[str, Any]] = None,
        app_metadata: Optional[Dict[str, Any]] = None,
        prefix: str = "user",
    ) -> Row:
        return {
            "id": f"{prefix}-{secrets.token_hex(6)}",
            "email": email,
            "password": password,
            "user_metadata": dict(user_metadata or {}),
            "app_metadata": dict(app_metadata or {}),
            "aud": "authenticated",
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

    def replace_credentials(self, records: List[Row]) -> None:
        """Overwrite the credential store; used by the seeding routine."""
        emails = [record.get("email") for record in records]
        if len(set(emails)) != len(emails):
            raise ValueError("Credential emails must be unique.")
        with self._store.lock:
            self._save_users([dict(record) for record in records])

    # Sessions ---------------------------------------------------------------------
    def _start_session(self, record: Row) -> Session:
        issued_at = int(time.time())
        session = Session(
            access_token=_generate_token("mock-access-token"),
            refresh_token=_generate_token("mock-refresh-token"),
            expires_in=SESSION_LIFETIME_SECONDS,
            expires_at=issued_at + SESSION_LIFETIME_SECONDS,
            user=_public_user(record),
        )
        self._store.write_slot(SESSION_SLOT, session.to_dict())
        return session

    def current_session(self) -> Optional[Session]:
        raw = self._store.read_slot(SESSION_SLOT)
        if not raw:
            return None
        session = Session.from_dict(raw)
        if session.expires_at and session.expires_at <= int(time.time()):
            return None
        return session

    # Public API -------------------------------------------------------------------
    async def sign_up(
        self,
        email: str,
        password: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> AuthResponse:
        logger.info("Sign up requested for %s", email)
        with self._store.lock:
            users = self._load_users()
            if any(user.get("email") == email for user in users):
                return AuthResponse(
                    status=db_msg_status.DUPLICATE,
                    error=QueryError(USER_EXISTS_CODE, "User already exists"),
                )
            record = self._new_record(email=email, password=password, user_metadata=data)
            users.append(record)
            self._save_users(users)
            session = self._start_session(record)
        self.notify(auth_event.SIGNED_IN, session)
        return AuthResponse(
            status=db_msg_status.OK, user=_public_user(record), session=session
        )

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        logger.info("Sign in requested for %s", email)
        with self._store.lock:
            match = next(
                (
                    user
                    for user in self._load_users()
                    if user.get("email") == email
                    and user.get("password") is not None
                    and user.get("password") == password
                ),
                None,
            )
            if match is None:
                return AuthResponse(
                    status=db_msg_status.UNAUTHORIZED,
                    error=QueryError(
                        INVALID_CREDENTIALS_CODE, "Invalid login credentials"
                    ),
                )
            session = self._start_session(match)
        self.notify(auth_event.SIGNED_IN, session)
        return AuthResponse(
            status=db_msg_status.OK, user=_public_user(match), session=session
        )

    async def sign_in_with_oauth(self, provider: str) -> AuthResponse:
        provider_name = (provider or "").strip().lower()
        if not provider_name:
            raise ValueError("Provider name cannot be empty.")
        logger.info("Simulated %s sign in (no identity check in demo mode)", provider_name)
        suffix = secrets.token_hex(4)
        with self._store.lock:
            users = self._load_users()
            record = self._new_record(
                email=f"mock_{provider_name}_{suffix}@example.com",
                password=None,
                user_metadata={"full_name": f"Mock {provider_name.title()} User"},
                app_metadata={"provider": provider_name},
                prefix="oauth-user",
            )
            users.append(record)
            self._save_users(users)
            session = self._start_session(record)
        self.notify(auth_event.SIGNED_IN, session)
        return AuthResponse(
            status=db_msg_status.OK, user=_public_user(record), session=session
        )

    async def sign_out(self) -> AuthResponse:
        with self._store.lock:
            removed = self._store.delete_slot(SESSION_SLOT)
        logger.info("Sign out (session present=%s)", removed)
        self.notify(auth_event.SIGNED_OUT, None)
        return AuthResponse(status=db_msg_status.OK)

    async def get_session(self) -> Optional[Session]:
        with self._store.lock:
            return self.current_session()

    async def get_user(self) -> Optional[Row]:
        session = await self.get_session()
        return dict(session.user) if session else None
