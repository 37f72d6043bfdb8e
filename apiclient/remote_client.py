"""
HTTP client for the hosted backend.

`RemoteBackendClient` exposes the same surface as the local demo client
(`from_()`/`table()`, `auth`) but sends every call to the hosted REST and auth
endpoints with `requests`. Calls run in a worker thread so awaiting them does
not block the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

import requests

from localdb.auth import AuthListenerRegistry, Subscription
from localdb.logger import scrub_sensitive
from localdb.predicates import AnyEq, Eq, Gte, ILike, Predicate, any_eq, ilike, parse_or_filter
from localdb.protocol import (
    INVALID_CREDENTIALS_CODE,
    NOT_FOUND_CODE,
    AuthResponse,
    QueryAlreadyExecutedError,
    QueryError,
    QueryResponse,
    Row,
    Session,
    auth_event,
    db_msg_status,
    error_response,
    ok_response,
)

from .config import BackendSettings

_SINGLE_OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)
logger.propagate = False
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logger.addHandler(handler)


class RemoteBackendError(RuntimeError):
    """Raised when the hosted backend cannot be reached."""


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def encode_predicate(predicate: Predicate) -> Tuple[str, str]:
    """Translate a predicate into one REST query parameter."""
    if isinstance(predicate, Eq):
        if predicate.value is None:
            return predicate.column, "is.null"
        return predicate.column, f"eq.{_format_value(predicate.value)}"
    if isinstance(predicate, ILike):
        return predicate.column, f"ilike.*{predicate.pattern}*"
    if isinstance(predicate, Gte):
        return predicate.column, f"gte.{_format_value(predicate.value)}"
    if isinstance(predicate, AnyEq):
        clauses = ",".join(
            f"{clause.column}.eq.{_format_value(clause.value)}"
            for clause in predicate.clauses
        )
        return "or", f"({clauses})"
    raise TypeError(f"Unknown predicate type: {type(predicate).__name__}")


def _status_for(http_status: int, code: str) -> db_msg_status:
    if code == NOT_FOUND_CODE or http_status == 404:
        return db_msg_status.NOT_FOUND
    if code == "23505" or http_status == 409:
        return db_msg_status.DUPLICATE
    if code == INVALID_CREDENTIALS_CODE or http_status in (401, 403):
        return db_msg_status.UNAUTHORIZED
    return db_msg_status.INVALID_INPUT


def _error_from_response(resp: requests.Response) -> QueryError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = str(body.get("code") or body.get("error_code") or body.get("error") or resp.status_code)
    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or resp.reason
        or "Request failed"
    )
    return QueryError(code=code, message=str(message))


class _Transport:
    def __init__(self, settings: BackendSettings, session: Optional[requests.Session] = None) -> None:
        if not settings.is_configured:
            raise ValueError("Remote backend URL and anon key are required.")
        self.settings = settings
        self.http = session or requests.Session()
        self.access_token: Optional[str] = None

    def headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.settings.anon_key,
            "Authorization": f"Bearer {self.access_token or self.settings.anon_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[List[Tuple[str, str]]] = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        url = f"{self.settings.url}{path}"
        logger.info("%s %s params=%s body=%s", method, path, params, scrub_sensitive(json_body))
        try:
            return self.http.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self.headers(headers),
                timeout=self.settings.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Request to %s failed: %s", url, exc)
            raise RemoteBackendError(f"Request to {url} failed: {exc}") from exc


class RemoteQueryBuilder:
    """REST counterpart of `localdb.query_builder.QueryBuilder`."""

    def __init__(self, transport: _Transport, collection: str) -> None:
        self._transport = transport
        self.collection = collection
        self._columns = "*"
        self._predicates: List[Predicate] = []
        self._order: Optional[Tuple[str, bool]] = None
        self._limit: Optional[int] = None
        self._single = False
        self._method = "GET"
        self._payload: Any = None
        self._prefer: List[str] = []
        self._executed = False

    def _ensure_open(self) -> None:
        if self._executed:
            raise QueryAlreadyExecutedError(
                f"Query on {self.collection!r} has already been executed; build a new one."
            )

    def _add(self, predicate: Predicate) -> "RemoteQueryBuilder":
        self._ensure_open()
        self._predicates.append(predicate)
        return self

    def select(self, columns: str = "*") -> "RemoteQueryBuilder":
        self._ensure_open()
        self._columns = columns or "*"
        return self

    def eq(self, column: str, value: Any) -> "RemoteQueryBuilder":
        return self._add(Eq(column=column, value=value))

    def ilike(self, column: str, pattern: str) -> "RemoteQueryBuilder":
        return self._add(ilike(column, pattern))

    def gte(self, column: str, value: Any) -> "RemoteQueryBuilder":
        return self._add(Gte(column=column, value=value))

    def or_(self, filter_text: str) -> "RemoteQueryBuilder":
        return self._add(parse_or_filter(filter_text))

    def or_eq(self, clauses) -> "RemoteQueryBuilder":
        return self._add(any_eq(clauses))

    def order(
        self, column: str, *, ascending: bool = True, desc: Optional[bool] = None
    ) -> "RemoteQueryBuilder":
        self._ensure_open()
        if desc is not None:
            ascending = not desc
        self._order = (column, ascending)
        return self

    def limit(self, count: int) -> "RemoteQueryBuilder":
        self._ensure_open()
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValueError(f"Limit must be a non-negative integer, got {count!r}")
        self._limit = count
        return self

    def single(self) -> "RemoteQueryBuilder":
        self._ensure_open()
        self._single = True
        return self

    def _set_mutation(self, method: str, payload: Any, prefer: List[str]) -> "RemoteQueryBuilder":
        self._ensure_open()
        if self._method != "GET":
            raise ValueError("Query already holds a mutation.")
        self._method = method
        self._payload = payload
        self._prefer = prefer
        return self

    def insert(self, rows) -> "RemoteQueryBuilder":
        return self._set_mutation("POST", rows, ["return=representation"])

    def upsert(self, rows) -> "RemoteQueryBuilder":
        return self._set_mutation(
            "POST", rows, ["resolution=merge-duplicates", "return=representation"]
        )

    def update(self, patch: Mapping[str, Any]) -> "RemoteQueryBuilder":
        return self._set_mutation("PATCH", dict(patch), ["return=representation"])

    def build_params(self) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = [("select", self._columns)]
        params.extend(encode_predicate(predicate) for predicate in self._predicates)
        if self._order is not None:
            column, ascending = self._order
            params.append(("order", f"{column}.{'asc' if ascending else 'desc'}"))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        return params

    def __await__(self):
        return self.execute().__await__()

    async def execute(self) -> QueryResponse:
        self._ensure_open()
        self._executed = True
        return await asyncio.to_thread(self._send)

    def _send(self) -> QueryResponse:
        extra: Dict[str, str] = {}
        if self._prefer:
            extra["Prefer"] = ",".join(self._prefer)
        if self._single:
            extra["Accept"] = _SINGLE_OBJECT_MEDIA_TYPE
        resp = self._transport.send(
            self._method,
            f"/rest/v1/{self.collection}",
            params=self.build_params(),
            json_body=self._payload,
            headers=extra,
        )
        if not resp.ok:
            error = _error_from_response(resp)
            return error_response(_status_for(resp.status_code, error.code), error.code, error.message)
        data = resp.json() if resp.content else None
        if self._method == "POST" and isinstance(self._payload, Mapping) and isinstance(data, list):
            data = data[0] if data else None
        count = len(data) if isinstance(data, list) else (1 if data is not None else 0)
        return ok_response(data, count=count)


class RemoteAuth:
    def __init__(self, transport: _Transport) -> None:
        self._transport = transport
        self.listeners = AuthListenerRegistry()
        self._session: Optional[Session] = None

    def on_auth_state_change(self, callback) -> Subscription:
        return self.listeners.on_auth_state_change(callback)

    def _post(self, path: str, body: Dict[str, Any], params=None) -> requests.Response:
        return self._transport.send("POST", path, params=params, json_body=body)

    def _session_response(self, resp: requests.Response) -> AuthResponse:
        if not resp.ok:
            error = _error_from_response(resp)
            return AuthResponse(status=_status_for(resp.status_code, error.code), error=error)
        body = resp.json()
        if not body.get("access_token"):
            # Sign up without a session (email confirmation pending).
            return AuthResponse(status=db_msg_status.OK, user=body.get("user") or body)
        session = Session.from_dict(body)
        self._session = session
        self._transport.access_token = session.access_token
        self.listeners.notify(auth_event.SIGNED_IN, session)
        return AuthResponse(status=db_msg_status.OK, user=dict(session.user), session=session)

    async def sign_up(
        self, email: str, password: str, data: Optional[Dict[str, Any]] = None
    ) -> AuthResponse:
        body = {"email": email, "password": password, "data": data or {}}
        resp = await asyncio.to_thread(self._post, "/auth/v1/signup", body)
        return self._session_response(resp)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        body = {"email": email, "password": password}
        resp = await asyncio.to_thread(
            self._post, "/auth/v1/token", body, [("grant_type", "password")]
        )
        return self._session_response(resp)

    async def sign_in_with_oauth(self, provider: str) -> AuthResponse:
        provider_name = (provider or "").strip().lower()
        if not provider_name:
            raise ValueError("Provider name cannot be empty.")
        # The hosted flow continues in the browser; only the redirect URL is known here.
        url = f"{self._transport.settings.url}/auth/v1/authorize?provider={provider_name}"
        return AuthResponse(status=db_msg_status.OK, url=url)

    async def sign_out(self) -> AuthResponse:
        if self._session is not None:
            resp = await asyncio.to_thread(self._post, "/auth/v1/logout", {})
            if not resp.ok and resp.status_code not in (401, 403, 404):
                error = _error_from_response(resp)
                return AuthResponse(status=_status_for(resp.status_code, error.code), error=error)
        self._session = None
        self._transport.access_token = None
        self.listeners.notify(auth_event.SIGNED_OUT, None)
        return AuthResponse(status=db_msg_status.OK)

    async def get_session(self) -> Optional[Session]:
        return self._session

    async def get_user(self) -> Optional[Row]:
        return dict(self._session.user) if self._session else None


class RemoteBackendClient:
    def __init__(
        self, settings: BackendSettings, *, session: Optional[requests.Session] = None
    ) -> None:
        self._transport = _Transport(settings, session)
        self.auth = RemoteAuth(self._transport)
        logger.info("Using hosted backend at %s", settings.url)

    def from_(self, collection: str) -> RemoteQueryBuilder:
        if not collection:
            raise ValueError("Collection name cannot be empty.")
        return RemoteQueryBuilder(self._transport, collection)

    def table(self, collection: str) -> RemoteQueryBuilder:
        return self.from_(collection)

    def reset_database(self) -> None:
        raise RemoteBackendError("The hosted backend cannot be reset from the client.")


