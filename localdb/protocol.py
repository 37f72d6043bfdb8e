import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


Row = Dict[str, Any]

# Error code the hosted API uses when a single-row fetch matches nothing.
NOT_FOUND_CODE = "PGRST116"
DUPLICATE_KEY_CODE = "23505"
USER_EXISTS_CODE = "user_already_exists"
INVALID_CREDENTIALS_CODE = "invalid_credentials"
INVALID_INPUT_CODE = "invalid_input"


class db_msg_status(enum.IntEnum):
    OK = 1
    INVALID_INPUT = 2
    NOT_FOUND = 3
    DUPLICATE = 4
    UNAUTHORIZED = 5


class auth_event(str, enum.Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


class StorageFault(RuntimeError):
    """Raised when the durable store cannot be read or written."""


class QueryAlreadyExecutedError(RuntimeError):
    """Raised when a query builder is executed or extended a second time."""


@dataclass(frozen=True)
class QueryError:
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class QueryResponse:
    status: db_msg_status
    data: Any = None
    error: Optional[QueryError] = None
    count: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == db_msg_status.OK


@dataclass(frozen=True)
class AuthResponse:
    status: db_msg_status
    user: Optional[Row] = None
    session: Optional["Session"] = None
    error: Optional[QueryError] = None
    url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == db_msg_status.OK


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str
    expires_in: int
    expires_at: int
    user: Row
    token_type: str = "bearer"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
            "expires_at": self.expires_at,
            "token_type": self.token_type,
            "user": dict(self.user),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Session":
        return cls(
            access_token=str(payload["access_token"]),
            refresh_token=str(payload.get("refresh_token") or ""),
            expires_in=int(payload.get("expires_in") or 0),
            expires_at=int(payload.get("expires_at") or 0),
            user=dict(payload.get("user") or {}),
            token_type=str(payload.get("token_type") or "bearer"),
        )


def ok_response(data: Any, count: Optional[int] = None) -> QueryResponse:
    return QueryResponse(status=db_msg_status.OK, data=data, count=count)


def error_response(
    status: db_msg_status, code: str, message: str
) -> QueryResponse:
    return QueryResponse(
        status=status, data=None, error=QueryError(code=code, message=message)
    )


def not_found_response() -> QueryResponse:
    return error_response(db_msg_status.NOT_FOUND, NOT_FOUND_CODE, "No rows found")
