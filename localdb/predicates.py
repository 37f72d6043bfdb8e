"""
Row predicates for the local store.

The hosted API supports far more operators than the application uses; this
module implements only eq, ilike, gte and a single level of OR over equality
clauses. Anything richer is rejected rather than guessed at.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence, Tuple, Union

_MISSING = object()


@dataclass(frozen=True)
class Eq:
    column: str
    value: Any


@dataclass(frozen=True)
class ILike:
    column: str
    pattern: str


@dataclass(frozen=True)
class Gte:
    column: str
    value: Any


@dataclass(frozen=True)
class AnyEq:
    clauses: Tuple[Eq, ...]


Predicate = Union[Eq, ILike, Gte, AnyEq]


def ilike(column: str, pattern: str) -> ILike:
    """Build a case-insensitive contains predicate; `%` wildcards are dropped."""
    return ILike(column=column, pattern=str(pattern).replace("%", ""))


def any_eq(clauses: Iterable[Tuple[str, Any]]) -> AnyEq:
    built = tuple(Eq(column=column, value=value) for column, value in clauses)
    if not built:
        raise ValueError("An OR filter needs at least one clause.")
    return AnyEq(clauses=built)


def parse_or_filter(filter_text: str) -> AnyEq:
    """
    Parse the hosted API's OR syntax, e.g. "sender_id.eq.u1,recipient_id.eq.u1".

    Only `column.eq.value` clauses are understood. Values are compared as
    strings, exactly as they appear in the filter text. A clause on an
    embedded table's column ("bookings.passenger_id.eq.u1") keeps the dotted
    column name; local rows never carry such a key, so it never matches here.
    """
    clauses = []
    for part in (filter_text or "").split(","):
        cleaned = part.strip()
        if not cleaned:
            continue
        pieces = cleaned.split(".")
        if len(pieces) < 3 or not pieces[0]:
            raise ValueError(f"Malformed OR clause: {cleaned!r}")
        if pieces[1] == "eq":
            column, value = pieces[0], ".".join(pieces[2:])
        elif len(pieces) >= 4 and pieces[2] == "eq" and pieces[1]:
            column, value = f"{pieces[0]}.{pieces[1]}", ".".join(pieces[3:])
        else:
            raise ValueError(
                f"Unsupported operator {pieces[1]!r} in OR clause; only 'eq' is allowed."
            )
        clauses.append((column, value))
    return any_eq(clauses)


def _strict_equal(left: Any, right: Any) -> bool:
    # True == 1 in Python; the hosted API keeps booleans and numbers apart.
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    return left == right


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_datetime(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return value


def _greater_or_equal(current: Any, bound: Any) -> bool:
    if current is None or bound is None:
        return False
    if _is_number(current) and _is_number(bound):
        return current >= bound
    if isinstance(current, datetime) or isinstance(bound, datetime):
        current_dt = _coerce_datetime(current)
        bound_dt = _coerce_datetime(bound)
        if not isinstance(current_dt, datetime) or not isinstance(bound_dt, datetime):
            return False
        try:
            return current_dt >= bound_dt
        except TypeError:
            # naive vs aware
            return False
    if isinstance(current, str) and isinstance(bound, str):
        return current >= bound
    return False


def _matches_one(row: Mapping[str, Any], predicate: Predicate) -> bool:
    if isinstance(predicate, Eq):
        current = row.get(predicate.column, _MISSING)
        return current is not _MISSING and _strict_equal(current, predicate.value)
    if isinstance(predicate, ILike):
        current = row.get(predicate.column)
        if current is None:
            return False
        return predicate.pattern.lower() in str(current).lower()
    if isinstance(predicate, Gte):
        return _greater_or_equal(row.get(predicate.column), predicate.value)
    if isinstance(predicate, AnyEq):
        return any(_matches_one(row, clause) for clause in predicate.clauses)
    raise TypeError(f"Unknown predicate type: {type(predicate).__name__}")


def matches(row: Mapping[str, Any], predicates: Sequence[Predicate]) -> bool:
    return all(_matches_one(row, predicate) for predicate in predicates)
