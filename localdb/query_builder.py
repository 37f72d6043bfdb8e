"""
Chainable query builder for the local store.

A builder is scoped to one collection and accumulates predicates, ordering,
a limit, single-row mode and expansions. Awaiting it (or awaiting
`execute()`) runs the query once against the table store:

    response = await client.from_("trips").select("*, driver:profiles(*)") \
        .eq("status", "published").order("departure_date").limit(10)

Mutations use the same builder so filters can follow an update:

    await client.from_("wallets").update({"balance": 120}).eq("id", "wallet-2")
"""

from __future__ import annotations

import asyncio
import copy
import enum
import functools
from typing import Any, Generator, Iterable, List, Mapping, Optional, Sequence, Tuple

from .mutations import insert_rows, update_rows, upsert_rows
from .predicates import Eq, Gte, Predicate, any_eq, ilike, matches, parse_or_filter
from .protocol import (
    QueryAlreadyExecutedError,
    QueryResponse,
    Row,
    not_found_response,
    ok_response,
)
from .relations import Expansion, expansion, parse_select, resolve
from .table_store import TableStore


class _mutation_kind(enum.Enum):
    INSERT = "insert"
    UPSERT = "upsert"
    UPDATE = "update"


def _type_rank(value: Any) -> str:
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__


def _compare_values(left: Any, right: Any) -> int:
    # Nulls sort after every value; mixed types group by type name first.
    if left is None and right is None:
        return 0
    if left is None:
        return 1
    if right is None:
        return -1
    left_rank, right_rank = _type_rank(left), _type_rank(right)
    if left_rank != right_rank:
        return -1 if left_rank < right_rank else 1
    try:
        if left < right:
            return -1
        if left > right:
            return 1
    except TypeError:
        return 0
    return 0


def sort_rows(rows: List[Row], column: str, ascending: bool) -> List[Row]:
    """Stable sort on one column; ties keep their stored order."""
    key = functools.cmp_to_key(_compare_values)
    return sorted(rows, key=lambda row: key(row.get(column)), reverse=not ascending)


class QueryBuilder:
    def __init__(self, store: TableStore, collection: str) -> None:
        if not collection:
            raise ValueError("Collection name cannot be empty.")
        self._store = store
        self.collection = collection
        self._predicates: List[Predicate] = []
        self._expansions: Tuple[Expansion, ...] = ()
        self._order: Optional[Tuple[str, bool]] = None
        self._limit: Optional[int] = None
        self._single = False
        self._mutation: Optional[_mutation_kind] = None
        self._payload: Any = None
        self._executed = False

    # Internal helpers -------------------------------------------------------------
    def _ensure_open(self) -> None:
        if self._executed:
            raise QueryAlreadyExecutedError(
                f"Query on {self.collection!r} has already been executed; build a new one."
            )

    def _add(self, predicate: Predicate) -> "QueryBuilder":
        self._ensure_open()
        self._predicates.append(predicate)
        return self

    def _set_mutation(self, kind: _mutation_kind, payload: Any) -> "QueryBuilder":
        self._ensure_open()
        if self._mutation is not None:
            raise ValueError(
                f"Query already holds a {self._mutation.value}; cannot add {kind.value}."
            )
        self._mutation = kind
        self._payload = payload
        return self

    @property
    def predicates(self) -> Tuple[Predicate, ...]:
        return tuple(self._predicates)

    @property
    def executed(self) -> bool:
        return self._executed

    # Filters ----------------------------------------------------------------------
    def select(self, columns: str = "*") -> "QueryBuilder":
        self._ensure_open()
        self._expansions = self._expansions + parse_select(columns, self.collection)
        return self

    def eq(self, column: str, value: Any) -> "QueryBuilder":
        return self._add(Eq(column=column, value=value))

    def ilike(self, column: str, pattern: str) -> "QueryBuilder":
        return self._add(ilike(column, pattern))

    def gte(self, column: str, value: Any) -> "QueryBuilder":
        return self._add(Gte(column=column, value=value))

    def or_(self, filter_text: str) -> "QueryBuilder":
        return self._add(parse_or_filter(filter_text))

    def or_eq(self, clauses: Iterable[Tuple[str, Any]]) -> "QueryBuilder":
        return self._add(any_eq(clauses))

    def order(
        self, column: str, *, ascending: bool = True, desc: Optional[bool] = None
    ) -> "QueryBuilder":
        self._ensure_open()
        if desc is not None:
            ascending = not desc
        self._order = (column, ascending)
        return self

    def limit(self, count: int) -> "QueryBuilder":
        self._ensure_open()
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValueError(f"Limit must be a non-negative integer, got {count!r}")
        self._limit = count
        return self

    def single(self) -> "QueryBuilder":
        self._ensure_open()
        self._single = True
        return self

    def expand(
        self,
        field: str,
        collection: str,
        via: Optional[str] = None,
        nested: Any = None,
    ) -> "QueryBuilder":
        self._ensure_open()
        self._expansions = self._expansions + (
            expansion(field, collection, via=via, nested=nested),
        )
        return self

    # Mutations --------------------------------------------------------------------
    def insert(self, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> "QueryBuilder":
        return self._set_mutation(_mutation_kind.INSERT, rows)

    def upsert(self, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> "QueryBuilder":
        return self._set_mutation(_mutation_kind.UPSERT, rows)

    def update(self, patch: Mapping[str, Any]) -> "QueryBuilder":
        return self._set_mutation(_mutation_kind.UPDATE, patch)

    # Execution --------------------------------------------------------------------
    def __await__(self) -> Generator[Any, None, QueryResponse]:
        return self.execute().__await__()

    async def execute(self) -> QueryResponse:
        self._ensure_open()
        self._executed = True
        # Resolve on the next loop iteration, like a network round trip would.
        await asyncio.sleep(0)
        if self._mutation is not None:
            return self._run_mutation()
        return self._run_select()

    def _shape(self, rows: List[Row]) -> QueryResponse:
        # Caller holds the store lock.
        if self._order is not None:
            column, ascending = self._order
            rows = sort_rows(rows, column, ascending)
        if self._limit is not None:
            rows = rows[: self._limit]
        if self._single:
            if not rows:
                return not_found_response()
            rows = rows[:1]
        rows = resolve(rows, self._expansions, self._store.read)
        if self._single:
            return ok_response(rows[0], count=1)
        return ok_response(rows, count=len(rows))

    def _run_select(self) -> QueryResponse:
        with self._store.lock:
            rows = [row for row in self._store.read(self.collection) if matches(row, self._predicates)]
            return self._shape(rows)

    def _run_mutation(self) -> QueryResponse:
        payload = self._payload
        many = True
        with self._store.lock:
            if self._mutation is _mutation_kind.UPDATE:
                response = update_rows(self._store, self.collection, self._predicates, payload)
            else:
                many = not isinstance(payload, Mapping)
                rows = list(payload) if many else [payload]
                if self._mutation is _mutation_kind.INSERT:
                    response = insert_rows(self._store, self.collection, rows)
                else:
                    response = upsert_rows(self._store, self.collection, rows)
            if not response.ok:
                return response
            # The written rows come back the way a select over them would.
            shaped = self._shape(list(response.data or []))
        if self._single or many or not shaped.ok:
            return shaped
        single_row = copy.deepcopy(shaped.data[0]) if shaped.data else None
        return ok_response(single_row, count=shaped.count)
