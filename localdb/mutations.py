from __future__ import annotations

import copy
import secrets
from typing import Any, Iterable, List, Mapping, Sequence, Set

from .logger import logger, scrub_sensitive
from .predicates import Predicate, matches
from .protocol import (
    DUPLICATE_KEY_CODE,
    INVALID_INPUT_CODE,
    QueryResponse,
    Row,
    db_msg_status,
    error_response,
    ok_response,
)
from .table_store import TableStore

_ID_BYTES = 8


def generate_row_id(taken: Set[Any]) -> str:
    """Return a surrogate id not present in `taken`."""
    while True:
        candidate = secrets.token_hex(_ID_BYTES)
        if candidate not in taken:
            return candidate


def _has_id(row: Mapping[str, Any]) -> bool:
    value = row.get("id")
    return value is not None and value != ""


def _copy_rows(rows: Iterable[Mapping[str, Any]]) -> List[Row]:
    copied: List[Row] = []
    for row in rows:
        if not isinstance(row, Mapping):
            raise TypeError(f"Rows must be mappings, got {type(row).__name__}")
        copied.append(copy.deepcopy(dict(row)))
    return copied


def insert_rows(
    store: TableStore, collection: str, rows: Sequence[Mapping[str, Any]]
) -> QueryResponse:
    """Append rows, generating an id for each row that lacks one."""
    incoming = _copy_rows(rows)
    with store.lock:
        existing = store.read(collection)
        taken = {row.get("id") for row in existing}
        for row in incoming:
            if _has_id(row):
                if row["id"] in taken:
                    return error_response(
                        db_msg_status.DUPLICATE,
                        DUPLICATE_KEY_CODE,
                        f"Duplicate id {row['id']!r} in {collection}",
                    )
            else:
                row["id"] = generate_row_id(taken)
            taken.add(row["id"])
        store.write(collection, existing + incoming)
    logger.info(
        "Insert into %s: %s", collection, scrub_sensitive(incoming)
    )
    return ok_response(copy.deepcopy(incoming), count=len(incoming))


def upsert_rows(
    store: TableStore, collection: str, rows: Sequence[Mapping[str, Any]]
) -> QueryResponse:
    """Merge rows into existing ones by id, appending those that do not exist."""
    incoming = _copy_rows(rows)
    with store.lock:
        existing = store.read(collection)
        index_by_id = {
            row.get("id"): position for position, row in enumerate(existing)
        }
        result: List[Row] = []
        for row in incoming:
            position = index_by_id.get(row.get("id")) if _has_id(row) else None
            if position is not None:
                merged = {**existing[position], **row}
                existing[position] = merged
                result.append(merged)
                continue
            if not _has_id(row):
                row["id"] = generate_row_id(set(index_by_id))
            index_by_id[row["id"]] = len(existing)
            existing.append(row)
            result.append(row)
        store.write(collection, existing)
    logger.info("Upsert into %s: %s", collection, scrub_sensitive(incoming))
    return ok_response(copy.deepcopy(result), count=len(result))


def update_rows(
    store: TableStore,
    collection: str,
    predicates: Sequence[Predicate],
    patch: Mapping[str, Any],
) -> QueryResponse:
    """Merge `patch` into every row matching all predicates."""
    if not isinstance(patch, Mapping):
        raise TypeError(f"Update patch must be a mapping, got {type(patch).__name__}")
    changes = copy.deepcopy(dict(patch))
    with store.lock:
        existing = store.read(collection)
        updated: List[Row] = []
        for position, row in enumerate(existing):
            if not matches(row, predicates):
                continue
            if "id" in changes and changes["id"] != row.get("id"):
                return error_response(
                    db_msg_status.INVALID_INPUT,
                    INVALID_INPUT_CODE,
                    "Row ids cannot be changed by an update.",
                )
            merged = {**row, **copy.deepcopy(changes)}
            existing[position] = merged
            updated.append(merged)
        if updated:
            store.write(collection, existing)
    logger.info(
        "Update %s: %d row(s) patched with %s",
        collection,
        len(updated),
        scrub_sensitive(changes),
    )
    return ok_response(copy.deepcopy(updated), count=len(updated))
