"""
Foreign-key expansion for query results.

An expansion attaches the row of another collection whose `id` equals a
foreign key on the result row, e.g. `trips.driver_id -> profiles.id` attached
as `driver`. Expansions may carry one nested level (booking -> trip -> driver)
and no more: this is not a general join engine.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .logger import logger
from .protocol import Row

MAX_EXPANSION_DEPTH = 2
_FK_SUFFIX = "_fkey"

# Collections behind the embed aliases the application uses without naming the
# target collection, e.g. "driver(*)".
_ALIAS_TARGETS: Dict[str, str] = {
    "driver": "profiles",
    "passenger": "profiles",
    "sender": "profiles",
    "recipient": "profiles",
    "owner": "profiles",
    "user": "profiles",
    "trip": "trips",
    "wallet": "wallets",
    "vehicle": "vehicles",
}


@dataclass(frozen=True)
class Expansion:
    field: str
    collection: str
    via: str
    nested: Tuple["Expansion", ...] = ()


def expansion(
    field: str,
    collection: str,
    via: Optional[str] = None,
    nested: Tuple[Expansion, ...] | Expansion | None = None,
) -> Expansion:
    if nested is None:
        children: Tuple[Expansion, ...] = ()
    elif isinstance(nested, Expansion):
        children = (nested,)
    else:
        children = tuple(nested)
    for child in children:
        if child.nested:
            raise ValueError(
                f"Expansion {field!r} nests deeper than {MAX_EXPANSION_DEPTH} levels."
            )
    return Expansion(
        field=field,
        collection=collection,
        via=via or f"{field}_id",
        nested=children,
    )


def _split_top_level(text: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise ValueError(f"Unbalanced parentheses in select: {text!r}")
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if depth != 0:
        raise ValueError(f"Unbalanced parentheses in select: {text!r}")
    parts.append("".join(current).strip())
    return [part for part in parts if part]


def _column_from_hint(hint: str, parent: Optional[str]) -> str:
    # "trips_driver_id_fkey" names the constraint on trips.driver_id.
    if not hint.endswith(_FK_SUFFIX):
        return hint
    column = hint[: -len(_FK_SUFFIX)]
    if parent and column.startswith(parent + "_"):
        column = column[len(parent) + 1 :]
    return column


def _parse_embed_head(
    head: str, parent: Optional[str]
) -> Optional[Tuple[str, str, Optional[str]]]:
    via: Optional[str] = None
    if "!" in head:
        head, hint = head.split("!", 1)
        hint = hint.strip()
        via = _column_from_hint(hint, parent) if hint else None
    if ":" in head:
        field, collection = (piece.strip() for piece in head.split(":", 1))
        if not collection:
            raise ValueError(f"Malformed embed in select: {head!r}")
    else:
        field = head.strip()
        collection = _ALIAS_TARGETS.get(field)
        if collection is None and via is not None:
            # "profiles!trips_driver_id_fkey(...)" embeds profiles under its own name.
            collection = field
    if not field:
        raise ValueError(f"Malformed embed in select: {head!r}")
    if not collection:
        logger.warning(
            "Skipping embed %r: no foreign key on %s points at it.", field, parent or "the row"
        )
        return None
    return field, collection, via


def _parse_level(text: str, depth: int, parent: Optional[str]) -> Tuple[Expansion, ...]:
    found: List[Expansion] = []
    for item in _split_top_level(text):
        if "(" not in item:
            # Plain column names; projection is not supported so they are ignored.
            continue
        if not item.endswith(")"):
            raise ValueError(f"Malformed embed in select: {item!r}")
        if depth >= MAX_EXPANSION_DEPTH:
            raise ValueError(
                f"Select embeds deeper than {MAX_EXPANSION_DEPTH} levels: {item!r}"
            )
        open_at = item.index("(")
        head = _parse_embed_head(item[:open_at], parent)
        if head is None:
            continue
        field, collection, via = head
        children = _parse_level(item[open_at + 1 : -1], depth + 1, collection)
        found.append(
            Expansion(
                field=field,
                collection=collection,
                via=via or f"{field}_id",
                nested=children,
            )
        )
    return tuple(found)


def parse_select(columns: str, collection: Optional[str] = None) -> Tuple[Expansion, ...]:
    """
    Turn "*, trip:trips(*, driver:profiles(*))" into expansion specs.

    `collection` is the table being selected from; it lets a constraint hint
    such as "profiles!trips_driver_id_fkey(...)" resolve to the driver_id
    column. Embeds with no foreign key on the row (reverse one-to-many
    embeds like "bookings(...)") are skipped with a warning.
    """
    return _parse_level(columns or "*", 0, collection)


def _find_by_id(rows: List[Row], key) -> Optional[Row]:
    for candidate in rows:
        if candidate.get("id") == key:
            return candidate
    return None


def _attach(
    row: Row,
    expansions: Tuple[Expansion, ...],
    lookup: Callable[[str], List[Row]],
) -> Row:
    for embed in expansions:
        key = row.get(embed.via)
        if key is None:
            continue
        related = _find_by_id(lookup(embed.collection), key)
        if related is None:
            continue
        attached = copy.deepcopy(related)
        if embed.nested:
            attached = _attach(attached, embed.nested, lookup)
        row[embed.field] = attached
    return row


def resolve(
    rows: List[Row],
    expansions: Tuple[Expansion, ...],
    read_collection: Callable[[str], List[Row]],
) -> List[Row]:
    """Return copies of `rows` with every resolvable expansion attached."""
    if not expansions:
        return [copy.deepcopy(row) for row in rows]
    cache: Dict[str, List[Row]] = {}

    def lookup(collection: str) -> List[Row]:
        if collection not in cache:
            cache[collection] = read_collection(collection)
        return cache[collection]

    return [_attach(copy.deepcopy(row), expansions, lookup) for row in rows]
