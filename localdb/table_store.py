from __future__ import annotations

import json
import sqlite3
import threading
from typing import Any, List, Optional

from .connection import open_connection
from .json_codec import decode_value, encode_value
from .logger import logger
from .protocol import Row, StorageFault


class TableStore:
    """
    Durable collection -> rows mapping backed by a single sqlite file.

    Rows are stored as JSON documents in insertion order. Besides collections
    the store keeps a handful of named slots (credentials, current session)
    that are not queryable. Every public operation holds `lock`, which callers
    also take around read-modify-write sequences.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self.lock = threading.RLock()
        self._init_schema()

    @classmethod
    def open(cls, url: Optional[str] = None) -> "TableStore":
        return cls(open_connection(url))

    def _init_schema(self) -> None:
        """Create the rows and slots tables if they do not already exist."""
        try:
            with self.lock:
                self._connection.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS collection_rows (
                        collection TEXT NOT NULL,
                        position INTEGER NOT NULL,
                        row_json TEXT NOT NULL,
                        PRIMARY KEY (collection, position)
                    );
                    CREATE TABLE IF NOT EXISTS store_slots (
                        slot TEXT PRIMARY KEY,
                        value_json TEXT NOT NULL
                    );
                    """
                )
                self._connection.commit()
        except sqlite3.Error as exc:
            raise StorageFault(f"Unable to initialise local store: {exc}") from exc

    # Collections ----------------------------------------------------------------
    def read(self, collection: str) -> List[Row]:
        with self.lock:
            try:
                cur = self._connection.execute(
                    """
                    SELECT row_json
                    FROM collection_rows
                    WHERE collection = ?
                    ORDER BY position
                    """,
                    (collection,),
                )
                raw_rows = [row[0] for row in cur.fetchall()]
            except sqlite3.Error as exc:
                raise StorageFault(
                    f"Unable to read collection {collection!r}: {exc}"
                ) from exc
        try:
            return [decode_value(raw) for raw in raw_rows]
        except (json.JSONDecodeError, ValueError) as exc:
            raise StorageFault(f"Corrupt row in collection {collection!r}") from exc

    def write(self, collection: str, rows: List[Row]) -> None:
        """Replace the whole collection in one transaction."""
        encoded = [
            (collection, position, encode_value(row))
            for position, row in enumerate(rows)
        ]
        with self.lock:
            try:
                with self._connection:
                    self._connection.execute(
                        "DELETE FROM collection_rows WHERE collection = ?",
                        (collection,),
                    )
                    self._connection.executemany(
                        """
                        INSERT INTO collection_rows (collection, position, row_json)
                        VALUES (?, ?, ?)
                        """,
                        encoded,
                    )
            except sqlite3.Error as exc:
                logger.error("Write to %s failed: %s", collection, exc)
                raise StorageFault(
                    f"Unable to write collection {collection!r}: {exc}"
                ) from exc

    def collections(self) -> List[str]:
        with self.lock:
            try:
                cur = self._connection.execute(
                    "SELECT DISTINCT collection FROM collection_rows ORDER BY collection"
                )
                return [row[0] for row in cur.fetchall()]
            except sqlite3.Error as exc:
                raise StorageFault(f"Unable to list collections: {exc}") from exc

    # Slots ----------------------------------------------------------------------
    def read_slot(self, slot: str, default: Any = None) -> Any:
        with self.lock:
            try:
                cur = self._connection.execute(
                    "SELECT value_json FROM store_slots WHERE slot = ?", (slot,)
                )
                row = cur.fetchone()
            except sqlite3.Error as exc:
                raise StorageFault(f"Unable to read slot {slot!r}: {exc}") from exc
        if row is None:
            return default
        try:
            return decode_value(row[0])
        except (json.JSONDecodeError, ValueError) as exc:
            raise StorageFault(f"Corrupt value in slot {slot!r}") from exc

    def write_slot(self, slot: str, value: Any) -> None:
        encoded = encode_value(value)
        with self.lock:
            try:
                with self._connection:
                    self._connection.execute(
                        """
                        INSERT INTO store_slots (slot, value_json)
                        VALUES (?, ?)
                        ON CONFLICT(slot) DO UPDATE SET value_json=excluded.value_json
                        """,
                        (slot, encoded),
                    )
            except sqlite3.Error as exc:
                raise StorageFault(f"Unable to write slot {slot!r}: {exc}") from exc

    def delete_slot(self, slot: str) -> bool:
        with self.lock:
            try:
                with self._connection:
                    cur = self._connection.execute(
                        "DELETE FROM store_slots WHERE slot = ?", (slot,)
                    )
            except sqlite3.Error as exc:
                raise StorageFault(f"Unable to delete slot {slot!r}: {exc}") from exc
        return cur.rowcount > 0

    # Reset ----------------------------------------------------------------------
    def clear_collections(self) -> None:
        with self.lock:
            try:
                with self._connection:
                    self._connection.execute("DELETE FROM collection_rows")
            except sqlite3.Error as exc:
                raise StorageFault(f"Unable to clear collections: {exc}") from exc

    def clear(self) -> None:
        """Drop every collection and slot."""
        with self.lock:
            try:
                with self._connection:
                    self._connection.execute("DELETE FROM collection_rows")
                    self._connection.execute("DELETE FROM store_slots")
            except sqlite3.Error as exc:
                raise StorageFault(f"Unable to reset local store: {exc}") from exc
        logger.info("Local store cleared.")

    def close(self) -> None:
        with self.lock:
            self._connection.close()
