from __future__ import annotations

from typing import Optional

from .auth import SESSION_SLOT, AuthEmulator
from .logger import logger
from .protocol import auth_event
from .query_builder import QueryBuilder
from .table_store import TableStore


class LocalBackendClient:
    """
    Demo-mode replacement for the hosted backend client.

    Exposes the same surface the application uses on the real client:
    `from_()` / `table()` for queries and mutations, `auth` for sessions.
    """

    def __init__(self, store: TableStore) -> None:
        self.store = store
        self.auth = AuthEmulator(store)
        logger.info("Using local demo backend.")

    @classmethod
    def open(cls, url: Optional[str] = None) -> "LocalBackendClient":
        return cls(TableStore.open(url))

    def from_(self, collection: str) -> QueryBuilder:
        return QueryBuilder(self.store, collection)

    def table(self, collection: str) -> QueryBuilder:
        return self.from_(collection)

    def reset_database(self) -> None:
        """Wipe every collection, the credential store and the current session."""
        with self.store.lock:
            had_session = self.store.read_slot(SESSION_SLOT) is not None
            self.store.clear()
        logger.warning("Demo database reset.")
        if had_session:
            self.auth.notify(auth_event.SIGNED_OUT, None)

    def close(self) -> None:
        self.store.close()
