"""
Tests for the sqlite-backed table store.

Run with:
    python -m unittest tests.test_table_store
"""

from __future__ import annotations

import os
import sys
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from localdb.connection import PROJECT_ROOT as STORE_ROOT  # noqa: E402
from localdb.connection import resolve_store_url, store_file_path  # noqa: E402
from localdb.protocol import StorageFault  # noqa: E402
from localdb.table_store import TableStore  # noqa: E402


class TableStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = Path(self._tmp.name) / "store.db"
        self.store = TableStore.open(str(self.db_path))

    def tearDown(self) -> None:
        try:
            self.store.close()
        finally:
            self._tmp.cleanup()

    def test_unseen_collection_reads_empty(self) -> None:
        self.assertEqual(self.store.read("trips"), [])
        self.assertEqual(self.store.collections(), [])

    def test_write_replaces_and_keeps_order(self) -> None:
        self.store.write("trips", [{"id": "a"}, {"id": "b"}, {"id": "c"}])
        self.store.write("trips", [{"id": "c"}, {"id": "a"}])
        self.assertEqual([row["id"] for row in self.store.read("trips")], ["c", "a"])
        self.assertEqual(self.store.collections(), ["trips"])

    def test_rows_survive_reopen(self) -> None:
        stamp = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
        self.store.write(
            "bookings",
            [{"id": "b1", "seats": 2, "paid": True, "note": None, "created_at": stamp}],
        )
        self.store.write_slot("auth_session", {"access_token": "tok"})
        self.store.close()

        reopened = TableStore.open(str(self.db_path))
        try:
            rows = reopened.read("bookings")
            self.assertEqual(
                rows,
                [{"id": "b1", "seats": 2, "paid": True, "note": None, "created_at": stamp}],
            )
            self.assertIsInstance(rows[0]["created_at"], datetime)
            self.assertEqual(reopened.read_slot("auth_session"), {"access_token": "tok"})
        finally:
            reopened.close()
        self.store = TableStore.open(str(self.db_path))

    def test_reads_are_copies(self) -> None:
        self.store.write("profiles", [{"id": "p1", "full_name": "Ahmed"}])
        rows = self.store.read("profiles")
        rows[0]["full_name"] = "changed"
        self.assertEqual(self.store.read("profiles")[0]["full_name"], "Ahmed")

    def test_slots(self) -> None:
        self.assertEqual(self.store.read_slot("missing", []), [])
        self.store.write_slot("auth_users", [{"email": "a@example.com"}])
        self.store.write_slot("auth_users", [{"email": "b@example.com"}])
        self.assertEqual(self.store.read_slot("auth_users"), [{"email": "b@example.com"}])
        self.assertTrue(self.store.delete_slot("auth_users"))
        self.assertFalse(self.store.delete_slot("auth_users"))

    def test_clear_drops_collections_and_slots(self) -> None:
        self.store.write("trips", [{"id": "t1"}])
        self.store.write_slot("auth_session", {"access_token": "x"})
        self.store.clear()
        self.assertEqual(self.store.read("trips"), [])
        self.assertIsNone(self.store.read_slot("auth_session"))

    def test_clear_collections_keeps_slots(self) -> None:
        self.store.write("trips", [{"id": "t1"}])
        self.store.write_slot("auth_session", {"access_token": "x"})
        self.store.clear_collections()
        self.assertEqual(self.store.read("trips"), [])
        self.assertEqual(self.store.read_slot("auth_session"), {"access_token": "x"})

    def test_storage_failure_raises_storage_fault(self) -> None:
        self.store.close()
        with self.assertRaises(StorageFault):
            self.store.read("trips")
        with self.assertRaises(StorageFault):
            self.store.write("trips", [{"id": "t1"}])
        self.store = TableStore.open(str(self.db_path))


class StoreUrlTest(unittest.TestCase):
    def test_bare_path_becomes_sqlite_url(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "demo.db"
            self.assertEqual(resolve_store_url(str(target)), f"sqlite:///{target.resolve()}")
            self.assertEqual(store_file_path(str(target)), target.resolve())

    def test_relative_path_lands_under_project_root(self) -> None:
        relative = Path("no-such-dir") / "demo.db"
        self.assertEqual(
            resolve_store_url(f"sqlite:///{relative}"),
            f"sqlite:///{(STORE_ROOT / relative).resolve()}",
        )

    def test_uri_urls_pass_through(self) -> None:
        url = "sqlite:file:wassel_mem?mode=memory&cache=shared"
        self.assertEqual(resolve_store_url(url), url)
        self.assertIsNone(store_file_path(url))

    def test_non_sqlite_url_rejected(self) -> None:
        with self.assertRaises(RuntimeError):
            resolve_store_url("postgres://localhost/db")


if __name__ == "__main__":
    unittest.main()
