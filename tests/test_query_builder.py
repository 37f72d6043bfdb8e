"""
Query builder behaviour against a temporary local store.

Run with:
    python -m unittest tests.test_query_builder
"""

from __future__ import annotations

import os
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from localdb.client import LocalBackendClient  # noqa: E402
from localdb.protocol import (  # noqa: E402
    NOT_FOUND_CODE,
    QueryAlreadyExecutedError,
    db_msg_status,
)
from localdb.query_builder import sort_rows  # noqa: E402

TRIPS = [
    {"id": "t1", "driver_id": "d1", "status": "published", "price": 30, "city": "Dubai"},
    {"id": "t2", "driver_id": "d2", "status": "draft", "price": 10, "city": "Sharjah"},
    {"id": "t3", "driver_id": "d1", "status": "published", "price": 20, "city": "Abu Dhabi"},
    {"id": "t4", "driver_id": "d3", "status": "published", "price": 10, "city": "dubai marina"},
    {"id": "t5", "driver_id": "d2", "status": "cancelled", "city": "Dubai"},
]


class QueryBuilderTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.client = LocalBackendClient.open(str(Path(self._tmp.name) / "query.db"))
        self.client.store.write("trips", [dict(row) for row in TRIPS])

    def tearDown(self) -> None:
        self.client.close()
        self._tmp.cleanup()

    async def _ids(self, builder) -> list:
        response = await builder
        self.assertTrue(response.ok, response.error)
        return [row["id"] for row in response.data]

    async def test_select_all_returns_every_row_in_order(self) -> None:
        ids = await self._ids(self.client.from_("trips").select("*"))
        self.assertEqual(ids, ["t1", "t2", "t3", "t4", "t5"])

    async def test_unknown_collection_is_empty_not_error(self) -> None:
        response = await self.client.from_("vehicles").select("*")
        self.assertEqual(response.status, db_msg_status.OK)
        self.assertEqual(response.data, [])
        self.assertIsNone(response.error)

    async def test_zero_matches_is_empty_list(self) -> None:
        response = await self.client.from_("trips").eq("status", "completed")
        self.assertTrue(response.ok)
        self.assertEqual(response.data, [])
        self.assertEqual(response.count, 0)

    async def test_and_composition_is_intersection(self) -> None:
        published = set(await self._ids(self.client.from_("trips").eq("status", "published")))
        cheap = set(await self._ids(self.client.from_("trips").eq("price", 10)))
        both = set(
            await self._ids(
                self.client.from_("trips").eq("status", "published").eq("price", 10)
            )
        )
        self.assertEqual(both, published & cheap)
        self.assertEqual(both, {"t4"})

    async def test_or_is_union(self) -> None:
        d1 = set(await self._ids(self.client.from_("trips").eq("driver_id", "d1")))
        d3 = set(await self._ids(self.client.from_("trips").eq("driver_id", "d3")))
        either = set(
            await self._ids(self.client.from_("trips").or_("driver_id.eq.d1,driver_id.eq.d3"))
        )
        self.assertEqual(either, d1 | d3)
        either_eq = set(
            await self._ids(
                self.client.from_("trips").or_eq([("driver_id", "d1"), ("driver_id", "d3")])
            )
        )
        self.assertEqual(either_eq, d1 | d3)

    async def test_ilike_and_gte(self) -> None:
        self.assertEqual(
            await self._ids(self.client.from_("trips").ilike("city", "%DUBAI%")),
            ["t1", "t4", "t5"],
        )
        self.assertEqual(
            await self._ids(self.client.from_("trips").gte("price", 20)), ["t1", "t3"]
        )

    async def test_order_ascending_with_limit_returns_smallest(self) -> None:
        priced = self.client.from_("trips").gte("price", 0)
        ids = await self._ids(priced.order("price").limit(3))
        self.assertEqual(ids, ["t2", "t4", "t3"])
        for n in range(0, 5):
            response = await self.client.from_("trips").gte("price", 0).order("price").limit(n)
            prices = [row["price"] for row in response.data]
            self.assertEqual(prices, sorted([30, 10, 20, 10])[:n])

    async def test_order_descending_is_stable(self) -> None:
        ids = await self._ids(
            self.client.from_("trips").gte("price", 0).order("price", ascending=False)
        )
        self.assertEqual(ids, ["t1", "t3", "t2", "t4"])
        ids = await self._ids(self.client.from_("trips").gte("price", 0).order("price", desc=True))
        self.assertEqual(ids, ["t1", "t3", "t2", "t4"])

    async def test_missing_sort_values_go_last_ascending(self) -> None:
        ids = await self._ids(self.client.from_("trips").order("price"))
        self.assertEqual(ids[-1], "t5")
        ids = await self._ids(self.client.from_("trips").order("price", ascending=False))
        self.assertEqual(ids[0], "t5")

    def test_mixed_type_column_sorts_independent_of_input_order(self) -> None:
        rows = [
            {"id": "a", "v": "b"},
            {"id": "b", "v": 2},
            {"id": "c", "v": "a"},
            {"id": "d", "v": 1.5},
        ]
        expected = [1.5, 2, "a", "b"]
        for candidate in (rows, list(reversed(rows)), rows[1:] + rows[:1]):
            self.assertEqual([row["v"] for row in sort_rows(candidate, "v", True)], expected)
        self.assertEqual(
            [row.get("v") for row in sort_rows(rows + [{"id": "e"}], "v", False)],
            [None, "b", "a", 2, 1.5],
        )

    async def test_single_returns_row(self) -> None:
        response = await self.client.from_("trips").eq("id", "t3").single()
        self.assertTrue(response.ok)
        self.assertEqual(response.data["city"], "Abu Dhabi")

    async def test_single_takes_first_after_ordering(self) -> None:
        response = await (
            self.client.from_("trips").eq("status", "published").order("price").single()
        )
        self.assertEqual(response.data["id"], "t4")

    async def test_single_without_match_is_not_found(self) -> None:
        response = await self.client.from_("trips").eq("id", "nope").single()
        self.assertEqual(response.status, db_msg_status.NOT_FOUND)
        self.assertIsNone(response.data)
        self.assertEqual(response.error.code, NOT_FOUND_CODE)
        response = await self.client.from_("ghosts").select("*").single()
        self.assertEqual(response.error.code, NOT_FOUND_CODE)

    async def test_execute_is_equivalent_to_await(self) -> None:
        response = await self.client.from_("trips").eq("id", "t1").execute()
        self.assertEqual([row["id"] for row in response.data], ["t1"])

    async def test_builder_is_one_shot(self) -> None:
        builder = self.client.from_("trips").eq("status", "published")
        await builder
        with self.assertRaises(QueryAlreadyExecutedError):
            await builder
        with self.assertRaises(QueryAlreadyExecutedError):
            builder.eq("id", "t1")
        self.assertTrue(builder.executed)

    async def test_results_are_detached_from_store(self) -> None:
        response = await self.client.from_("trips").eq("id", "t1")
        response.data[0]["status"] = "mutated"
        again = await self.client.from_("trips").eq("id", "t1").single()
        self.assertEqual(again.data["status"], "published")

    async def test_invalid_limit_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.client.from_("trips").limit(-1)
        with self.assertRaises(ValueError):
            self.client.from_("")

    async def test_table_alias(self) -> None:
        ids = await self._ids(self.client.table("trips").eq("id", "t2"))
        self.assertEqual(ids, ["t2"])


if __name__ == "__main__":
    unittest.main()
