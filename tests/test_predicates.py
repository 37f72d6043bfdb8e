from __future__ import annotations

import os
import sys
import unittest
from datetime import datetime, timezone

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from localdb.predicates import (  # noqa: E402
    AnyEq,
    Eq,
    Gte,
    any_eq,
    ilike,
    matches,
    parse_or_filter,
)


class PredicateTest(unittest.TestCase):
    row = {
        "id": "trip-1",
        "status": "published",
        "from_location": "Dubai Mall",
        "price_per_seat": 50,
        "instant_booking": True,
        "note": None,
        "departure": datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc),
    }

    def test_empty_predicate_list_matches(self) -> None:
        self.assertTrue(matches(self.row, []))

    def test_eq(self) -> None:
        self.assertTrue(matches(self.row, [Eq("status", "published")]))
        self.assertFalse(matches(self.row, [Eq("status", "draft")]))
        self.assertTrue(matches(self.row, [Eq("note", None)]))

    def test_eq_missing_column_never_matches(self) -> None:
        self.assertFalse(matches(self.row, [Eq("driver_id", None)]))

    def test_eq_keeps_booleans_and_numbers_apart(self) -> None:
        self.assertFalse(matches(self.row, [Eq("instant_booking", 1)]))
        self.assertTrue(matches(self.row, [Eq("instant_booking", True)]))
        self.assertFalse(matches({"seats": 1}, [Eq("seats", True)]))

    def test_ilike_is_case_insensitive_contains(self) -> None:
        self.assertTrue(matches(self.row, [ilike("from_location", "%dubai%")]))
        self.assertTrue(matches(self.row, [ilike("from_location", "MALL")]))
        self.assertFalse(matches(self.row, [ilike("from_location", "%abu%")]))
        self.assertTrue(matches(self.row, [ilike("price_per_seat", "5")]))

    def test_ilike_missing_or_null_column_does_not_match(self) -> None:
        self.assertFalse(matches(self.row, [ilike("to_location", "")]))
        self.assertFalse(matches(self.row, [ilike("note", "")]))

    def test_gte_numbers_strings_and_datetimes(self) -> None:
        self.assertTrue(matches(self.row, [Gte("price_per_seat", 50)]))
        self.assertFalse(matches(self.row, [Gte("price_per_seat", 50.5)]))
        self.assertTrue(matches(self.row, [Gte("status", "p")]))
        self.assertFalse(matches(self.row, [Gte("status", "q")]))
        self.assertTrue(
            matches(self.row, [Gte("departure", datetime(2024, 5, 31, tzinfo=timezone.utc))])
        )
        self.assertTrue(matches(self.row, [Gte("departure", "2024-06-01T09:00:00+00:00")]))
        self.assertFalse(matches(self.row, [Gte("departure", "2024-06-02T00:00:00Z")]))

    def test_gte_incomparable_or_missing_is_false(self) -> None:
        self.assertFalse(matches(self.row, [Gte("status", 3)]))
        self.assertFalse(matches(self.row, [Gte("missing", 1)]))
        self.assertFalse(matches(self.row, [Gte("note", 0)]))

    def test_and_composition(self) -> None:
        self.assertTrue(
            matches(self.row, [Eq("status", "published"), Gte("price_per_seat", 10)])
        )
        self.assertFalse(
            matches(self.row, [Eq("status", "published"), Gte("price_per_seat", 100)])
        )

    def test_any_eq_is_or(self) -> None:
        self.assertTrue(matches(self.row, [any_eq([("status", "draft"), ("id", "trip-1")])]))
        self.assertFalse(matches(self.row, [any_eq([("status", "draft"), ("id", "trip-9")])]))


class OrFilterParseTest(unittest.TestCase):
    def test_parses_eq_clauses(self) -> None:
        parsed = parse_or_filter("sender_id.eq.u1,recipient_id.eq.u1")
        self.assertEqual(
            parsed, AnyEq((Eq("sender_id", "u1"), Eq("recipient_id", "u1")))
        )

    def test_value_may_contain_dots(self) -> None:
        parsed = parse_or_filter("email.eq.a.b@example.com")
        self.assertEqual(parsed.clauses, (Eq("email", "a.b@example.com"),))

    def test_embedded_column_clause_never_matches_locally(self) -> None:
        parsed = parse_or_filter("driver_id.eq.u1,bookings.passenger_id.eq.u1")
        self.assertEqual(
            parsed.clauses, (Eq("driver_id", "u1"), Eq("bookings.passenger_id", "u1"))
        )
        self.assertTrue(matches({"driver_id": "u1"}, [parsed]))
        self.assertFalse(matches({"driver_id": "u2", "passenger_id": "u1"}, [parsed]))

    def test_rejects_other_operators(self) -> None:
        with self.assertRaises(ValueError):
            parse_or_filter("price.gte.10,status.eq.draft")

    def test_rejects_malformed_and_empty(self) -> None:
        with self.assertRaises(ValueError):
            parse_or_filter("status")
        with self.assertRaises(ValueError):
            parse_or_filter("")


if __name__ == "__main__":
    unittest.main()
