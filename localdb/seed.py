"""
Baseline demo data for the local backend.

`seed_database` wipes the collections and credential store (a session
belonging to one of the demo accounts survives) and repopulates them with
a small, consistent data set: three accounts, their profiles, two trips, a
booking, wallets, notifications, a message thread, transactions, a vehicle,
a referral code and badges.

Run with:
    python -m localdb.seed [--db PATH] [--reset-only]
"""

from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

from .auth import SESSION_SLOT, USERS_SLOT
from .client import LocalBackendClient
from .logger import logger
from .protocol import auth_event

DEMO_PASSWORD = "password123"
DRIVER_ID = "user-driver-1"
PASSENGER_ID = "user-passenger-1"
ADMIN_ID = "user-admin-1"


def _credentials(now: datetime) -> List[Dict[str, Any]]:
    accounts = [
        (DRIVER_ID, "driver@wassel.com", "Ahmed Driver", "driver"),
        (PASSENGER_ID, "passenger@wassel.com", "Sara Passenger", "passenger"),
        (ADMIN_ID, "admin@wassel.com", "Wassel Admin", "admin"),
    ]
    return [
        {
            "id": user_id,
            "email": email,
            "password": DEMO_PASSWORD,
            "user_metadata": {"full_name": name, "role": role},
            "app_metadata": {},
            "aud": "authenticated",
            "created_at": now.isoformat(),
        }
        for user_id, email, name, role in accounts
    ]


def _baseline_rows(now: datetime) -> Dict[str, List[Dict[str, Any]]]:
    tomorrow = (now + timedelta(days=1)).date().isoformat()
    day_after = (now + timedelta(days=2)).date().isoformat()
    conversation_id = "_".join(sorted([DRIVER_ID, PASSENGER_ID]))
    return {
        "profiles": [
            {
                "id": DRIVER_ID,
                "email": "driver@wassel.com",
                "full_name": "Ahmed Driver",
                "rating_as_driver": 4.8,
                "trips_as_driver": 156,
                "wallet_balance": 1500,
                "is_verified": True,
                "verification_level": 3,
                "country": "UAE",
                "city": "Dubai",
                "language": "en",
                "currency": "AED",
            },
            {
                "id": PASSENGER_ID,
                "email": "passenger@wassel.com",
                "full_name": "Sara Passenger",
                "rating_as_passenger": 4.9,
                "trips_as_passenger": 42,
                "wallet_balance": 350,
                "is_verified": True,
                "verification_level": 2,
                "country": "UAE",
                "city": "Sharjah",
                "language": "ar",
                "currency": "AED",
            },
            {
                "id": ADMIN_ID,
                "email": "admin@wassel.com",
                "full_name": "Wassel Admin",
                "is_verified": True,
                "verification_level": 4,
                "country": "UAE",
                "city": "Abu Dhabi",
                "language": "en",
                "currency": "AED",
            },
        ],
        "trips": [
            {
                "id": "trip-1",
                "driver_id": DRIVER_ID,
                "trip_type": "wasel",
                "status": "published",
                "from_location": "Dubai Mall",
                "from_lat": 25.1972,
                "from_lng": 55.2744,
                "to_location": "Abu Dhabi Mall",
                "to_lat": 24.4920,
                "to_lng": 54.3831,
                "departure_date": tomorrow,
                "departure_time": "10:00",
                "available_seats": 4,
                "seats_booked": 1,
                "price_per_seat": 50,
                "luggage_allowed": True,
                "instant_booking": True,
                "created_at": now,
            },
            {
                "id": "trip-2",
                "driver_id": DRIVER_ID,
                "trip_type": "raje3",
                "status": "published",
                "from_location": "Discovery Gardens",
                "from_lat": 25.0412,
                "from_lng": 55.1221,
                "to_location": "JBR",
                "to_lat": 25.0768,
                "to_lng": 55.1328,
                "departure_date": day_after,
                "departure_time": "18:30",
                "available_seats": 2,
                "seats_booked": 0,
                "price_per_seat": 25,
                "luggage_allowed": False,
                "instant_booking": False,
                "created_at": now,
            },
        ],
        "bookings": [
            {
                "id": "booking-1",
                "trip_id": "trip-1",
                "passenger_id": PASSENGER_ID,
                "status": "accepted",
                "seats_requested": 1,
                "total_price": 50,
                "payment_status": "completed",
                "payment_method": "wallet",
                "created_at": now,
            }
        ],
        "wallets": [
            {"id": "wallet-1", "user_id": DRIVER_ID, "balance": 1500, "currency": "AED"},
            {"id": "wallet-2", "user_id": PASSENGER_ID, "balance": 350, "currency": "AED"},
        ],
        "notifications": [
            {
                "id": "notif-1",
                "user_id": DRIVER_ID,
                "title": "New Booking!",
                "message": "Sara Passenger booked a seat for your trip to Abu Dhabi.",
                "type": "trip_request",
                "read_at": None,
                "created_at": now,
            },
            {
                "id": "notif-2",
                "user_id": PASSENGER_ID,
                "title": "Booking Accepted",
                "message": "Ahmed Driver accepted your booking for the trip to Abu Dhabi.",
                "type": "trip_accepted",
                "read_at": None,
                "created_at": now,
            },
        ],
        "messages": [
            {
                "id": "msg-1",
                "conversation_id": conversation_id,
                "sender_id": DRIVER_ID,
                "recipient_id": PASSENGER_ID,
                "trip_id": "trip-1",
                "content": "Hello Sara, I will be at the mall exit 3.",
                "created_at": now,
            },
            {
                "id": "msg-2",
                "conversation_id": conversation_id,
                "sender_id": PASSENGER_ID,
                "recipient_id": DRIVER_ID,
                "trip_id": "trip-1",
                "content": "Great, see you there!",
                "created_at": now + timedelta(minutes=1),
            },
        ],
        "transactions": [
            {
                "id": "tx-1",
                "wallet_id": "wallet-2",
                "type": "payment",
                "amount": -50,
                "status": "completed",
                "description": "Trip to Abu Dhabi",
                "created_at": now,
            },
            {
                "id": "tx-2",
                "wallet_id": "wallet-1",
                "type": "earning",
                "amount": 45,
                "status": "completed",
                "description": "Trip from Dubai Mall (after commission)",
                "created_at": now,
            },
        ],
        "vehicles": [
            {
                "id": "vehicle-1",
                "owner_id": DRIVER_ID,
                "make": "Tesla",
                "model": "Model 3",
                "color": "Midnight Silver",
                "plate_number": "DXB-WASEL-1",
                "year": 2023,
                "type": "electric",
                "is_verified": True,
            }
        ],
        "referrals": [
            {
                "id": "ref-1",
                "referrer_id": DRIVER_ID,
                "code": "DRIVER50",
                "bonus_amount": 50,
                "status": "active",
                "created_at": now,
            }
        ],
        "user_badges": [
            {"id": "badge-1", "user_id": DRIVER_ID, "badge_type": "top_rated", "awarded_at": now},
            {"id": "badge-2", "user_id": DRIVER_ID, "badge_type": "eco_friendly", "awarded_at": now},
        ],
    }


def _drop_orphaned_session(client: LocalBackendClient, user_ids: Set[str]) -> bool:
    # Caller holds the store lock.
    raw = client.store.read_slot(SESSION_SLOT)
    if not raw:
        return False
    user = raw.get("user") or {}
    if user.get("id") in user_ids:
        return False
    client.store.delete_slot(SESSION_SLOT)
    logger.info("Signed out %s: the account is not part of the demo data.", user.get("email"))
    return True


async def seed_database(
    client: LocalBackendClient, *, now: Optional[datetime] = None
) -> Dict[str, int]:
    """
    Replace the demo data set; returns the number of rows seeded per collection.

    A signed-in demo account stays signed in. Any other session is dropped,
    since its account no longer exists once the credentials are replaced.
    """
    moment = now or datetime.now(timezone.utc)
    credentials = _credentials(moment)
    logger.info("Seeding demo database...")
    with client.store.lock:
        client.store.clear_collections()
        client.store.delete_slot(USERS_SLOT)
        client.auth.replace_credentials(credentials)
        signed_out = _drop_orphaned_session(client, {record["id"] for record in credentials})
    if signed_out:
        client.auth.notify(auth_event.SIGNED_OUT, None)

    counts: Dict[str, int] = {}
    for collection, rows in _baseline_rows(moment).items():
        response = await client.from_(collection).insert(rows)
        if not response.ok:
            message = response.error.message if response.error else "unknown error"
            logger.error("Error seeding %s: %s", collection, message)
            raise RuntimeError(f"Failed to seed {collection}: {message}")
        counts[collection] = len(response.data)
    logger.info("Demo database seeded: %s", counts)
    return counts


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Reset or seed the Wassel demo store")
    parser.add_argument("--db", type=str, default=None, help="SQLite store path or URL")
    parser.add_argument(
        "--reset-only",
        action="store_true",
        help="Clear every collection, credential and session without seeding",
    )
    args = parser.parse_args(argv)

    client = LocalBackendClient.open(args.db)
    try:
        if args.reset_only:
            client.reset_database()
        else:
            asyncio.run(seed_database(client))
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
