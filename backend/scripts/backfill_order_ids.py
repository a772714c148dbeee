"""
Give every booking that predates order ids a custom_order_id.

Usage (from backend/):
    python -m scripts.backfill_order_ids [--dry-run]

Bookings are processed oldest first, so earlier bookings get lower
sequence numbers within the current month. Safe to re-run: bookings that
already carry an id are skipped.
"""

import asyncio
import sys

from laundry import db
from laundry.services.bookings import save_booking
from laundry.services.order_ids import allocate_order_id


async def backfill(dry_run: bool = False):
    await db.connect()
    bookings = db.get_db().bookings
    query = {"$or": [{"custom_order_id": {"$exists": False}}, {"custom_order_id": None}]}

    missing = await bookings.count_documents(query)
    if not missing:
        print("  ✓ Every booking already has an order id — nothing to do.")
        await db.close()
        return

    if dry_run:
        next_id = await allocate_order_id(bookings)
        print(f"  {missing} bookings without an order id; the next id would be {next_id}.")
        await db.close()
        return

    print(f"  Backfilling {missing} bookings...")
    done = 0
    async for doc in bookings.find(query).sort("created_at", 1):
        saved = await save_booking(doc)
        done += 1
        print(f"  ✓ {saved['_id']} -> {saved['custom_order_id']}")

    print(f"Done — {done} bookings backfilled.")
    await db.close()


if __name__ == "__main__":
    asyncio.run(backfill(dry_run="--dry-run" in sys.argv[1:]))
