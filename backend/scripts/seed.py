"""
Seed script — populates demo laundry bookings around Delhi.

Usage (from backend/):
    python -m scripts.seed

Drops the bookings collection on each run, then creates every booking
through the normal write path so order ids and derived fields are real.
"""

import asyncio
import random

from bson import ObjectId

from laundry import db
from laundry.models.booking import BookingCreate, ItemPrice
from laundry.services.bookings import assign_rider, create_booking, update_status

random.seed(42)

PRICE_LIST = {
    "Shirt": 40,
    "Trouser": 50,
    "Saree": 150,
    "Bedsheet": 120,
    "Blazer": 250,
    "Dry Clean": 300,
    "Iron": 15,
    "Wash & Fold (per kg)": 80,
}

VENDORS = ["Fresh Fold Dry Cleaners", "Sparkle Laundry", "Press Point", "Clean Street Laundromat"]

CUSTOMERS = [
    {"name": "Priya Sharma", "phone": "9876543210", "address": "14 Connaught Place, New Delhi", "lat": 28.6315, "lng": 77.2167},
    {"name": "Rahul Verma", "phone": "9876543211", "address": "23 Karol Bagh, Delhi", "lat": 28.6519, "lng": 77.1900},
    {"name": "Ananya Gupta", "phone": "9876543212", "address": "45 Lajpat Nagar, Delhi", "lat": 28.5677, "lng": 77.2436},
    {"name": "Vikram Singh", "phone": "9876543213", "address": "8 Saket, Delhi", "lat": 28.5244, "lng": 77.2167},
    {"name": "Meera Iyer", "phone": "9876543214", "address": "34 Dwarka, Delhi", "lat": 28.5921, "lng": 77.0469},
]

RIDERS = [ObjectId() for _ in range(3)]


def _random_items() -> list[ItemPrice]:
    items = []
    for name in random.sample(list(PRICE_LIST), k=random.randint(1, 3)):
        quantity = random.randint(1, 5)
        unit_price = PRICE_LIST[name]
        items.append(
            ItemPrice(service_name=name, quantity=quantity, unit_price=unit_price, total_price=quantity * unit_price)
        )
    return items


def _booking(customer: dict, customer_id: ObjectId, day: int) -> BookingCreate:
    discount = random.choice([0, 0, 0, 50, 100])
    return BookingCreate(
        customer_id=str(customer_id),
        name=customer["name"],
        phone=customer["phone"],
        service_type="laundry",
        scheduled_date=f"2025-08-{day:02d}",
        scheduled_time=random.choice(["09:00 AM", "11:00 AM", "04:00 PM", "06:00 PM"]),
        delivery_date=f"2025-08-{day + 2:02d}",
        delivery_time="06:00 PM",
        provider_name=random.choice(VENDORS),
        address=customer["address"],
        coordinates={"lat": customer["lat"], "lng": customer["lng"]},
        discount_amount=discount,
        coupon_code="FIRST30" if discount else None,
        item_prices=_random_items(),
    )


async def seed():
    await db.connect()
    bookings = db.get_db().bookings

    print("Dropping existing bookings...")
    await bookings.drop()
    await db.ensure_indexes()

    customer_ids = [ObjectId() for _ in CUSTOMERS]
    created = []
    for day in range(1, 21):
        idx = random.randint(0, len(CUSTOMERS) - 1)
        created.append(await create_booking(_booking(CUSTOMERS[idx], customer_ids[idx], day)))

    print("Assigning riders and moving some bookings along...")
    for booking in created[::2]:
        await assign_rider(booking["_id"], str(random.choice(RIDERS)), "+91 90000 00000")
    for booking in created[::4]:
        await update_status(booking["_id"], "completed")
    await update_status(created[-1]["_id"], "cancelled")

    print(f"Done! Seeded {len(created)} bookings ({created[0]['custom_order_id']} .. {created[-1]['custom_order_id']}).")
    await db.close()


if __name__ == "__main__":
    asyncio.run(seed())
