import certifi
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

from laundry.config import settings
from laundry.services.clock import IST

client: AsyncIOMotorClient = None  # type: ignore[assignment]


def get_db():
    return client[settings.mongo_db]


async def connect():
    global client
    client = AsyncIOMotorClient(
        settings.mongo_url,
        tlsCAFile=certifi.where(),
        serverSelectionTimeoutMS=3000,
        connectTimeoutMS=3000,
        socketTimeoutMS=5000,
        tz_aware=True,
        tzinfo=IST,
    )


async def close():
    global client
    if client:
        client.close()


async def ensure_indexes():
    db = get_db()

    # Sparse so legacy bookings without an order id don't collide on null.
    await db.bookings.create_index("custom_order_id", unique=True, sparse=True)

    await db.bookings.create_index("customer_id")
    await db.bookings.create_index("rider_id")
    await db.bookings.create_index("status")
    await db.bookings.create_index("payment_status")
    await db.bookings.create_index("scheduled_date")
    await db.bookings.create_index([("created_at", DESCENDING)])
    await db.bookings.create_index([("coordinates.lat", ASCENDING), ("coordinates.lng", ASCENDING)])
