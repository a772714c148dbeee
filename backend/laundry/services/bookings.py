import logging
import math
from datetime import timedelta
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING

from laundry.db import get_db
from laundry.models.booking import (
    BOOKING_STATUSES,
    BookingCreate,
    ItemLine,
    RiderStatus,
    booking_to_doc,
    doc_to_booking,
)
from laundry.services.clock import ist_now
from laundry.services.consistency import changed_fields, derive_consistent_fields
from laundry.services.order_ids import commit_with_order_id, insert_with_order_id

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW = timedelta(seconds=60)
_EARTH_RADIUS_KM = 6371

# Rider lifecycle step -> (timestamp field, booking status it implies)
_RIDER_STEPS = {
    "accepted": ("acceptedAt", "confirmed"),
    "picked_up": ("pickedUpAt", "in_progress"),
    "delivered": ("deliveredAt", "in_progress"),
    "completed": ("completedAt", "completed"),
}


def _to_oid(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


async def create_booking(body: BookingCreate) -> dict:
    """Insert a new booking with derived fields and a fresh order id.

    A repeat submission (same customer, service and slot within the last
    minute) returns the booking that already exists.
    """
    db = get_db()
    now = ist_now()
    doc = derive_consistent_fields(booking_to_doc(body), now=now, is_new=True)

    duplicate = await db.bookings.find_one(
        {
            "customer_id": doc["customer_id"],
            "service": doc["service"],
            "scheduled_date": doc["scheduled_date"],
            "scheduled_time": doc["scheduled_time"],
            "status": {"$ne": "cancelled"},
            "created_at": {"$gte": now - DUPLICATE_WINDOW},
        }
    )
    if duplicate:
        logger.info(
            "Duplicate booking request for customer %s, returning %s",
            doc["customer_id"],
            duplicate.get("custom_order_id"),
        )
        return doc_to_booking(duplicate)

    order_id = await insert_with_order_id(db.bookings, doc)
    logger.info("Created booking %s with order id %s", doc["_id"], order_id)
    return doc_to_booking(doc)


async def _load(booking_id: str, **extra) -> Optional[dict]:
    oid = _to_oid(booking_id)
    if oid is None:
        return None
    return await get_db().bookings.find_one({"_id": oid, **extra})


async def get_booking(ref: str) -> Optional[dict]:
    """Look a booking up by ObjectId or by its order id."""
    oid = _to_oid(ref)
    query = {"_id": oid} if oid else {"custom_order_id": ref}
    doc = await get_db().bookings.find_one(query)
    return doc_to_booking(doc) if doc else None


async def list_bookings(
    *,
    customer_id: Optional[str] = None,
    rider_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
) -> list[dict]:
    query: dict = {}
    for field, value in (("customer_id", customer_id), ("rider_id", rider_id)):
        if value:
            oid = _to_oid(value)
            if oid is None:
                return []
            query[field] = oid
    if status:
        query["status"] = status

    cursor = get_db().bookings.find(query).sort("created_at", DESCENDING)
    docs = await cursor.to_list(length=limit)
    return [doc_to_booking(d) for d in docs]


async def save_booking(doc: dict, updates: Optional[dict] = None) -> dict:
    """Apply ``updates`` to a stored booking and write only what changed.

    The order id of a stored booking is never replaced; legacy bookings
    stored without one get one here.
    """
    db = get_db()
    derived = derive_consistent_fields({**doc, **(updates or {})})

    async def commit(d: dict):
        await db.bookings.update_one({"_id": doc["_id"]}, {"$set": changed_fields(doc, d)})

    if not derived.get("custom_order_id"):
        order_id = await commit_with_order_id(db.bookings, derived, commit)
        logger.info("Assigned order id %s to booking %s", order_id, doc["_id"])
    else:
        await commit(derived)
    return doc_to_booking(derived)


async def update_status(
    booking_id: str,
    status: str,
    *,
    rider_id: Optional[str] = None,
) -> Optional[dict]:
    """Move a booking to ``status``; with ``rider_id``, only that rider's booking matches."""
    if status not in BOOKING_STATUSES:
        raise ValueError(f"Invalid status {status!r}")

    extra = {}
    if rider_id:
        rider_oid = _to_oid(rider_id)
        if rider_oid is None:
            return None
        extra["rider_id"] = rider_oid

    doc = await _load(booking_id, **extra)
    if not doc:
        logger.warning("Booking %s not found or not assigned to rider %s", booking_id, rider_id)
        return None
    return await save_booking(doc, {"status": status})


async def update_items(booking_id: str, items: list[ItemLine]) -> Optional[dict]:
    """Replace the itemized lines; totals and descriptions are re-derived."""
    if not items:
        raise ValueError("items must not be empty")

    doc = await _load(booking_id)
    if not doc:
        return None

    item_prices = [line.to_item_price().model_dump() for line in items]
    return await save_booking(
        doc,
        {
            "item_prices": item_prices,
            "total_price": sum(i["total_price"] for i in item_prices),
            "final_amount": None,
        },
    )


async def assign_rider(
    booking_id: str,
    rider_id: str,
    rider_phone: Optional[str] = None,
) -> Optional[dict]:
    rider_oid = _to_oid(rider_id)
    if rider_oid is None:
        raise ValueError("Invalid rider_id")

    doc = await _load(booking_id)
    if not doc:
        return None

    updates = {
        "rider_id": rider_oid,
        "assignedRider": rider_oid,
        "assignedRiderPhone": rider_phone,
        "riderStatus": "assigned",
        "assignedAt": ist_now(),
    }
    if doc.get("status") == "pending":
        updates["status"] = "confirmed"
    logger.info("Assigning rider %s to booking %s", rider_id, booking_id)
    return await save_booking(doc, updates)


async def update_rider_status(booking_id: str, rider_status: RiderStatus) -> Optional[dict]:
    """Record a rider lifecycle step and the booking status it implies."""
    if rider_status not in _RIDER_STEPS:
        raise ValueError(f"Invalid rider status {rider_status!r}")

    doc = await _load(booking_id)
    if not doc:
        return None

    stamp_field, status = _RIDER_STEPS[rider_status]
    return await save_booking(
        doc,
        {"riderStatus": rider_status, stamp_field: ist_now(), "status": status},
    )


async def cancel_booking(booking_id: str) -> Optional[dict]:
    return await update_status(booking_id, "cancelled")


async def find_nearby(lat: float, lng: float, radius_km: float = 5) -> list[dict]:
    """Bookings within ``radius_km`` great-circle distance of the point.

    The index-backed box query narrows candidates; the haversine check
    trims the box corners.
    """
    lat_delta = math.degrees(radius_km / _EARTH_RADIUS_KM)
    lng_delta = lat_delta / max(math.cos(math.radians(lat)), 1e-6)
    query = {
        "coordinates.lat": {"$gte": lat - lat_delta, "$lte": lat + lat_delta},
        "coordinates.lng": {"$gte": lng - lng_delta, "$lte": lng + lng_delta},
    }
    docs = await get_db().bookings.find(query).to_list(length=500)
    return [
        doc_to_booking(d)
        for d in docs
        if distance_km(lat, lng, d["coordinates"]["lat"], d["coordinates"]["lng"]) <= radius_km
    ]


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance between two points."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return 2 * _EARTH_RADIUS_KM * math.asin(math.sqrt(a))
