"""Human-readable booking order ids.

Ids look like ``A20250800042``: a rollover letter, the IST year and month,
then a zero-padded sequence. The bookings collection is the only source of
sequence truth; the unique index on ``custom_order_id`` arbitrates races and
the insert path retries a bounded number of times before settling for a
timestamped fallback id.
"""

import asyncio
import logging
import re
import secrets
import string
from datetime import datetime
from typing import Awaitable, Callable, Optional

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from laundry.services.clock import ist_now

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 5
MAX_SEQUENCE = 99_999
MAX_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 0.1
FALLBACK_PREFIX = "B"

_ORDER_ID_RE = re.compile(r"^([A-Z])([0-9]{6})([0-9]{5})$")
_FALLBACK_ALPHABET = string.ascii_uppercase + string.digits


def year_month(now: datetime) -> str:
    return now.strftime("%Y%m")


def format_order_id(letter: str, ym: str, sequence: int) -> str:
    return f"{letter}{ym}{sequence:0{SEQUENCE_WIDTH}d}"


def next_candidate(latest_id: Optional[str]) -> tuple[str, int]:
    """Letter and sequence that follow ``latest_id``.

    Unparseable ids restart the month at ``A``/1 instead of raising, so a
    corrupt legacy record can never block new bookings.
    """
    if not latest_id:
        return "A", 1

    match = _ORDER_ID_RE.match(latest_id)
    if not match:
        logger.warning("Could not parse order id %r, restarting sequence at A/1", latest_id)
        return "A", 1

    letter, sequence = match.group(1), int(match.group(3))
    if sequence >= MAX_SEQUENCE:
        return chr(ord(letter) + 1), 1
    return letter, sequence + 1


def fallback_order_id(now: Optional[datetime] = None) -> str:
    millis = int((now or ist_now()).timestamp() * 1000)
    suffix = "".join(secrets.choice(_FALLBACK_ALPHABET) for _ in range(6))
    return f"{FALLBACK_PREFIX}{millis}{suffix}"


async def compute_next_order_id(collection, now: datetime) -> str:
    """Read the month's highest id and return the one after it.

    Not atomic: two concurrent callers can compute the same candidate. The
    exact-match check below bumps the sequence once without re-checking, so
    a third concurrent writer can still collide; the unique index catches it.
    """
    ym = year_month(now)
    latest = await collection.find_one(
        {"custom_order_id": {"$regex": f"^[A-Z]{ym}"}},
        projection={"custom_order_id": 1},
        sort=[("custom_order_id", DESCENDING)],
    )
    letter, sequence = next_candidate(latest["custom_order_id"] if latest else None)
    candidate = format_order_id(letter, ym, sequence)

    taken = await collection.find_one({"custom_order_id": candidate}, projection={"_id": 1})
    if taken:
        logger.warning("Order id %s already taken, using the next sequence", candidate)
        candidate = format_order_id(letter, ym, sequence + 1)
    return candidate


async def allocate_order_id(collection, now: Optional[datetime] = None) -> str:
    """Next order id for the current IST month. Never raises."""
    now = now or ist_now()
    try:
        return await compute_next_order_id(collection, now)
    except PyMongoError:
        logger.warning("Order id lookup failed, using fallback id", exc_info=True)
        return fallback_order_id(now)


def _is_order_id_conflict(exc: DuplicateKeyError) -> bool:
    details = exc.details or {}
    key = details.get("keyPattern") or details.get("keyValue") or {}
    return "custom_order_id" in key or "custom_order_id" in str(exc)


async def _try_commit(commit, doc: dict) -> bool:
    try:
        await commit(doc)
    except DuplicateKeyError as exc:
        if not _is_order_id_conflict(exc):
            raise
        logger.warning("Order id %s lost a write race", doc.get("custom_order_id"))
        return False
    return True


async def commit_with_order_id(collection, doc: dict, commit: Callable[[dict], Awaitable]) -> str:
    """Assign ``doc`` a fresh order id and write it with ``commit``; returns the id used.

    Up to ``MAX_ATTEMPTS`` allocate-and-commit rounds with linear backoff,
    then one commit with a fallback id. Only duplicate keys on other indexes
    and a failing fallback commit propagate.
    """
    for attempt in range(1, MAX_ATTEMPTS + 1):
        order_id = await allocate_order_id(collection)
        doc["custom_order_id"] = order_id
        if await _try_commit(commit, doc):
            return order_id

        if attempt < MAX_ATTEMPTS:
            await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)

    order_id = fallback_order_id()
    logger.warning("Order id allocation exhausted %d attempts, using %s", MAX_ATTEMPTS, order_id)
    doc["custom_order_id"] = order_id
    await commit(doc)
    return order_id


async def insert_with_order_id(collection, doc: dict) -> str:
    return await commit_with_order_id(collection, doc, collection.insert_one)
