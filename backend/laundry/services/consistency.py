"""Derived-field rules applied to a booking document before every write.

The rules run in a fixed order, each reading the output of the ones before:
timestamps, amounts, service descriptions, completion stamp. Order-id
assignment happens on the insert path (see ``order_ids.insert_with_order_id``)
and never touches the fields derived here.
"""

import copy
import logging
from datetime import datetime
from typing import Optional

from pydantic import TypeAdapter

from laundry.models.booking import ItemPrice
from laundry.services.clock import ist_now

logger = logging.getLogger(__name__)

_ITEM_PRICES = TypeAdapter(list[ItemPrice])


def describe_items(items: list[ItemPrice]) -> list[str]:
    """One entry per line, suffixed with the quantity when more than one."""
    return [
        f"{item.service_name} x{item.quantity}" if item.quantity > 1 else item.service_name
        for item in items
    ]


def derive_consistent_fields(
    booking: dict,
    *,
    now: Optional[datetime] = None,
    is_new: bool = False,
) -> dict:
    """Return a copy of ``booking`` with every derived field brought up to date.

    Raises ``pydantic.ValidationError`` when an ``item_prices`` line is
    malformed and ``ValueError`` when no price can be determined; both must
    block the write.
    """
    now = now or ist_now()
    doc = copy.deepcopy(booking)

    doc["updated_at"] = now
    if is_new and not doc.get("created_at"):
        doc["created_at"] = now

    items = _ITEM_PRICES.validate_python(doc.get("item_prices") or [])
    doc["item_prices"] = [item.model_dump() for item in items]

    if doc.get("total_price") is None:
        if not items:
            raise ValueError("total_price is required when item_prices is empty")
        doc["total_price"] = sum(item.total_price for item in items)

    if doc.get("final_amount") is None:
        doc["final_amount"] = doc["total_price"] - (doc.get("discount_amount") or 0)
    if doc["final_amount"] < 0:
        doc["final_amount"] = 0

    # Legacy and quick-pickup bookings carry no lines; keep their descriptions.
    if items:
        services = describe_items(items)
        if doc.get("services") != services:
            doc["services"] = services
            logger.debug("Synchronized services from item_prices: %s", services)
        service = ", ".join(services)
        if doc.get("service") != service:
            doc["service"] = service

    if doc.get("status") == "completed" and not doc.get("completed_at"):
        doc["completed_at"] = now

    return doc


def changed_fields(before: dict, after: dict) -> dict:
    """Keys of ``after`` whose values differ from ``before``, for a minimal $set."""
    return {k: v for k, v in after.items() if k not in before or before[k] != v}
