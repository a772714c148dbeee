"""
tests/conftest.py
In-memory stand-in for a Motor bookings collection, plus fixtures that
point the booking services at it and freeze the IST clock.

The collection enforces the sparse unique index on ``custom_order_id`` the
same way mongod does (``DuplicateKeyError`` with ``keyPattern`` details)
and yields to the event loop on every call so concurrent callers interleave.
"""

import asyncio
import copy
import re
from datetime import datetime
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from laundry.services.clock import IST

_MISSING = object()

FROZEN_NOW = datetime(2025, 8, 14, 10, 30, tzinfo=IST)


def _get(doc: dict, path: str):
    cur = doc
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def _matches(doc: dict, flt: dict) -> bool:
    for key, cond in flt.items():
        if key == "$or":
            if not any(_matches(doc, sub) for sub in cond):
                return False
            continue

        value = _get(doc, key)
        if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
            for op, arg in cond.items():
                present = value is not _MISSING and value is not None
                if op == "$regex":
                    ok = isinstance(value, str) and re.search(arg, value) is not None
                elif op == "$ne":
                    ok = (None if value is _MISSING else value) != arg
                elif op == "$gte":
                    ok = present and value >= arg
                elif op == "$lte":
                    ok = present and value <= arg
                elif op == "$exists":
                    ok = (value is not _MISSING) == arg
                else:
                    raise NotImplementedError(op)
                if not ok:
                    return False
        elif (None if value is _MISSING else value) != cond:
            return False
    return True


def _sort_spec(key_or_list, direction=None) -> list:
    if isinstance(key_or_list, str):
        return [(key_or_list, direction or 1)]
    return list(key_or_list)


def _sorted(docs: list, spec: list) -> list:
    for field, direction in reversed(spec):
        docs = sorted(docs, key=lambda d: _get(d, field), reverse=direction < 0)
    return docs


class FakeCursor:
    def __init__(self, docs: list):
        self._docs = docs

    def sort(self, key_or_list, direction=None):
        self._docs = _sorted(self._docs, _sort_spec(key_or_list, direction))
        return self

    async def to_list(self, length=None):
        await asyncio.sleep(0)
        docs = self._docs if length is None else self._docs[:length]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    def __init__(self):
        self.docs: list[dict] = []
        self.fail_order_id_writes = 0
        self.attempted_order_ids: list[str] = []

    def _check_unique(self, order_id, exclude_id=None):
        if order_id is None:
            return
        self.attempted_order_ids.append(order_id)
        clash = any(
            d.get("custom_order_id") == order_id and d["_id"] != exclude_id for d in self.docs
        )
        if self.fail_order_id_writes > 0:
            self.fail_order_id_writes -= 1
            clash = True
        if clash:
            raise DuplicateKeyError(
                f"E11000 duplicate key error index: custom_order_id_1 dup key: {order_id}",
                11000,
                {"keyPattern": {"custom_order_id": 1}, "keyValue": {"custom_order_id": order_id}},
            )

    async def insert_one(self, doc: dict):
        await asyncio.sleep(0)
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc.get("custom_order_id"))
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, flt=None, projection=None, sort=None):
        await asyncio.sleep(0)
        docs = [d for d in self.docs if _matches(d, flt or {})]
        if sort:
            docs = _sorted(docs, _sort_spec(sort))
        return copy.deepcopy(docs[0]) if docs else None

    def find(self, flt=None):
        return FakeCursor([d for d in self.docs if _matches(d, flt or {})])

    async def update_one(self, flt: dict, update: dict):
        await asyncio.sleep(0)
        for doc in self.docs:
            if _matches(doc, flt):
                changes = update.get("$set", {})
                if "custom_order_id" in changes:
                    self._check_unique(changes["custom_order_id"], exclude_id=doc["_id"])
                doc.update(copy.deepcopy(changes))
                return SimpleNamespace(matched_count=1, modified_count=int(bool(changes)))
        return SimpleNamespace(matched_count=0, modified_count=0)


@pytest.fixture
def bookings():
    return FakeCollection()


@pytest.fixture
def fake_db(bookings, monkeypatch):
    """Route the booking services to an in-memory database."""
    db = SimpleNamespace(bookings=bookings)
    monkeypatch.setattr("laundry.services.bookings.get_db", lambda: db)
    return db


@pytest.fixture
def frozen_now(monkeypatch):
    for module in ("order_ids", "consistency", "bookings"):
        monkeypatch.setattr(f"laundry.services.{module}.ist_now", lambda: FROZEN_NOW)
    return FROZEN_NOW


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr("laundry.services.order_ids.RETRY_BACKOFF_SECONDS", 0)
