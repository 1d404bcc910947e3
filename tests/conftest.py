"""Pytest fixtures for pricing and promotion tests."""

import copy
import threading
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from bson.objectid import ObjectId
from pymongo import ReturnDocument

from schemas import Promotion

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeCursor(list):
    def limit(self, n):
        return FakeCursor(self[:n]) if n else self


class FakeCollection:
    """In-memory stand-in for a pymongo collection.

    Filters support equality, $or and a $expr holding a single $lt between
    two field paths. Updates support $set and $inc.
    """

    def __init__(self):
        self.docs = []
        self._lock = threading.Lock()

    @classmethod
    def _matches(cls, doc, flt):
        for key, value in (flt or {}).items():
            if key == "$or":
                if not any(cls._matches(doc, sub) for sub in value):
                    return False
            elif key == "$expr":
                left, right = value["$lt"]
                lhs, rhs = doc.get(left.lstrip("$")), doc.get(right.lstrip("$"))
                if lhs is None or rhs is None or not lhs < rhs:
                    return False
            elif doc.get(key) != value:
                return False
        return True

    @staticmethod
    def _apply(doc, update):
        for key, value in update.get("$set", {}).items():
            doc[key] = value
        for key, value in update.get("$inc", {}).items():
            doc[key] = doc.get(key, 0) + value

    def insert_one(self, doc):
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        with self._lock:
            self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    def find_one(self, flt=None):
        with self._lock:
            for doc in self.docs:
                if self._matches(doc, flt):
                    return copy.deepcopy(doc)
        return None

    def find(self, flt=None):
        with self._lock:
            return FakeCursor(copy.deepcopy(d) for d in self.docs if self._matches(d, flt))

    def update_one(self, flt, update):
        with self._lock:
            for doc in self.docs:
                if self._matches(doc, flt):
                    self._apply(doc, update)
                    return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    def find_one_and_update(self, flt, update, return_document=ReturnDocument.BEFORE):
        with self._lock:
            for doc in self.docs:
                if self._matches(doc, flt):
                    before = copy.deepcopy(doc)
                    self._apply(doc, update)
                    return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before
        return None

    def delete_one(self, flt):
        with self._lock:
            for i, doc in enumerate(self.docs):
                if self._matches(doc, flt):
                    del self.docs[i]
                    return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


class FakeDatabase:
    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())

    def list_collection_names(self):
        return list(self.collections)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_promotion():
    """Build a promotion valid around NOW, overridable per field."""

    def _make(**overrides):
        data = {
            "id": str(ObjectId()),
            "name": "Summer sale",
            "type": "percentage",
            "value": 10,
            "product_id": "p1",
            "start_date": NOW - timedelta(days=1),
            "end_date": NOW + timedelta(days=1),
        }
        data.update(overrides)
        return Promotion(**data)

    return _make


@pytest.fixture
def fake_db(monkeypatch):
    import database

    db = FakeDatabase()
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture
def api_client(fake_db):
    from fastapi.testclient import TestClient

    from main import app

    return TestClient(app)
