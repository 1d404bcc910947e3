"""Promotion validity, discounting and usage accounting.

The evaluator functions are pure except increment_usage, which is the only
place usage state changes in memory. The usage stores make the
cap check and the increment happen as one step per promotion, whichever
process or thread finalizes an order.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from bson.objectid import ObjectId
from pymongo import ReturnDocument

from errors import PromotionNotFoundError, UsageExceededError
from schemas import Promotion, PromotionType, as_utc

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def usage_exhausted(promotion: Promotion) -> bool:
    return promotion.max_usage is not None and promotion.current_usage >= promotion.max_usage


def is_valid(promotion: Promotion, now: Optional[datetime] = None) -> bool:
    """Active, inside [start_date, end_date] (both inclusive) and under its usage cap."""
    now = as_utc(now) if now is not None else _now()
    return (
        promotion.active
        and promotion.start_date <= now <= promotion.end_date
        and not usage_exhausted(promotion)
    )


def is_eligible(promotion: Promotion, subtotal: float, now: Optional[datetime] = None) -> bool:
    return is_valid(promotion, now) and subtotal >= promotion.min_purchase


def apply_promotion(promotion: Promotion, price: float, now: Optional[datetime] = None) -> float:
    """Return the discounted unit price.

    A promotion that is not valid at ``now`` leaves the price unchanged.
    """
    if not is_valid(promotion, now):
        return price
    if promotion.type == PromotionType.PERCENTAGE:
        return max(0.0, price * (1 - promotion.value / 100))
    return max(0.0, price - promotion.value)


def increment_usage(promotion: Promotion) -> Promotion:
    """Count one application of ``promotion``, deactivating it at the cap.

    Callers must serialize calls per promotion (see the usage stores below)
    and call this at most once per order using the promotion.
    """
    if usage_exhausted(promotion):
        raise UsageExceededError(promotion.id, promotion.max_usage)
    promotion.current_usage += 1
    if usage_exhausted(promotion):
        promotion.active = False
        logger.info("Promotion %s exhausted after %d uses", promotion.id, promotion.current_usage)
    return promotion


class InMemoryUsageStore:
    """Usage accounting for promotions held in process memory.

    Each promotion gets its own lock, so claims on different promotions
    never wait on each other.
    """

    def __init__(self, promotions: Iterable[Promotion] = ()):
        self._promotions: Dict[str, Promotion] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        for promotion in promotions:
            self.add(promotion)

    def add(self, promotion: Promotion) -> None:
        if promotion.id is None:
            raise ValueError("Promotion must have an id to be tracked")
        with self._registry_lock:
            self._promotions[promotion.id] = promotion
            self._locks.setdefault(promotion.id, threading.Lock())

    def get(self, promotion_id: str) -> Promotion:
        try:
            return self._promotions[promotion_id]
        except KeyError:
            raise PromotionNotFoundError(promotion_id)

    def _lock_for(self, promotion_id: str) -> threading.Lock:
        with self._registry_lock:
            if promotion_id not in self._locks:
                raise PromotionNotFoundError(promotion_id)
            return self._locks[promotion_id]

    def claim(self, promotion_id: str) -> Promotion:
        with self._lock_for(promotion_id):
            promotion = self.get(promotion_id)
            increment_usage(promotion)
            return promotion.model_copy()

    def release(self, promotion: Promotion) -> None:
        """Undo a claim that returned ``promotion``."""
        with self._lock_for(promotion.id):
            current = self.get(promotion.id)
            if current.current_usage > 0:
                current.current_usage -= 1
            if usage_exhausted(promotion):
                current.active = True


class MongoUsageStore:
    """Usage accounting backed by the promotion collection.

    A claim is a single find_one_and_update whose filter carries the cap
    check, so the check and the $inc are applied atomically by the server.
    """

    def __init__(self, collection):
        self.collection = collection

    def claim(self, promotion_id: str) -> Promotion:
        oid = ObjectId(promotion_id)
        doc = self.collection.find_one_and_update(
            {
                "_id": oid,
                "$or": [
                    {"max_usage": None},
                    {"$expr": {"$lt": ["$current_usage", "$max_usage"]}},
                ],
            },
            {"$inc": {"current_usage": 1}, "$set": {"updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = self.collection.find_one({"_id": oid})
            if current is None:
                raise PromotionNotFoundError(promotion_id)
            raise UsageExceededError(promotion_id, current.get("max_usage"))

        promotion = Promotion.from_document(doc)
        if usage_exhausted(promotion):
            # only the claim that reached the cap may clear the flag
            self.collection.update_one({"_id": oid}, {"$set": {"active": False}})
            promotion.active = False
            logger.info("Promotion %s exhausted after %d uses", promotion_id, promotion.current_usage)
        return promotion

    def release(self, promotion: Promotion) -> None:
        """Undo a claim that returned ``promotion``."""
        update = {"$inc": {"current_usage": -1}, "$set": {"updated_at": _now()}}
        if usage_exhausted(promotion):
            update["$set"]["active"] = True
        self.collection.update_one({"_id": ObjectId(promotion.id)}, update)
        logger.info("Released usage on promotion %s", promotion.id)
