import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson.objectid import ObjectId
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

import database
from database import create_document, get_db, get_documents
from errors import (
    CommerceError,
    DatabaseUnavailableError,
    EmptyOrderError,
    InvalidAdjustmentError,
    InvalidQuantityError,
    OrderNotFoundError,
    ProductNotFoundError,
    PromotionNotFoundError,
    UsageExceededError,
)
from pricing import compute_total, with_adjustments
from promotions import MongoUsageStore, is_valid
from schemas import (
    Order as OrderSchema,
    OrderItem as OrderItemSchema,
    OrderStatus,
    PricingResult,
    Product as ProductSchema,
    Promotion as PromotionSchema,
    PromotionType,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="E-commerce SaaS API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Errors

ERROR_STATUS_CODES: Dict[type, int] = {
    EmptyOrderError: 400,
    InvalidQuantityError: 400,
    InvalidAdjustmentError: 400,
    ProductNotFoundError: 404,
    PromotionNotFoundError: 404,
    OrderNotFoundError: 404,
    UsageExceededError: 409,
    DatabaseUnavailableError: 500,
}


@app.exception_handler(CommerceError)
async def commerce_error_handler(request: Request, exc: CommerceError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )

# Utilities

def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def serialize(doc):
    if not doc:
        return None
    doc["id"] = str(doc.pop("_id"))
    return doc


def collection(name: str):
    return get_db()[name]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Pricing collaborators

def resolve_price(product_id: str) -> Optional[float]:
    if not ObjectId.is_valid(product_id):
        return None
    product = collection("product").find_one({"_id": ObjectId(product_id)})
    if not product:
        return None
    return product["price"]


def promotion_resolver(now: datetime):
    """Build a resolver returning, per product, the latest-starting promotion valid at ``now``."""
    cache: Dict[str, Optional[PromotionSchema]] = {}

    def resolve(product_id: str) -> Optional[PromotionSchema]:
        if product_id not in cache:
            docs = collection("promotion").find({"product_id": product_id, "active": True})
            candidates = [p for p in (PromotionSchema.from_document(d) for d in docs) if is_valid(p, now)]
            cache[product_id] = max(candidates, key=lambda p: p.start_date) if candidates else None
        return cache[product_id]

    return resolve


def price_items(items: List[OrderItemSchema], tax_price: float, shipping_price: float, now: datetime) -> PricingResult:
    return compute_total(
        items,
        resolve_price,
        promotion_resolver(now),
        tax_price=tax_price,
        shipping_price=shipping_price,
        now=now,
    )


# Request models
class PreviewRequest(BaseModel):
    items: List[OrderItemSchema]
    tax_price: float = 0.0
    shipping_price: float = 0.0

class CreateOrderRequest(PreviewRequest):
    user_id: str
    shipping_address_id: str
    payment_method: str = Field(..., pattern="^(card|paypal|bank_transfer)$")

class UpdatePromotionRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[PromotionType] = None
    value: Optional[float] = None
    product_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active: Optional[bool] = None
    min_purchase: Optional[float] = None
    max_usage: Optional[int] = None
    conditions: Optional[Dict[str, Any]] = None

class UpdateOrderRequest(BaseModel):
    tax_price: Optional[float] = None
    shipping_price: Optional[float] = None
    status: Optional[OrderStatus] = None


# Routes
@app.get("/")
def root():
    return {"message": "E-commerce SaaS API running"}

@app.get("/test")
def test_database():
    resp = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    if database.db is None:
        return resp
    try:
        resp["collections"] = database.db.list_collection_names()[:10]
        resp["database"] = "✅ Connected & Working"
        resp["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        resp["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return resp


# Products
@app.post("/products", status_code=201)
def create_product(product: ProductSchema):
    pid = create_document("product", product)
    return {"id": pid}

@app.get("/products")
def list_products():
    return [serialize(p) for p in get_documents("product", limit=100)]


# Promotions
@app.post("/promotions", status_code=201)
def create_promotion(promotion: PromotionSchema):
    if promotion.start_date < utc_now():
        raise HTTPException(status_code=400, detail="start_date must not be in the past")
    if not collection("product").find_one({"_id": oid(promotion.product_id)}):
        raise ProductNotFoundError(promotion.product_id)
    # usage state is owned by the system
    promotion = promotion.model_copy(update={"id": None, "active": True, "current_usage": 0})
    promotion_id = create_document("promotion", promotion)
    logger.info("Promotion %s created for product %s", promotion_id, promotion.product_id)
    return {"id": promotion_id}

@app.get("/promotions")
def list_promotions(product_id: Optional[str] = None, active: Optional[bool] = None):
    query = {}
    if product_id is not None:
        query["product_id"] = product_id
    if active is not None:
        query["active"] = active
    return [serialize(p) for p in get_documents("promotion", query, limit=100)]

@app.get("/promotions/{promotion_id}")
def get_promotion(promotion_id: str):
    doc = collection("promotion").find_one({"_id": oid(promotion_id)})
    if not doc:
        raise PromotionNotFoundError(promotion_id)
    promotion = PromotionSchema.from_document(doc)
    return {**promotion.model_dump(), "valid": is_valid(promotion, utc_now())}

@app.put("/promotions/{promotion_id}")
def update_promotion(promotion_id: str, payload: UpdatePromotionRequest):
    promotions = collection("promotion")
    doc = promotions.find_one({"_id": oid(promotion_id)})
    if not doc:
        raise PromotionNotFoundError(promotion_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    if "product_id" in changes and not collection("product").find_one({"_id": oid(changes["product_id"])}):
        raise ProductNotFoundError(changes["product_id"])

    # current_usage is never taken from the client; bounds are rechecked on the merged promotion
    try:
        promotion = PromotionSchema.from_document({**doc, **changes})
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False, include_context=False))

    updates = promotion.model_dump(include=set(changes))
    updates["updated_at"] = utc_now()
    promotions.update_one({"_id": doc["_id"]}, {"$set": updates})
    logger.info("Promotion %s updated: %s", promotion_id, sorted(changes))
    promotion = PromotionSchema.from_document(promotions.find_one({"_id": doc["_id"]}))
    return {**promotion.model_dump(), "valid": is_valid(promotion, utc_now())}


# Orders
@app.post("/orders/preview")
def preview_order(payload: PreviewRequest):
    """Price a cart without consuming any promotion usage."""
    result = price_items(payload.items, payload.tax_price, payload.shipping_price, utc_now())
    return result.model_dump()

@app.post("/orders", status_code=201)
def create_order(payload: CreateOrderRequest):
    result = price_items(payload.items, payload.tax_price, payload.shipping_price, utc_now())
    promotion_ids = result.applied_promotion_ids
    order = OrderSchema(
        user_id=payload.user_id,
        shipping_address_id=payload.shipping_address_id,
        payment_method=payload.payment_method,
        items=payload.items,
        lines=result.lines,
        promotion_ids=promotion_ids,
        items_price=result.items_price,
        tax_price=result.tax_price,
        shipping_price=result.shipping_price,
        total_price=result.total_price,
    )
    order_id = create_document("order", order)

    # one usage per distinct promotion, only once the order is stored
    store = MongoUsageStore(collection("promotion"))
    claimed = []
    try:
        for promotion_id in promotion_ids:
            claimed.append(store.claim(promotion_id))
    except Exception as e:
        logger.warning("Rolling back order %s: %s", order_id, e)
        for promotion in claimed:
            store.release(promotion)
        collection("order").delete_one({"_id": ObjectId(order_id)})
        raise

    logger.info("Order %s created: total=%.2f promotions=%s", order_id, result.total_price, promotion_ids)
    return {"id": order_id, **result.model_dump()}

@app.get("/orders")
def list_orders(user_id: Optional[str] = None, status: Optional[OrderStatus] = None):
    query = {}
    if user_id is not None:
        query["user_id"] = user_id
    if status is not None:
        query["status"] = status.value
    return [serialize(o) for o in get_documents("order", query, limit=100)]

@app.get("/orders/{order_id}")
def get_order(order_id: str):
    doc = collection("order").find_one({"_id": oid(order_id)})
    if not doc:
        raise OrderNotFoundError(order_id)
    return serialize(doc)

@app.patch("/orders/{order_id}")
def update_order(order_id: str, payload: UpdateOrderRequest):
    orders = collection("order")
    doc = orders.find_one({"_id": oid(order_id)})
    if not doc:
        raise OrderNotFoundError(order_id)

    updates = {}
    if payload.tax_price is not None or payload.shipping_price is not None:
        current = PricingResult(
            items_price=doc["items_price"],
            tax_price=doc.get("tax_price", 0.0),
            shipping_price=doc.get("shipping_price", 0.0),
            total_price=doc["total_price"],
            lines=doc.get("lines", []),
        )
        adjusted = with_adjustments(current, payload.tax_price, payload.shipping_price)
        updates.update({
            "tax_price": adjusted.tax_price,
            "shipping_price": adjusted.shipping_price,
            "total_price": adjusted.total_price,
        })
    if payload.status is not None:
        updates["status"] = payload.status.value
        if payload.status == OrderStatus.DELIVERED:
            updates["is_delivered"] = True
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")

    updates["updated_at"] = utc_now()
    orders.update_one({"_id": doc["_id"]}, {"$set": updates})
    return serialize(orders.find_one({"_id": doc["_id"]}))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
