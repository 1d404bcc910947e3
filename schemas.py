"""
Database Schemas for the E-commerce SaaS

Each Pydantic model corresponds to a MongoDB collection.
Collection name is the lowercase of the class name.

- Product -> "product"
- Promotion -> "promotion"
- Order -> "order"

LineBreakdown and PricingResult are not stored on their own; they are the
output of the pricing engine and get embedded into the order document.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values (as read from Mongo) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PromotionType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Product(BaseModel):
    """Products collection schema"""
    title: str = Field(..., description="Product title")
    description: Optional[str] = Field(None, description="Product description")
    price: float = Field(..., ge=0, description="Price in dollars")
    image_url: Optional[str] = Field(None, description="Primary image URL")
    category: Optional[str] = Field(None, description="Product category")
    in_stock: bool = Field(True, description="Whether product is in stock")


class Promotion(BaseModel):
    """Promotions collection schema

    Value bounds depend on the type: a percentage must lie in (0, 100],
    a fixed amount must be strictly positive. Both are checked when the
    model is built, so an out-of-range promotion never reaches pricing.
    """
    model_config = ConfigDict(use_enum_values=True)

    id: Optional[str] = Field(None, description="Document id, set when read back from the database")
    name: str = Field(..., min_length=1, description="Promotion name")
    description: Optional[str] = Field(None, description="Promotion description")
    type: PromotionType = Field(..., description="percentage|fixed")
    value: float = Field(..., description="Percent off, or amount off per unit")
    product_id: str = Field(..., description="ID of the discounted product")
    start_date: datetime = Field(..., description="First instant the promotion applies")
    end_date: datetime = Field(..., description="Last instant the promotion applies")
    active: bool = Field(True, description="Cleared automatically once max_usage is reached")
    min_purchase: float = Field(0, ge=0, description="Minimum order subtotal for eligibility")
    max_usage: Optional[int] = Field(None, ge=1, description="Usage cap, unlimited when unset")
    current_usage: int = Field(0, ge=0, description="Number of confirmed applications")
    conditions: Optional[Dict[str, Any]] = Field(None, description="Free-form extra conditions")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def check_bounds(self) -> "Promotion":
        if self.type == PromotionType.PERCENTAGE:
            if not 0 < self.value <= 100:
                raise ValueError("percentage value must be between 0 (exclusive) and 100")
        elif self.value <= 0:
            raise ValueError("fixed value must be greater than 0")
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    @classmethod
    def from_document(cls, doc: dict) -> "Promotion":
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls(**data)


class OrderItem(BaseModel):
    """A line item as submitted by the client.

    quantity is deliberately unbounded here: the pricing engine rejects
    quantities below 1 with InvalidQuantityError instead of a schema error.
    """
    product_id: str = Field(..., description="ID of the product")
    variant_id: Optional[str] = Field(None, description="ID of the product variant")
    quantity: int = Field(..., description="Number of units")
    price: Optional[float] = Field(None, ge=0, description="Unit price pinned at order time")


class LineBreakdown(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int
    unit_price: float
    discounted_unit_price: float
    discount: float = 0.0
    promotion_id: Optional[str] = None
    subtotal: float


class PricingResult(BaseModel):
    items_price: float
    tax_price: float = 0.0
    shipping_price: float = 0.0
    total_price: float
    lines: List[LineBreakdown]

    @property
    def applied_promotion_ids(self) -> List[str]:
        seen: List[str] = []
        for line in self.lines:
            if line.promotion_id is not None and line.promotion_id not in seen:
                seen.append(line.promotion_id)
        return seen


class Order(BaseModel):
    """Orders collection schema

    total_price is derived by the pricing engine and never taken from input.
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    user_id: str
    shipping_address_id: str
    payment_method: str = Field(..., pattern="^(card|paypal|bank_transfer)$")
    items: List[OrderItem]
    lines: List[LineBreakdown] = Field(default_factory=list)
    promotion_ids: List[str] = Field(default_factory=list)
    items_price: float = 0.0
    tax_price: float = Field(0.0, ge=0)
    shipping_price: float = Field(0.0, ge=0)
    total_price: float = 0.0
    status: OrderStatus = Field(OrderStatus.PENDING, description="pending|processing|shipped|delivered|cancelled")
    is_paid: bool = False
    is_delivered: bool = False
