"""Order total computation.

compute_total never writes anything: promotion usage is consumed separately
once an order is actually placed, so the same call serves cart previews.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from errors import EmptyOrderError, InvalidAdjustmentError, InvalidQuantityError, ProductNotFoundError
from promotions import apply_promotion, is_eligible
from schemas import LineBreakdown, OrderItem, PricingResult, Promotion

logger = logging.getLogger(__name__)

PriceResolver = Callable[[str], Optional[float]]
PromotionResolver = Callable[[str], Optional[Promotion]]


def _check_adjustment(name: str, value: float) -> float:
    if value is None:
        return 0.0
    if value < 0:
        raise InvalidAdjustmentError(name, value)
    return float(value)


def compute_total(
    items: Sequence[OrderItem],
    resolve_price: PriceResolver,
    resolve_promotion: PromotionResolver,
    tax_price: float = 0.0,
    shipping_price: float = 0.0,
    now: Optional[datetime] = None,
) -> PricingResult:
    """Price an order.

    Unit prices come from the item when pinned, otherwise from
    ``resolve_price``. A promotion returned by ``resolve_promotion`` is
    applied to the unit price before multiplying by quantity, and only if it
    is valid at ``now`` and the undiscounted items subtotal meets its
    min_purchase.

    Raises EmptyOrderError, ProductNotFoundError, InvalidQuantityError or
    InvalidAdjustmentError; no partial result is ever returned.
    """
    if not items:
        raise EmptyOrderError()
    now = now or datetime.now(timezone.utc)

    unit_prices: List[float] = []
    for index, item in enumerate(items):
        unit_price = item.price
        if unit_price is None:
            unit_price = resolve_price(item.product_id)
            if unit_price is None:
                raise ProductNotFoundError(item.product_id)
        if item.quantity < 1:
            raise InvalidQuantityError(index, item.quantity)
        unit_prices.append(float(unit_price))

    gross = sum(item.quantity * price for item, price in zip(items, unit_prices))

    lines: List[LineBreakdown] = []
    for item, unit_price in zip(items, unit_prices):
        discounted = unit_price
        promotion_id = None
        promotion = resolve_promotion(item.product_id)
        if promotion is not None and is_eligible(promotion, gross, now):
            discounted = apply_promotion(promotion, unit_price, now)
            promotion_id = promotion.id
        lines.append(LineBreakdown(
            product_id=item.product_id,
            variant_id=item.variant_id,
            quantity=item.quantity,
            unit_price=unit_price,
            discounted_unit_price=discounted,
            discount=round(unit_price - discounted, 2),
            promotion_id=promotion_id,
            subtotal=round(item.quantity * discounted, 2),
        ))

    tax = _check_adjustment("tax_price", tax_price)
    shipping = _check_adjustment("shipping_price", shipping_price)
    items_price = round(sum(line.subtotal for line in lines), 2)
    total = round(items_price + tax + shipping, 2)
    logger.debug("Priced %d line(s): items=%.2f total=%.2f", len(lines), items_price, total)
    return PricingResult(
        items_price=items_price,
        tax_price=tax,
        shipping_price=shipping,
        total_price=total,
        lines=lines,
    )


def with_adjustments(
    result: PricingResult,
    tax_price: Optional[float] = None,
    shipping_price: Optional[float] = None,
) -> PricingResult:
    """Recompute the total for new tax and/or shipping, keeping the priced lines."""
    tax = result.tax_price if tax_price is None else _check_adjustment("tax_price", tax_price)
    shipping = result.shipping_price if shipping_price is None else _check_adjustment("shipping_price", shipping_price)
    return result.model_copy(update={
        "tax_price": tax,
        "shipping_price": shipping,
        "total_price": round(result.items_price + tax + shipping, 2),
    })
