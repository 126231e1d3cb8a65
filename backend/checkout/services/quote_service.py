# Overview: Builds a priced quote for a cart; shared by initiation, preview and settlement.

"""
Order Quote

WHY: The same function prices a cart when the buyer asks for totals, when a
payment is initiated and again when settlement commits. Running identical
code on identical inputs is what keeps the gateway amount and the stored
order consistent.

Building a quote has no side effects.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from ..errors import InsufficientStock, NoItems, ProductNotFound, ProductUnavailable
from ..models import Product, ProductVariant
from ..statuses import ProductStatus, TenderTier
from .coupon_service import CouponEvaluator
from .pricing_service import ZERO, LinePricing, PricingResolver, to_cents


@dataclass(frozen=True)
class QuoteLine:
    product_id: int
    variant_id: Optional[int]
    product_name: str
    pricing: LinePricing

    @property
    def quantity(self) -> int:
        return self.pricing.quantity

    def to_dict(self) -> dict:
        p = self.pricing
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "quantity": p.quantity,
            "base_unit_price_cents": to_cents(p.base_unit_price),
            "unit_price_cents": to_cents(p.unit_effective_price),
            "line_total_cents": to_cents(p.line_total),
            "original_line_total_cents": to_cents(p.original_line_total),
            "savings_cents": to_cents(p.savings),
            "applied_rule": p.applied_rule.to_dict() if p.applied_rule else None,
        }


@dataclass(frozen=True)
class Quote:
    lines: tuple[QuoteLine, ...]
    tender_tier: str
    subtotal: Decimal
    quantity_savings: Decimal
    discount: Decimal
    shipping: Decimal
    coupon_id: Optional[int] = None
    coupon_code: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount + self.shipping

    @property
    def total_cents(self) -> int:
        return to_cents(self.total)

    @property
    def subtotal_cents(self) -> int:
        return to_cents(self.subtotal)

    @property
    def shipping_cents(self) -> int:
        return to_cents(self.shipping)

    @property
    def discount_cents(self) -> int:
        """Whatever rounding leaves between subtotal plus shipping and the total."""
        return self.subtotal_cents + self.shipping_cents - self.total_cents

    def to_dict(self) -> dict:
        return {
            "items": [line.to_dict() for line in self.lines],
            "tender_tier": self.tender_tier,
            "subtotal_cents": self.subtotal_cents,
            "quantity_savings_cents": to_cents(self.quantity_savings),
            "discount_cents": self.discount_cents,
            "shipping_cost_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "coupon_id": self.coupon_id,
            "coupon_code": self.coupon_code,
        }


def base_unit_price(product: Product, tier: TenderTier) -> int:
    if tier == TenderTier.WHOLESALE and product.wholesale_price_cents is not None:
        return product.wholesale_price_cents
    if product.offer_price_cents is not None and product.offer_price_cents > 0:
        return product.offer_price_cents
    return product.normal_price_cents


class OrderQuoteBuilder:
    """
    Prices a cart.

    Collaborators:
        session: SQLAlchemy session for product, variant and coupon reads
        pricing: PricingResolver
        coupons: CouponEvaluator
        shipping_cost_cents: flat shipping charge
    """

    def __init__(
        self,
        session,
        pricing: PricingResolver,
        coupons: CouponEvaluator,
        *,
        shipping_cost_cents: int = 0,
    ):
        self.session = session
        self.pricing = pricing
        self.coupons = coupons
        self.shipping_cost_cents = shipping_cost_cents

    def build(self, lines: Iterable, coupon_code: Optional[str] = None, tender_tier=TenderTier.RETAIL) -> Quote:
        lines = list(lines or [])
        if not lines:
            raise NoItems("No items in order")
        tier = TenderTier(tender_tier)

        # Stock is checked against everything the cart asks of a variant
        requested = defaultdict(int)
        for line in lines:
            if line.variant_id is not None:
                requested[line.variant_id] += line.quantity

        quote_lines = tuple(self._price_line(line, tier, requested) for line in lines)
        subtotal = sum((ql.pricing.line_total for ql in quote_lines), ZERO)
        quantity_savings = sum((ql.pricing.savings for ql in quote_lines), ZERO)

        discount = ZERO
        coupon = None
        if coupon_code:
            coupon, discount = self.coupons.evaluate(coupon_code, subtotal)

        return Quote(
            lines=quote_lines,
            tender_tier=tier.value,
            subtotal=subtotal,
            quantity_savings=quantity_savings,
            discount=discount,
            shipping=Decimal(self.shipping_cost_cents),
            coupon_id=coupon.id if coupon else None,
            coupon_code=coupon.code if coupon else None,
        )

    def _price_line(self, line, tier: TenderTier, requested: Mapping[int, int]) -> QuoteLine:
        product = self.session.get(Product, line.product_id)
        if product is None:
            raise ProductNotFound(
                f"Product {line.product_id} not found",
                details={"product_id": line.product_id},
            )
        if product.status != ProductStatus.ACTIVE.value:
            raise ProductUnavailable(
                f"Product {product.name} is not available",
                details={"product_id": product.id},
            )

        if line.variant_id is not None:
            variant = self.session.get(ProductVariant, line.variant_id)
            if variant is None or variant.product_id != product.id:
                raise ProductNotFound(
                    f"Product variant {line.variant_id} not found",
                    details={"product_id": product.id, "variant_id": line.variant_id},
                )
            if variant.stock < requested[variant.id]:
                raise InsufficientStock(
                    f"Insufficient stock for {product.name}",
                    details={
                        "variant_id": variant.id,
                        "available": variant.stock,
                        "requested": requested[variant.id],
                    },
                )

        pricing = self.pricing.resolve(base_unit_price(product, tier), product.subcategory_id, line.quantity)
        return QuoteLine(
            product_id=product.id,
            variant_id=line.variant_id,
            product_name=product.name,
            pricing=pricing,
        )
