# Overview: Coupon lookup, eligibility checks, and discount computation.

from __future__ import annotations

from decimal import Decimal
from typing import Callable, Optional

from ..errors import CouponExhausted, CouponInvalid
from ..models import Coupon
from ..statuses import CouponKind
from ..time_utils import utcnow
from .pricing_service import BPS_DENOMINATOR, ZERO, to_cents


def normalize_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    code = code.strip().upper()
    return code or None


class CouponEvaluator:
    """
    Read-only coupon checks.

    Never mutates used_count. Redemption is a guarded UPDATE owned by the
    settlement transaction.
    """

    def __init__(self, session, clock: Callable = utcnow):
        self.session = session
        self.clock = clock

    def lookup(self, code: str) -> Coupon:
        normalized = normalize_code(code)
        coupon = None
        if normalized:
            coupon = self.session.query(Coupon).filter_by(code=normalized).first()
        now = self.clock()
        if (
            coupon is None
            or not coupon.is_active
            or coupon.valid_from > now
            or coupon.valid_until < now
        ):
            raise CouponInvalid("Invalid or expired coupon", details={"code": normalized})
        if not coupon.has_usage_left():
            raise CouponExhausted(
                "Coupon usage limit reached",
                details={"code": coupon.code, "usage_limit": coupon.usage_limit},
            )
        return coupon

    def discount_for(self, coupon: Coupon, subtotal: Decimal) -> Decimal:
        """Discount in Decimal cents, clamped to [0, subtotal]."""
        if subtotal < Decimal(coupon.min_order_cents or 0):
            raise CouponInvalid(
                f"Minimum order amount should be {coupon.min_order_cents / 100:.2f}",
                details={"code": coupon.code, "min_order_cents": coupon.min_order_cents},
            )

        if coupon.discount_type == CouponKind.PERCENTAGE.value:
            discount = subtotal * Decimal(coupon.discount_value) / BPS_DENOMINATOR
            if coupon.max_discount_cents is not None:
                discount = min(discount, Decimal(coupon.max_discount_cents))
        else:
            discount = Decimal(coupon.discount_value)

        return max(ZERO, min(discount, subtotal))

    def evaluate(self, code: str, subtotal: Decimal) -> tuple[Coupon, Decimal]:
        coupon = self.lookup(code)
        return coupon, self.discount_for(coupon, subtotal)

    def validate(self, code: str, subtotal_cents: int) -> dict:
        coupon, discount = self.evaluate(code, Decimal(subtotal_cents))
        final_amount_cents = to_cents(Decimal(subtotal_cents) - discount)
        return {
            "coupon": coupon.to_dict(),
            "discount_cents": subtotal_cents - final_amount_cents,
            "final_amount_cents": final_amount_cents,
        }

    def available(self, subtotal_cents: int = 0) -> list[dict]:
        now = self.clock()
        coupons = (
            self.session.query(Coupon)
            .filter(
                Coupon.is_active.is_(True),
                Coupon.valid_from <= now,
                Coupon.valid_until >= now,
            )
            .order_by(Coupon.code.asc())
            .all()
        )
        return [
            c.to_dict()
            for c in coupons
            if c.has_usage_left() and subtotal_cents >= (c.min_order_cents or 0)
        ]
