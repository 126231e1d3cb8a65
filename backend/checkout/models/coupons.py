from __future__ import annotations

from ..extensions import db
from checkout.time_utils import to_utc_z


class Coupon(db.Model):
    """
    Order-level coupon.

    discount_value is basis points for PERCENTAGE and cents for FIXED.
    used_count only moves forward and only through a guarded UPDATE at
    settlement, so it can never pass usage_limit (NULL = unlimited).
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.CheckConstraint(
            "usage_limit IS NULL OR used_count <= usage_limit",
            name="ck_coupons_usage_within_limit",
        ),
        db.CheckConstraint("used_count >= 0", name="ck_coupons_used_count_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)  # PERCENTAGE, FIXED
    discount_value = db.Column(db.Integer, nullable=False)
    max_discount_cents = db.Column(db.Integer, nullable=True)
    min_order_cents = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)

    usage_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    total_discount_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def has_usage_left(self) -> bool:
        return self.usage_limit is None or self.used_count < self.usage_limit

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "max_discount_cents": self.max_discount_cents,
            "min_order_cents": self.min_order_cents,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "is_active": self.is_active,
        }
