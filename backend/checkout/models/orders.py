from __future__ import annotations

from ..extensions import db
from checkout.time_utils import to_utc_z


class Order(db.Model):
    """
    Durable order, written exactly once by settlement.

    WHY gateway_transaction_ref is unique: it is the at-most-once guard.
    Two workers racing to settle the same payment cannot both insert.

    After creation an order changes only through status transitions,
    shipment tracking and the single refund. Orders are never deleted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("gateway_transaction_ref", name="uq_orders_gateway_transaction_ref"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_buyer_created", "buyer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False, unique=True)

    buyer_id = db.Column(db.String(64), nullable=False)
    tender_tier = db.Column(db.String(16), nullable=False, default="RETAIL")

    # Shipping contact
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    address = db.Column(db.Text, nullable=False)
    city = db.Column(db.String(128), nullable=False)
    state = db.Column(db.String(128), nullable=False)
    pincode = db.Column(db.String(16), nullable=False)
    preferred_courier = db.Column(db.String(128), nullable=True)
    courier_instructions = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    payment_method = db.Column(db.String(16), nullable=False)  # ONLINE, COD

    # Gateway linkage (NULL for COD)
    gateway = db.Column(db.String(32), nullable=True)
    gateway_transaction_ref = db.Column(db.String(128), nullable=True)
    gateway_payment_id = db.Column(db.String(128), nullable=True)

    # Totals in cents, copied from the quote recomputed at commit
    subtotal_cents = db.Column(db.Integer, nullable=False)
    quantity_savings_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True, index=True)

    # Shipment tracking
    tracking_number = db.Column(db.String(128), nullable=True)
    carrier = db.Column(db.String(128), nullable=True)
    tracking_url = db.Column(db.String(512), nullable=True)
    estimated_delivery = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Refund (single, all-or-nothing)
    refund_id = db.Column(db.String(128), nullable=True)
    refunded_cents = db.Column(db.Integer, nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    admin_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    coupon = db.relationship("Coupon")
    __mapper_args__ = {"version_id_col": version_id}

    def location(self) -> str:
        return f"{self.city}, {self.state}"

    def to_dict(self, include_items: bool = True, include_tracking: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "buyer_id": self.buyer_id,
            "tender_tier": self.tender_tier,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
            "preferred_courier": self.preferred_courier,
            "courier_instructions": self.courier_instructions,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "gateway": self.gateway,
            "gateway_transaction_ref": self.gateway_transaction_ref,
            "gateway_payment_id": self.gateway_payment_id,
            "subtotal_cents": self.subtotal_cents,
            "quantity_savings_cents": self.quantity_savings_cents,
            "discount_cents": self.discount_cents,
            "shipping_cost_cents": self.shipping_cost_cents,
            "total_cents": self.total_cents,
            "coupon_id": self.coupon_id,
            "coupon_code": self.coupon.code if self.coupon else None,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "tracking_url": self.tracking_url,
            "estimated_delivery": to_utc_z(self.estimated_delivery),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "refund_id": self.refund_id,
            "refunded_cents": self.refunded_cents,
            "refund_reason": self.refund_reason,
            "refunded_at": to_utc_z(self.refunded_at),
            "admin_notes": self.admin_notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_tracking:
            data["tracking"] = [event.to_dict() for event in self.tracking_events]
        return data


class OrderItem(db.Model):
    """Line on an order, carrying the price actually charged."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    base_unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    original_line_total_cents = db.Column(db.Integer, nullable=False)
    savings_cents = db.Column(db.Integer, nullable=False, default=0)
    applied_rule_id = db.Column(db.Integer, db.ForeignKey("quantity_price_rules.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("items", lazy=True, order_by="OrderItem.id"),
    )
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_variant_id": self.product_variant_id,
            "quantity": self.quantity,
            "base_unit_price_cents": self.base_unit_price_cents,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "original_line_total_cents": self.original_line_total_cents,
            "savings_cents": self.savings_cents,
            "applied_rule_id": self.applied_rule_id,
        }


class TrackingEvent(db.Model):
    """
    Append-only order timeline.

    IMMUTABLE: rows are never updated or deleted.
    """
    __tablename__ = "tracking_events"
    __table_args__ = (
        db.Index("ix_tracking_events_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False)
    description = db.Column(db.Text, nullable=False)
    location = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("tracking_events", lazy=True, order_by="TrackingEvent.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "description": self.description,
            "location": self.location,
            "occurred_at": to_utc_z(self.occurred_at),
        }
