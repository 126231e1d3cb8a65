from __future__ import annotations

from ..extensions import db
from checkout.time_utils import to_utc_z


class PaymentIntent(db.Model):
    """
    Bridge between quote-time pricing and settlement.

    Keyed by the gateway transaction reference. Holds the original request
    (lines, coupon code, tender tier) so settlement can recompute, plus the
    quote snapshot that fixed the amount sent to the gateway.

    LIFECYCLE: PENDING -> VERIFIED -> COMMITTED, or PENDING/VERIFIED -> FAILED,
    or PENDING -> EXPIRED (maintenance sweep). Terminal states never change.
    """
    __tablename__ = "payment_intents"
    __table_args__ = (
        db.UniqueConstraint("gateway_transaction_ref", name="uq_payment_intents_ref"),
        db.Index("ix_payment_intents_status_expires", "status", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    gateway = db.Column(db.String(32), nullable=False)
    gateway_transaction_ref = db.Column(db.String(128), nullable=False)
    gateway_payment_id = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    buyer_id = db.Column(db.String(64), nullable=False)
    buyer_info = db.Column(db.JSON, nullable=False)
    request_payload = db.Column(db.JSON, nullable=False)
    quote_snapshot = db.Column(db.JSON, nullable=False)

    failure_reason = db.Column(db.String(255), nullable=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gateway": self.gateway,
            "gateway_transaction_ref": self.gateway_transaction_ref,
            "gateway_payment_id": self.gateway_payment_id,
            "status": self.status,
            "amount_cents": self.amount_cents,
            "buyer_id": self.buyer_id,
            "quote": self.quote_snapshot,
            "failure_reason": self.failure_reason,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "verified_at": to_utc_z(self.verified_at),
            "closed_at": to_utc_z(self.closed_at),
        }
