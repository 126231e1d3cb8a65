from __future__ import annotations

from ..extensions import db
from checkout.time_utils import to_utc_z


class NotificationJob(db.Model):
    """
    Outbox row for a post-commit notification.

    Written after the order transaction commits. Delivery is attempted right
    away and retried by the maintenance worker until it succeeds or runs out
    of attempts. A failed job never affects the order it describes.
    """
    __tablename__ = "notification_jobs"
    __table_args__ = (
        db.Index("ix_notification_jobs_status_next", "status", "next_attempt_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(32), nullable=False)  # ORDER_CREATED, STATUS_CHANGED, REFUNDED
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING, SENT, FAILED
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    next_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "order_id": self.order_id,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "next_attempt_at": to_utc_z(self.next_attempt_at),
            "sent_at": to_utc_z(self.sent_at),
        }
