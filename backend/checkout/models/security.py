from __future__ import annotations

from ..extensions import db
from checkout.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Failed payment signatures and tampered amounts are evidence of an
    attack or a misconfigured gateway secret. They are kept for review.

    IMMUTABLE: Never update. Only the retention sweep deletes old rows.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_type_occurred", "event_type", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # SIGNATURE_INVALID, AMOUNT_TAMPERED, ADMIN_AUTH_FAILED
    gateway = db.Column(db.String(32), nullable=True)
    reference = db.Column(db.String(128), nullable=True, index=True)
    resource = db.Column(db.String(128), nullable=True)

    success = db.Column(db.Boolean, nullable=False, default=False)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "gateway": self.gateway,
            "reference": self.reference,
            "resource": self.resource,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
