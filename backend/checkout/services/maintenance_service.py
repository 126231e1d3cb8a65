# Overview: Periodic maintenance: intent expiry, notification retries, audit retention.

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Optional

from ..models import PaymentIntent, SecurityEvent
from ..statuses import IntentStatus
from ..time_utils import utcnow
from .notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)


class MaintenanceService:
    def __init__(self, session, notifications: NotificationDispatcher, *, clock: Callable = utcnow):
        self.session = session
        self.notifications = notifications
        self.clock = clock

    def expire_stale_intents(self, *, older_than_hours: Optional[int] = None) -> int:
        """
        Move PENDING intents past their expiry to EXPIRED.

        Nothing was reserved at initiation, so there is nothing to release.
        VERIFIED intents are left for settlement to finish.
        """
        now = self.clock()
        query = self.session.query(PaymentIntent).filter(PaymentIntent.status == IntentStatus.PENDING.value)
        if older_than_hours is None:
            query = query.filter(PaymentIntent.expires_at < now)
        else:
            query = query.filter(PaymentIntent.created_at < now - timedelta(hours=older_than_hours))

        # Conditional on status so an intent verified meanwhile is not touched
        expired = query.update(
            {
                PaymentIntent.status: IntentStatus.EXPIRED.value,
                PaymentIntent.closed_at: now,
                PaymentIntent.failure_reason: "Payment window expired",
                PaymentIntent.version_id: PaymentIntent.version_id + 1,
            },
            synchronize_session=False,
        )
        self.session.commit()
        if expired:
            logger.info("Expired %d stale payment intents", expired)
        return expired

    def retry_notifications(self, *, limit: int = 100) -> dict:
        return self.notifications.retry_due(limit=limit)

    def cleanup_security_events(self, *, retention_days: int = 90) -> int:
        """Delete security events older than retention_days."""
        cutoff = self.clock() - timedelta(days=retention_days)
        deleted = self.session.query(SecurityEvent).filter(
            SecurityEvent.occurred_at < cutoff
        ).delete()
        self.session.commit()
        return deleted
