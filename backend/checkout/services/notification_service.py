# Overview: Post-commit notification outbox with retry and exponential backoff.

"""
Notifications

WHY: Buyers hear about new orders, status changes and refunds. Delivery is
owned by an external notifier; this module only guarantees that every
committed event is recorded and retried until it goes out or runs out of
attempts.

Nothing here may fail the business operation that triggered it. Errors are
logged and left for the maintenance worker.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Optional, Protocol

from ..models import NotificationJob, Order
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

ORDER_CREATED = "ORDER_CREATED"
STATUS_CHANGED = "STATUS_CHANGED"
REFUNDED = "REFUNDED"

JOB_PENDING = "PENDING"
JOB_SENT = "SENT"
JOB_FAILED = "FAILED"


class Notifier(Protocol):
    def notify_order_created(self, order: Order) -> None: ...

    def notify_status_changed(self, order: Order, from_status: str, to_status: str) -> None: ...

    def notify_refunded(self, order: Order, refund_info: dict) -> None: ...


class LoggingNotifier:
    """Default notifier: records the event in the application log."""

    def notify_order_created(self, order: Order) -> None:
        logger.info("Order %s created for %s (total=%s)", order.order_number, order.email, order.total_cents)

    def notify_status_changed(self, order: Order, from_status: str, to_status: str) -> None:
        logger.info("Order %s moved %s -> %s", order.order_number, from_status, to_status)

    def notify_refunded(self, order: Order, refund_info: dict) -> None:
        logger.info("Order %s refunded: %s", order.order_number, refund_info)


class NotificationDispatcher:
    """
    Collaborators:
        session: SQLAlchemy session for the outbox table
        notifier: Notifier implementation
        clock: callable returning naive UTC now
    """

    def __init__(
        self,
        session,
        notifier: Notifier,
        *,
        clock: Callable = utcnow,
        max_attempts: int = 5,
        backoff_base_seconds: int = 60,
    ):
        self.session = session
        self.notifier = notifier
        self.clock = clock
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds

    # Typed entry points used by the services

    def order_created(self, order: Order) -> Optional[NotificationJob]:
        return self.dispatch(ORDER_CREATED, order, {})

    def status_changed(self, order: Order, from_status: str, to_status: str) -> Optional[NotificationJob]:
        return self.dispatch(STATUS_CHANGED, order, {"from": from_status, "to": to_status})

    def refunded(self, order: Order, refund_info: dict) -> Optional[NotificationJob]:
        return self.dispatch(REFUNDED, order, refund_info)

    def dispatch(self, event_type: str, order: Order, payload: dict) -> Optional[NotificationJob]:
        """Record the job, then try to deliver it right away."""
        order_id = order.id
        try:
            job = NotificationJob(
                event_type=event_type,
                order_id=order_id,
                payload=payload,
                status=JOB_PENDING,
                attempts=0,
                created_at=self.clock(),
                next_attempt_at=self.clock(),
            )
            self.session.add(job)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception("Failed to enqueue %s notification for order %s", event_type, order_id)
            return None

        # The order is already committed; a delivery error leaves the job for retry_due
        try:
            self.deliver(job)
        except Exception:
            self.session.rollback()
            logger.exception("Failed to deliver %s notification for order %s", event_type, order_id)
        return job

    def deliver(self, job: NotificationJob) -> bool:
        order = self.session.get(Order, job.order_id)
        try:
            if job.event_type == ORDER_CREATED:
                self.notifier.notify_order_created(order)
            elif job.event_type == STATUS_CHANGED:
                self.notifier.notify_status_changed(order, job.payload.get("from"), job.payload.get("to"))
            elif job.event_type == REFUNDED:
                self.notifier.notify_refunded(order, dict(job.payload))
            else:
                raise ValueError(f"Unknown notification type {job.event_type}")
        except Exception as exc:
            self._record_failure(job, exc)
            return False

        job.status = JOB_SENT
        job.attempts += 1
        job.sent_at = self.clock()
        job.last_error = None
        job.next_attempt_at = None
        self.session.commit()
        return True

    def _record_failure(self, job: NotificationJob, exc: Exception) -> None:
        job.attempts += 1
        job.last_error = f"{type(exc).__name__}: {exc}"[:2000]
        if job.attempts >= self.max_attempts:
            job.status = JOB_FAILED
            job.next_attempt_at = None
            logger.error("Notification %s for order %s gave up after %d attempts", job.id, job.order_id, job.attempts)
        else:
            delay = self.backoff_base_seconds * (2 ** (job.attempts - 1))
            job.next_attempt_at = self.clock() + timedelta(seconds=delay)
            logger.warning(
                "Notification %s for order %s failed (attempt %d), retrying in %ss: %s",
                job.id, job.order_id, job.attempts, delay, exc,
            )
        self.session.commit()

    def retry_due(self, limit: int = 100) -> dict:
        """Deliver pending jobs whose backoff has elapsed."""
        now = self.clock()
        jobs = (
            self.session.query(NotificationJob)
            .filter(
                NotificationJob.status == JOB_PENDING,
                NotificationJob.next_attempt_at <= now,
            )
            .order_by(NotificationJob.id.asc())
            .limit(limit)
            .all()
        )
        sent = sum(1 for job in jobs if self.deliver(job))
        return {"attempted": len(jobs), "sent": sent, "failed": len(jobs) - sent}
