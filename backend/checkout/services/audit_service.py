# Overview: Security event logging for payment authenticity failures and admin access.

"""
Security Event Logging

WHY: Forged signatures, tampered amounts and bad admin tokens are evidence
of an attack or a misconfigured secret. Each one is written to the
append-only security_events table and logged at WARNING.

Event types:
- SIGNATURE_INVALID
- AMOUNT_TAMPERED
- ADMIN_AUTH_FAILED
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..models import SecurityEvent
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

SIGNATURE_INVALID = "SIGNATURE_INVALID"
AMOUNT_TAMPERED = "AMOUNT_TAMPERED"
ADMIN_AUTH_FAILED = "ADMIN_AUTH_FAILED"


class SecurityAuditLog:
    def __init__(self, session, clock: Callable = utcnow):
        self.session = session
        self.clock = clock

    def log_security_event(
        self,
        event_type: str,
        *,
        success: bool = False,
        gateway: Optional[str] = None,
        reference: Optional[str] = None,
        resource: Optional[str] = None,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SecurityEvent:
        """
        Append one event and commit it on its own.

        Callers must not have pending work in the session; the audit row is
        kept even when the surrounding operation fails.
        """
        event = SecurityEvent(
            event_type=event_type,
            gateway=gateway,
            reference=reference,
            resource=resource,
            success=success,
            reason=reason,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:512] or None,
            occurred_at=self.clock(),
        )
        self.session.add(event)
        self.session.commit()

        logger.warning(
            "Security event %s gateway=%s reference=%s reason=%s",
            event_type, gateway, reference, reason,
        )
        return event

    def recent(self, *, event_type: Optional[str] = None, limit: int = 50) -> list[SecurityEvent]:
        query = self.session.query(SecurityEvent)
        if event_type:
            query = query.filter(SecurityEvent.event_type == event_type.upper())
        return (
            query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc())
            .limit(limit)
            .all()
        )
