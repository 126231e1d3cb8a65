# backend/checkout/routes/system.py
"""
System health endpoint.

Checks the database and reports the outbox and intent backlog so stuck
settlement or notification work is visible to monitoring.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import NotificationJob, PaymentIntent
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        pending_intents = db.session.query(PaymentIntent).filter(
            PaymentIntent.status.in_(["PENDING", "VERIFIED"])
        ).count()
        verified_unsettled = db.session.query(PaymentIntent).filter_by(status="VERIFIED").count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "open_intents": pending_intents,
                "verified_unsettled": verified_unsettled,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_notification_health() -> dict:
    """Degraded when notifications have permanently failed."""
    start_time = time.time()
    try:
        pending = db.session.query(NotificationJob).filter_by(status="PENDING").count()
        failed = db.session.query(NotificationJob).filter_by(status="FAILED").count()
        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "degraded" if failed else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"pending": pending, "failed": failed},
        }
        if failed:
            result["warning"] = f"{failed} notifications failed permanently"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Notification health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Notification outbox error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    notification_health = check_notification_health()

    all_checks = [database_health, notification_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "notifications": notification_health,
        }
    }
    return response, http_status
