# Overview: Request decorators for buyer identity and admin access.

import hmac
from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import ValidationError
from .schemas import parse_tier
from .services.audit_service import ADMIN_AUTH_FAILED
from .wiring import components


def require_buyer(f):
    """
    Require an authenticated buyer.

    Authentication itself happens upstream. The auth layer forwards the
    buyer identity and pricing tier as headers:
    - X-Buyer-Id: opaque buyer identifier (required)
    - X-Buyer-Tier: RETAIL (default) or WHOLESALE

    Sets g.buyer_id and g.tender_tier.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        buyer_id = (request.headers.get("X-Buyer-Id") or "").strip()
        if not buyer_id:
            return jsonify({"error": "Authentication required"}), 401

        try:
            tier = parse_tier(request.headers.get("X-Buyer-Tier"))
        except ValidationError as e:
            return jsonify(e.to_dict()), 400

        g.buyer_id = buyer_id
        g.tender_tier = tier
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require the admin bearer token.

    SECURITY: An unset ADMIN_API_TOKEN disables admin endpoints entirely.
    Rejected tokens are written to security_events.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_TOKEN") or ""
        auth_header = request.headers.get("Authorization") or ""

        if not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        if not expected or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            components().audit.log_security_event(
                ADMIN_AUTH_FAILED,
                resource=request.path,
                reason="Invalid admin token",
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
            )
            return jsonify({"error": "Permission denied"}), 403

        g.is_admin = True
        return f(*args, **kwargs)

    return decorated_function
