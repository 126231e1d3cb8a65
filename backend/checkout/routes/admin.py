# Overview: Admin routes for order operations, refunds, and quantity price rules.

"""
Admin API Routes

SECURITY: Every route requires the admin bearer token (require_admin).

- Orders: list/filter, status transitions, shipment tracking, refund
- Quantity price rules: list/add/update/toggle/delete per subcategory
- Security events: recent audit entries
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin
from ..errors import CheckoutError, ValidationError
from ..schemas import QuantityRuleInput, RefundRequest, StatusUpdate, TrackingUpdate
from ..wiring import components

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _int_arg(name: str, default=None):
    value = request.args.get(name)
    return int(value) if value and value.isdigit() else default


# =============================================================================
# ORDERS
# =============================================================================

@admin_bp.get("/orders")
@require_admin
def list_orders_route():
    """Query: status, payment_status, search, page, per_page."""
    result = components().orders.list_all(
        status=request.args.get("status"),
        payment_status=request.args.get("payment_status"),
        search=request.args.get("search"),
        page=_int_arg("page"),
        per_page=_int_arg("per_page"),
    )
    return jsonify(result), 200


@admin_bp.get("/orders/<int:order_id>")
@require_admin
def get_order_route(order_id: int):
    try:
        return jsonify({"order": components().orders.get(order_id).to_dict()}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status


@admin_bp.patch("/orders/<int:order_id>/status")
@require_admin
def update_status_route(order_id: int):
    """
    Move an order along its lifecycle.

    Request body: {"status": "PROCESSING", "admin_notes": "..."}

    Returns:
        200: updated order
        409: transition not allowed from the current status
    """
    try:
        update = StatusUpdate.from_payload(request.get_json(silent=True))
        order = components().orders.update_status(order_id, update.status, update.admin_notes)
        return jsonify({"order": order.to_dict()}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Failed to update order status"}), 500


@admin_bp.patch("/orders/<int:order_id>/tracking")
@require_admin
def update_tracking_route(order_id: int):
    """
    Record shipment details. Moves the order to SHIPPED.

    Request body:
    {"tracking_number": "...", "carrier": "...", "tracking_url": "...",
     "estimated_delivery": "2025-01-31T00:00:00Z"}
    """
    try:
        update = TrackingUpdate.from_payload(request.get_json(silent=True))
        order = components().orders.update_tracking(
            order_id,
            tracking_number=update.tracking_number,
            carrier=update.carrier,
            tracking_url=update.tracking_url,
            estimated_delivery=update.estimated_delivery,
        )
        return jsonify({"order": order.to_dict()}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update tracking")
        return jsonify({"error": "Failed to update tracking"}), 500


@admin_bp.post("/orders/<int:order_id>/refund")
@require_admin
def refund_order_route(order_id: int):
    """
    Refund a paid order in full (or up to amount_cents).

    Request body: {"reason": "...", "amount_cents": 1000 (optional), "admin_notes": "..."}

    Returns:
        200: refunded order with refund id
        409: already refunded
        502: gateway refused the refund (order unchanged)
    """
    try:
        req = RefundRequest.from_payload(request.get_json(silent=True))
        result = components().refunds.refund(
            order_id,
            reason=req.reason,
            amount_cents=req.amount_cents,
            admin_notes=req.admin_notes,
        )
        return jsonify(result), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Refund failed")
        return jsonify({"error": "Refund failed"}), 500


# =============================================================================
# QUANTITY PRICE RULES
# =============================================================================

@admin_bp.get("/subcategories/<int:subcategory_id>/quantity-rules")
@require_admin
def list_rules_route(subcategory_id: int):
    try:
        active_only = request.args.get("active_only", "false").lower() == "true"
        rules = components().rules.list_for_subcategory(subcategory_id, active_only=active_only)
        return jsonify({"rules": rules, "count": len(rules)}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status


@admin_bp.post("/subcategories/<int:subcategory_id>/quantity-rules")
@require_admin
def add_rule_route(subcategory_id: int):
    """Request body: {"threshold_quantity": 10, "kind": "PERCENTAGE", "value": 1500}"""
    try:
        data = QuantityRuleInput.from_payload(request.get_json(silent=True), subcategory_id=subcategory_id)
        rule = components().rules.add_rule(
            subcategory_id,
            threshold_quantity=data.threshold_quantity,
            kind=data.kind,
            value=data.value,
            is_active=data.is_active,
        )
        return jsonify({"rule": rule.to_dict()}), 201
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status


@admin_bp.patch("/quantity-rules/<int:rule_id>")
@require_admin
def update_rule_route(rule_id: int):
    try:
        data = request.get_json(silent=True) or {}
        allowed = {k: data[k] for k in ("threshold_quantity", "kind", "value", "is_active") if k in data}
        rule = components().rules.update_rule(rule_id, allowed)
        return jsonify({"rule": rule.to_dict()}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status


@admin_bp.patch("/quantity-rules/<int:rule_id>/toggle")
@require_admin
def toggle_rule_route(rule_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if "is_active" not in data:
            raise ValidationError("is_active is required")
        rule = components().rules.set_active(rule_id, bool(data["is_active"]))
        return jsonify({"rule": rule.to_dict()}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status


@admin_bp.delete("/quantity-rules/<int:rule_id>")
@require_admin
def delete_rule_route(rule_id: int):
    try:
        components().rules.delete_rule(rule_id)
        return jsonify({"message": "Quantity price rule deleted"}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status


# =============================================================================
# SECURITY EVENTS
# =============================================================================

@admin_bp.get("/security-events")
@require_admin
def list_security_events_route():
    """Most recent first. Query: event_type, limit (default 50, max 500)."""
    limit = min(_int_arg("limit", 50), 500)
    events = components().audit.recent(event_type=request.args.get("event_type"), limit=limit)
    return jsonify({"events": [e.to_dict() for e in events], "count": len(events)}), 200
