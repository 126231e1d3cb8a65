# Overview: Coupon preview routes (validation for a subtotal, list of usable coupons).

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_buyer
from ..errors import CheckoutError, ValidationError
from ..wiring import components

coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


def _subtotal(raw) -> int:
    try:
        value = int(raw or 0)
    except (TypeError, ValueError):
        raise ValidationError("subtotal_cents must be an integer")
    if value < 0:
        raise ValidationError("subtotal_cents must not be negative")
    return value


@coupons_bp.post("/validate")
@require_buyer
def validate_coupon_route():
    """
    Preview a coupon against a subtotal. Never redeems it.

    Request body: {"code": "SAVE50", "subtotal_cents": 60000}
    """
    try:
        data = request.get_json(silent=True) or {}
        code = data.get("code")
        if not code:
            raise ValidationError("code is required")
        result = components().coupons.validate(code, _subtotal(data.get("subtotal_cents")))
        return jsonify(result), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Coupon validation failed")
        return jsonify({"error": "Coupon validation failed"}), 500


@coupons_bp.get("/available")
@require_buyer
def available_coupons_route():
    """Coupons usable for ?subtotal_cents=."""
    try:
        coupons = components().coupons.available(_subtotal(request.args.get("subtotal_cents")))
        return jsonify({"coupons": coupons, "count": len(coupons)}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
