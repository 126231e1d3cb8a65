# Overview: Payment verification routes for hosted checkout, redirect callbacks and polling.

"""
Payment API Routes

Every route here funnels into SettlementCommitter.verify_and_commit, which is
idempotent per transaction reference. The browser report, the gateway
callback and the status poll may all arrive for the same payment; only one
order is ever created.

SECURITY:
- Hosted checkout: HMAC signature over order_id|payment_id
- Redirect callback: X-VERIFY checksum over the base64 body
- Failed checks are logged to security_events with the caller's address
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_buyer
from ..errors import CheckoutError, NotFound, ValidationError
from ..gateways.phonepe import callback_transaction_ref
from ..wiring import components

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _client_context() -> dict:
    return {
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def _own_intent(transaction_ref: str):
    intent = components().intents.get(transaction_ref)
    if intent.buyer_id != g.buyer_id:
        raise NotFound("Payment not found", details={"transaction_ref": transaction_ref})
    return intent


def _settled(order, status: int = 200):
    return jsonify({"order": order.to_dict(), "message": "Payment verified"}), status


@payments_bp.post("/razorpay/verify")
@require_buyer
def verify_razorpay_route():
    """
    Verify a hosted-checkout payment and commit the order.

    Request body:
    {
        "razorpay_order_id": "order_ABC",
        "razorpay_payment_id": "pay_XYZ",
        "razorpay_signature": "hex hmac"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        ref = data.get("razorpay_order_id")
        if not ref:
            raise ValidationError("razorpay_order_id is required")
        _own_intent(ref)
        order = components().settlement.verify_and_commit(ref, data, **_client_context())
        return _settled(order)
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Razorpay verification failed")
        return jsonify({"error": "Payment verification failed"}), 500


@payments_bp.post("/phonepe/callback")
def phonepe_callback_route():
    """
    Server-to-server callback from PhonePe.

    Body: {"response": "<base64 JSON>"}, header X-VERIFY.
    No buyer context: the checksum is the only authentication.
    """
    try:
        data = request.get_json(silent=True) or {}
        encoded = data.get("response")
        ref = callback_transaction_ref(encoded) if encoded else None
        if not ref:
            raise ValidationError("Unreadable callback body")
        payload = {"response": encoded, "x_verify": request.headers.get("X-VERIFY", "")}
        order = components().settlement.verify_and_commit(ref, payload, **_client_context())
        return _settled(order)
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("PhonePe callback handling failed")
        return jsonify({"error": "Callback processing failed"}), 500


@payments_bp.get("/phonepe/status/<transaction_ref>")
@require_buyer
def phonepe_status_route(transaction_ref: str):
    """
    Poll PhonePe for the outcome and commit when captured.

    Returns:
        200: order committed (or already committed)
        202: still processing, poll again
        402: declined
    """
    try:
        _own_intent(transaction_ref)
        order = components().settlement.verify_and_commit(transaction_ref, {}, **_client_context())
        return _settled(order)
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("PhonePe status check failed")
        return jsonify({"error": "Status check failed"}), 500


@payments_bp.post("/<transaction_ref>/fail")
@require_buyer
def mark_failed_route(transaction_ref: str):
    """Report a failed or abandoned checkout. Body: {"reason": "..."}"""
    try:
        _own_intent(transaction_ref)
        data = request.get_json(silent=True) or {}
        intent = components().settlement.mark_failed(transaction_ref, data.get("reason") or "Payment failed")
        return jsonify({"intent": intent.to_dict()}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark payment as failed")
        return jsonify({"error": "Failed to update payment"}), 500


@payments_bp.get("/<transaction_ref>")
@require_buyer
def get_payment_route(transaction_ref: str):
    try:
        intent = _own_intent(transaction_ref)
        order = components().orders.get_by_transaction_ref(transaction_ref)
        return jsonify({
            "intent": intent.to_dict(),
            "order": order.to_dict(include_items=False, include_tracking=False) if order else None,
        }), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
