# Overview: Buyer-facing order routes: totals preview, checkout, cash on delivery, order history.

"""
Order API Routes

DESIGN:
- Totals preview prices a cart with no side effects
- Online checkout creates a payment intent; the order appears only after
  the payment is verified (see payments routes)
- Cash on delivery commits the order immediately with payment PENDING
- Buyers only ever see their own orders
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_buyer
from ..errors import CheckoutError
from ..schemas import CheckoutRequest, TotalsRequest
from ..wiring import components

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _int_arg(name: str):
    value = request.args.get(name)
    return int(value) if value and value.isdigit() else None


@orders_bp.post("/calculate-totals")
@require_buyer
def calculate_totals_route():
    """
    Price a cart.

    Request body:
    {
        "items": [{"product_id": 1, "variant_id": 3, "quantity": 12}],
        "coupon_code": "SAVE50"  (optional)
    }
    """
    try:
        req = TotalsRequest.from_payload(request.get_json(silent=True))
        quote = components().quotes.build(req.lines, req.coupon_code, g.tender_tier)
        return jsonify(quote.to_dict()), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to calculate totals")
        return jsonify({"error": "Failed to calculate totals"}), 500


@orders_bp.post("/checkout")
@require_buyer
def checkout_route():
    """
    Start an online payment.

    Request body:
    {
        "items": [...],
        "coupon_code": "SAVE50",  (optional)
        "gateway": "razorpay" | "phonepe",
        "shipping": {"name", "email", "phone", "address", "city", "state", "pincode",
                     "preferred_courier", "courier_instructions"}
    }

    Returns:
        201: payment handle (Razorpay order id + key id, or PhonePe redirect URL) and quote
        400/404/409: pricing or validation failure
        503: gateway unavailable (retryable)
    """
    try:
        req = CheckoutRequest.from_payload(request.get_json(silent=True))
        initiated = components().intents.initiate(
            buyer_id=g.buyer_id,
            buyer_info=req.buyer.to_dict(),
            lines=req.lines,
            coupon_code=req.coupon_code,
            tender_tier=g.tender_tier,
            gateway=req.gateway,
        )
        return jsonify(initiated.to_dict()), 201
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to start checkout")
        return jsonify({"error": "Failed to start checkout"}), 500


@orders_bp.post("/cod")
@require_buyer
def cod_order_route():
    """Place a cash-on-delivery order. Same body as /checkout without gateway."""
    try:
        req = CheckoutRequest.from_payload(request.get_json(silent=True), require_gateway=False)
        order = components().settlement.place_cod_order(
            buyer_id=g.buyer_id,
            buyer_info=req.buyer.to_dict(),
            lines=req.lines,
            coupon_code=req.coupon_code,
            tender_tier=g.tender_tier,
        )
        return jsonify({"order": order.to_dict()}), 201
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to place COD order")
        return jsonify({"error": "Failed to place order"}), 500


@orders_bp.get("")
@require_buyer
def list_my_orders_route():
    """List the buyer's orders. Query: status, page, per_page."""
    result = components().orders.list_for_buyer(
        g.buyer_id,
        status=request.args.get("status"),
        page=_int_arg("page"),
        per_page=_int_arg("per_page"),
    )
    return jsonify(result), 200


@orders_bp.get("/<int:order_id>")
@require_buyer
def get_order_route(order_id: int):
    try:
        order = components().orders.get(order_id, buyer_id=g.buyer_id)
        return jsonify({"order": order.to_dict()}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.get("/number/<order_number>")
@require_buyer
def get_order_by_number_route(order_number: str):
    try:
        order = components().orders.get_by_number(order_number, buyer_id=g.buyer_id)
        return jsonify({"order": order.to_dict()}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.http_status
