"""
HTTP surface: authentication headers, status codes and JSON shapes.
"""

import base64
import json

from checkout.gateways.base import VerificationOutcome
from checkout.models import SecurityEvent
from conftest import SHIPPING, admin_headers, buyer_headers


def _checkout_body(catalog, quantity=12, **extra):
    body = {
        "items": [{"product_id": catalog["product"].id, "variant_id": catalog["variant"].id, "quantity": quantity}],
        "shipping": dict(SHIPPING),
        "gateway": "fakepay",
    }
    body.update(extra)
    return body


def _start_checkout(client, catalog, **kwargs):
    response = client.post("/api/orders/checkout", json=_checkout_body(catalog, **kwargs), headers=buyer_headers())
    assert response.status_code == 201, response.get_json()
    return response.get_json()["payment"]["transaction_ref"]


class TestBuyerAuth:
    def test_missing_buyer_header(self, client, catalog):
        response = client.post("/api/orders/calculate-totals", json={"items": []})
        assert response.status_code == 401

    def test_unknown_tier(self, client, catalog):
        response = client.post(
            "/api/orders/calculate-totals",
            json={"items": [{"product_id": catalog["product"].id, "quantity": 1}]},
            headers=buyer_headers(tier="VIP"),
        )
        assert response.status_code == 400


class TestOrderRoutes:
    def test_calculate_totals(self, client, catalog):
        response = client.post(
            "/api/orders/calculate-totals",
            json={"items": [{"product_id": catalog["product"].id, "quantity": 12}]},
            headers=buyer_headers(),
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["total_cents"] == 102000
        assert data["items"][0]["applied_rule"]["message"] == "15% off for 10+ items"

    def test_wholesale_header_changes_price_list(self, client, catalog):
        response = client.post(
            "/api/orders/calculate-totals",
            json={"items": [{"product_id": catalog["product"].id, "quantity": 1}]},
            headers=buyer_headers(tier="wholesale"),
        )
        assert response.get_json()["total_cents"] == 8000

    def test_empty_cart(self, client, catalog):
        response = client.post("/api/orders/calculate-totals", json={"items": []}, headers=buyer_headers())
        assert response.status_code == 400
        assert response.get_json()["code"] == "NO_ITEMS"

    def test_insufficient_stock_is_conflict(self, client, catalog):
        body = {"items": [{"product_id": catalog["product"].id, "variant_id": catalog["scarce"].id, "quantity": 9}]}
        response = client.post("/api/orders/calculate-totals", json=body, headers=buyer_headers())

        assert response.status_code == 409
        assert response.get_json()["details"]["available"] == 5

    def test_checkout_requires_shipping(self, client, catalog):
        body = _checkout_body(catalog)
        del body["shipping"]
        response = client.post("/api/orders/checkout", json=body, headers=buyer_headers())

        assert response.status_code == 400
        assert "name" in response.get_json()["details"]["missing"]

    def test_cod_order_and_history(self, client, catalog):
        body = _checkout_body(catalog, quantity=2)
        del body["gateway"]
        created = client.post("/api/orders/cod", json=body, headers=buyer_headers())

        assert created.status_code == 201
        order = created.get_json()["order"]
        assert order["payment_method"] == "COD"
        assert order["tracking"][0]["status"] == "CONFIRMED"

        listing = client.get("/api/orders", headers=buyer_headers()).get_json()
        assert listing["pagination"]["total"] == 1

        by_number = client.get(f"/api/orders/number/{order['order_number']}", headers=buyer_headers())
        assert by_number.status_code == 200

        other = client.get(f"/api/orders/{order['id']}", headers=buyer_headers("buyer-2"))
        assert other.status_code == 404


class TestPaymentRoutes:
    def test_checkout_then_verify(self, client, catalog):
        ref = _start_checkout(client, catalog)

        status = client.get(f"/api/payments/{ref}", headers=buyer_headers()).get_json()
        assert status["intent"]["status"] == "PENDING"
        assert status["order"] is None

        # The fake gateway reads the signature from the same payload shape
        response = client.post(
            "/api/payments/razorpay/verify",
            json={"razorpay_order_id": ref, "signature": "valid"},
            headers=buyer_headers(),
        )

        assert response.status_code == 200
        order = response.get_json()["order"]
        assert order["payment_status"] == "PAID"
        assert order["total_cents"] == 102000

        again = client.post(
            "/api/payments/razorpay/verify",
            json={"razorpay_order_id": ref, "signature": "valid"},
            headers=buyer_headers(),
        )
        assert again.get_json()["order"]["id"] == order["id"]

    def test_forged_signature_is_rejected_and_logged(self, client, catalog, db_session):
        ref = _start_checkout(client, catalog)

        response = client.post(
            "/api/payments/razorpay/verify",
            json={"razorpay_order_id": ref, "signature": "forged"},
            headers={**buyer_headers(), "User-Agent": "pytest"},
        )

        assert response.status_code == 400
        assert response.get_json()["code"] == "SIGNATURE_INVALID"
        event = db_session.query(SecurityEvent).one()
        assert event.user_agent == "pytest"

    def test_other_buyer_cannot_touch_payment(self, client, catalog):
        ref = _start_checkout(client, catalog)

        response = client.post(
            "/api/payments/razorpay/verify",
            json={"razorpay_order_id": ref, "signature": "valid"},
            headers=buyer_headers("buyer-2"),
        )
        assert response.status_code == 404

    def test_status_poll_pending_is_accepted(self, client, catalog, gateway):
        ref = _start_checkout(client, catalog)
        gateway.outcome = VerificationOutcome.PROCESSING

        response = client.get(f"/api/payments/phonepe/status/{ref}", headers=buyer_headers())

        assert response.status_code == 202
        assert response.get_json()["retryable"] is True

    def test_declined_payment(self, client, catalog, gateway):
        ref = _start_checkout(client, catalog)
        gateway.outcome = VerificationOutcome.DECLINED

        response = client.post(
            "/api/payments/razorpay/verify",
            json={"razorpay_order_id": ref, "signature": "valid"},
            headers=buyer_headers(),
        )
        assert response.status_code == 402

    def test_mark_failed(self, client, catalog):
        ref = _start_checkout(client, catalog)

        response = client.post(f"/api/payments/{ref}/fail", json={"reason": "closed"}, headers=buyer_headers())

        assert response.status_code == 200
        assert response.get_json()["intent"]["status"] == "FAILED"

    def test_phonepe_callback_with_unreadable_body(self, client):
        response = client.post("/api/payments/phonepe/callback", json={"response": "@@@"})
        assert response.status_code == 400

    def test_phonepe_callback_for_unknown_transaction(self, client):
        encoded = base64.b64encode(json.dumps({"data": {"merchantTransactionId": "MT404"}}).encode()).decode()
        response = client.post("/api/payments/phonepe/callback", json={"response": encoded})
        assert response.status_code == 404


class TestCouponRoutes:
    def test_validate_coupon(self, client, make_coupon):
        make_coupon()

        response = client.post(
            "/api/coupons/validate", json={"code": "save50", "subtotal_cents": 60000}, headers=buyer_headers(),
        )

        assert response.status_code == 200
        assert response.get_json()["discount_cents"] == 5000
        assert response.get_json()["final_amount_cents"] == 55000

    def test_available_coupons_respect_minimum(self, client, make_coupon):
        make_coupon()
        make_coupon("SMALL", min_order_cents=0, discount_value=500)

        response = client.get("/api/coupons/available?subtotal_cents=10000", headers=buyer_headers())

        assert [c["code"] for c in response.get_json()["coupons"]] == ["SMALL"]


class TestAdminRoutes:
    def test_requires_bearer_token(self, client):
        assert client.get("/api/admin/orders").status_code == 401

    def test_wrong_token_is_audited(self, client, db_session):
        response = client.get("/api/admin/orders", headers=admin_headers("nope"))

        assert response.status_code == 403
        event = db_session.query(SecurityEvent).one()
        assert event.event_type == "ADMIN_AUTH_FAILED"
        assert event.resource == "/api/admin/orders"

    def test_order_lifecycle_and_refund(self, client, catalog):
        ref = _start_checkout(client, catalog)
        order = client.post(
            "/api/payments/razorpay/verify",
            json={"razorpay_order_id": ref, "signature": "valid"},
            headers=buyer_headers(),
        ).get_json()["order"]

        bad = client.patch(f"/api/admin/orders/{order['id']}/status", json={"status": "DELIVERED"},
                           headers=admin_headers())
        assert bad.status_code == 409

        shipped = client.patch(
            f"/api/admin/orders/{order['id']}/tracking",
            json={"tracking_number": "AWB9", "carrier": "BlueDart", "estimated_delivery": "2026-11-02T10:00:00Z"},
            headers=admin_headers(),
        )
        assert shipped.status_code == 200
        assert shipped.get_json()["order"]["status"] == "SHIPPED"

        refunded = client.post(f"/api/admin/orders/{order['id']}/refund", json={"reason": "Lost parcel"},
                               headers=admin_headers())
        assert refunded.status_code == 200
        assert refunded.get_json()["order"]["status"] == "REFUNDED"

        again = client.post(f"/api/admin/orders/{order['id']}/refund", json={"reason": "Lost parcel"},
                            headers=admin_headers())
        assert again.status_code == 409
        assert again.get_json()["code"] == "ALREADY_REFUNDED"

    def test_refund_requires_reason(self, client):
        response = client.post("/api/admin/orders/1/refund", json={}, headers=admin_headers())
        assert response.status_code == 400

    def test_quantity_rule_crud(self, client, catalog):
        sub_id = catalog["subcategory"].id

        created = client.post(
            f"/api/admin/subcategories/{sub_id}/quantity-rules",
            json={"threshold_quantity": 20, "kind": "PERCENTAGE", "value": 2000},
            headers=admin_headers(),
        )
        assert created.status_code == 201
        rule_id = created.get_json()["rule"]["id"]

        duplicate = client.post(
            f"/api/admin/subcategories/{sub_id}/quantity-rules",
            json={"threshold_quantity": 20, "kind": "PERCENTAGE", "value": 1000},
            headers=admin_headers(),
        )
        assert duplicate.status_code == 400

        toggled = client.patch(f"/api/admin/quantity-rules/{rule_id}/toggle", json={"is_active": False},
                               headers=admin_headers())
        assert toggled.get_json()["rule"]["is_active"] is False

        listed = client.get(f"/api/admin/subcategories/{sub_id}/quantity-rules?active_only=true",
                            headers=admin_headers())
        assert listed.get_json()["count"] == 1

        deleted = client.delete(f"/api/admin/quantity-rules/{rule_id}", headers=admin_headers())
        assert deleted.status_code == 200

    def test_security_events_listing(self, client, db_session):
        client.get("/api/admin/orders", headers=admin_headers("nope"))

        response = client.get("/api/admin/security-events?event_type=admin_auth_failed", headers=admin_headers())

        assert response.get_json()["count"] == 1


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert set(data["checks"]) == {"database", "notifications"}
