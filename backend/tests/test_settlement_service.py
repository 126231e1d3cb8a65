"""
Settlement: verification, exactly-once commit, failure paths and COD.
"""

import pytest
from sqlalchemy.exc import OperationalError

from checkout.errors import (
    CouponExhausted,
    InsufficientStock,
    IntentClosed,
    InvalidTransition,
    PaymentDeclined,
    PaymentPending,
    QuoteMismatch,
    SignatureInvalid,
)
from checkout.gateways.base import VerificationOutcome
from checkout.models import Coupon, NotificationJob, Order, PaymentIntent, Product, SecurityEvent, TrackingEvent
from checkout.schemas import CartLine
from checkout.services.settlement_service import generate_order_number
from checkout.time_utils import utcnow
from conftest import SHIPPING

VALID = {"signature": "valid"}


def _intent(db_session, ref):
    db_session.expire_all()
    return db_session.query(PaymentIntent).filter_by(gateway_transaction_ref=ref).one()


class TestVerifyAndCommit:
    def test_commits_order_and_consumes_stock(self, services, start_payment, catalog, db_session, notifier):
        ref = start_payment(quantity=12)

        order = services.settlement.verify_and_commit(ref, VALID)

        assert order.status == "CONFIRMED"
        assert order.payment_status == "PAID"
        assert order.payment_method == "ONLINE"
        assert order.total_cents == 102000
        assert order.gateway_payment_id == f"pay_{ref}"
        assert [item.quantity for item in order.items] == [12]
        assert order.items[0].applied_rule_id == catalog["rule"].id

        intent = _intent(db_session, ref)
        assert intent.status == "COMMITTED"
        assert intent.order_id == order.id
        assert intent.verified_at is not None

        db_session.refresh(catalog["variant"])
        assert catalog["variant"].stock == 88

        events = db_session.query(TrackingEvent).filter_by(order_id=order.id).all()
        assert [e.status for e in events] == ["CONFIRMED"]
        assert events[0].location == "Bengaluru, KA"
        assert notifier.events == [("created", order.id)]

    def test_replay_returns_same_order_without_side_effects(
        self, services, start_payment, catalog, make_coupon, db_session, notifier
    ):
        coupon = make_coupon()
        ref = start_payment(quantity=6, coupon_code="SAVE50")

        first = services.settlement.verify_and_commit(ref, VALID)
        second = services.settlement.verify_and_commit(ref, VALID)

        assert first.id == second.id
        assert db_session.query(Order).count() == 1
        db_session.refresh(catalog["variant"])
        db_session.refresh(coupon)
        assert catalog["variant"].stock == 94
        assert coupon.used_count == 1
        assert coupon.total_discount_cents == 5000
        assert len(notifier.events) == 1

    def test_forged_signature_is_audited_and_intent_stays_open(
        self, services, start_payment, db_session, catalog
    ):
        ref = start_payment()

        with pytest.raises(SignatureInvalid):
            services.settlement.verify_and_commit(
                ref, {"signature": "forged"}, ip_address="10.0.0.9", user_agent="curl/8",
            )

        event = db_session.query(SecurityEvent).one()
        assert event.event_type == "SIGNATURE_INVALID"
        assert event.reference == ref
        assert event.ip_address == "10.0.0.9"
        assert _intent(db_session, ref).status == "PENDING"
        assert db_session.query(Order).count() == 0

        # The genuine confirmation still goes through
        order = services.settlement.verify_and_commit(ref, VALID)
        assert order.payment_status == "PAID"

    def test_declined_payment_fails_intent(self, services, start_payment, gateway, db_session):
        ref = start_payment()
        gateway.outcome = VerificationOutcome.DECLINED

        with pytest.raises(PaymentDeclined):
            services.settlement.verify_and_commit(ref, VALID)

        intent = _intent(db_session, ref)
        assert intent.status == "FAILED"
        assert "declined" in intent.failure_reason

        with pytest.raises(IntentClosed):
            services.settlement.verify_and_commit(ref, VALID)

    def test_processing_payment_leaves_intent_pending(self, services, start_payment, gateway, db_session):
        ref = start_payment()
        gateway.outcome = VerificationOutcome.PROCESSING

        with pytest.raises(PaymentPending) as exc:
            services.settlement.verify_and_commit(ref, VALID)

        assert exc.value.http_status == 202
        assert _intent(db_session, ref).status == "PENDING"

    def test_tampered_amount_is_audited_and_fails(self, services, start_payment, gateway, db_session):
        ref = start_payment(quantity=2)
        gateway.captured_amount = 100

        with pytest.raises(QuoteMismatch):
            services.settlement.verify_and_commit(ref, VALID)

        assert db_session.query(SecurityEvent).one().event_type == "AMOUNT_TAMPERED"
        assert _intent(db_session, ref).status == "FAILED"
        assert db_session.query(Order).count() == 0

    def test_price_change_after_payment_is_a_quote_mismatch(
        self, services, start_payment, catalog, db_session
    ):
        ref = start_payment(quantity=2)
        catalog["product"].normal_price_cents = 12000
        db_session.commit()

        with pytest.raises(QuoteMismatch):
            services.settlement.verify_and_commit(ref, VALID)

        assert _intent(db_session, ref).status == "FAILED"
        db_session.refresh(catalog["variant"])
        assert catalog["variant"].stock == 100

    def test_stock_sold_out_after_payment(self, services, start_payment, catalog, db_session):
        ref = start_payment(quantity=5, variant=catalog["scarce"])
        catalog["scarce"].stock = 3
        db_session.commit()

        with pytest.raises(InsufficientStock):
            services.settlement.verify_and_commit(ref, VALID)

        assert _intent(db_session, ref).status == "FAILED"
        db_session.refresh(catalog["scarce"])
        assert catalog["scarce"].stock == 3
        assert db_session.query(Order).count() == 0

    def test_coupon_used_up_by_another_order(self, services, start_payment, make_coupon, db_session, catalog):
        coupon = make_coupon(usage_limit=1)
        first = start_payment(quantity=6, coupon_code="SAVE50")
        second = start_payment(quantity=6, coupon_code="SAVE50", buyer_id="buyer-2")

        services.settlement.verify_and_commit(first, VALID)
        with pytest.raises(CouponExhausted):
            services.settlement.verify_and_commit(second, VALID)

        db_session.refresh(coupon)
        db_session.refresh(catalog["variant"])
        assert coupon.used_count == 1
        assert catalog["variant"].stock == 94
        assert _intent(db_session, second).status == "FAILED"

    def test_expired_intent_cannot_settle(self, services, start_payment, db_session):
        ref = start_payment()
        intent = _intent(db_session, ref)
        intent.status = "EXPIRED"
        db_session.commit()

        with pytest.raises(IntentClosed):
            services.settlement.verify_and_commit(ref, VALID)

    def test_notification_failure_does_not_undo_order(self, services, start_payment, notifier, db_session):
        notifier.fail = True
        ref = start_payment()

        order = services.settlement.verify_and_commit(ref, VALID)

        assert db_session.get(Order, order.id).status == "CONFIRMED"
        assert _intent(db_session, ref).status == "COMMITTED"

    def test_delivery_database_error_does_not_fail_the_request(
        self, services, start_payment, notifier, db_session, monkeypatch,
    ):
        def broken_deliver(job):
            raise OperationalError("UPDATE notification_jobs", {}, Exception("disk I/O error"))

        monkeypatch.setattr(services.notifications, "deliver", broken_deliver)
        ref = start_payment()

        order = services.settlement.verify_and_commit(ref, VALID)

        assert db_session.get(Order, order.id).status == "CONFIRMED"
        assert _intent(db_session, ref).status == "COMMITTED"
        job = db_session.query(NotificationJob).one()
        assert job.status == "PENDING"
        assert job.attempts == 0
        assert notifier.events == []


class TestMarkFailed:
    def test_marks_pending_intent_failed(self, services, start_payment, db_session):
        ref = start_payment()

        intent = services.settlement.mark_failed(ref, "Buyer closed the window")

        assert intent.status == "FAILED"
        assert intent.failure_reason == "Buyer closed the window"
        assert intent.closed_at is not None

    def test_committed_intent_cannot_be_failed(self, services, start_payment):
        ref = start_payment()
        services.settlement.verify_and_commit(ref, VALID)

        with pytest.raises(InvalidTransition):
            services.settlement.mark_failed(ref, "late failure report")


class TestCashOnDelivery:
    def test_places_confirmed_order_with_pending_payment(self, services, catalog, line, db_session, notifier):
        order = services.settlement.place_cod_order(
            buyer_id="buyer-1",
            buyer_info=dict(SHIPPING),
            lines=[line(catalog["product"], 3, catalog["variant"])],
        )

        assert order.status == "CONFIRMED"
        assert order.payment_status == "PENDING"
        assert order.payment_method == "COD"
        assert order.gateway_transaction_ref is None
        db_session.refresh(catalog["variant"])
        assert catalog["variant"].stock == 97
        assert notifier.events == [("created", order.id)]

    def test_rejects_when_stock_is_short(self, services, catalog, line, db_session):
        with pytest.raises(InsufficientStock):
            services.settlement.place_cod_order(
                buyer_id="buyer-1",
                buyer_info=dict(SHIPPING),
                lines=[line(catalog["product"], 6, catalog["scarce"])],
            )
        assert db_session.query(Order).count() == 0

    def test_stored_totals_are_internally_consistent(self, services, catalog, make_coupon, db_session):
        product = Product(name="Sticker Pack", normal_price_cents=333, subcategory_id=catalog["subcategory"].id)
        db_session.add(product)
        db_session.commit()
        make_coupon("TENOFF", discount_type="PERCENTAGE", discount_value=1000, min_order_cents=0)

        order = services.settlement.place_cod_order(
            buyer_id="buyer-1",
            buyer_info=dict(SHIPPING),
            lines=[CartLine(product_id=product.id, quantity=10)],
            coupon_code="TENOFF",
        )

        assert order.total_cents == 2547
        assert order.subtotal_cents - order.discount_cents + order.shipping_cost_cents == order.total_cents
        db_session.expire_all()
        assert db_session.query(Coupon).filter_by(code="TENOFF").one().total_discount_cents == order.discount_cents


def test_order_number_format():
    number = generate_order_number(utcnow())
    prefix, stamp, suffix = number.split("-")
    assert prefix == "ORD"
    assert len(stamp) == 14 and stamp.isdigit()
    assert len(suffix) == 6
