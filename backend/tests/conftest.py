"""
Pytest fixtures for checkout backend tests.

Provides an app per test on an in-memory database, a scriptable payment
gateway, a recording notifier, catalog fixtures and header helpers.
"""

import itertools
from datetime import timedelta
from typing import Optional

import pytest

from checkout import create_app
from checkout.errors import RefundFailed, SignatureInvalid
from checkout.extensions import db
from checkout.gateways.base import (
    GatewayVerification,
    PaymentGateway,
    PaymentSession,
    RefundResult,
    VerificationOutcome,
)
from checkout.models import Coupon, Product, ProductVariant, QuantityPriceRule, Subcategory
from checkout.schemas import CartLine
from checkout.time_utils import utcnow
from checkout.wiring import components

ADMIN_TOKEN = "test-admin-token"

SHIPPING = {
    "name": "Asha Rao",
    "email": "asha@example.com",
    "phone": "9999999999",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "pincode": "560001",
}


class FakeGateway(PaymentGateway):
    """
    Scriptable gateway.

    verify() accepts {"signature": "valid"} or an empty payload (a status
    poll); any other signature is a forged payload. outcome and
    captured_amount control what a valid verification reports.
    """

    name = "fakepay"

    def __init__(self):
        self._refs = itertools.count(1)
        self.outcome = VerificationOutcome.CAPTURED
        self.captured_amount: Optional[int] = None
        self.refund_error: Optional[Exception] = None
        self.sessions = []
        self.verify_calls = []
        self.refund_calls = []

    def create_session(self, *, amount_cents: int, buyer_id: str) -> PaymentSession:
        session = PaymentSession(
            gateway=self.name,
            transaction_ref=f"fake_{next(self._refs)}",
            amount_cents=amount_cents,
            currency="INR",
            redirect_url="https://pay.example/checkout",
        )
        self.sessions.append(session)
        return session

    def verify(self, transaction_ref: str, payload: dict) -> GatewayVerification:
        self.verify_calls.append((transaction_ref, dict(payload)))
        if payload and payload.get("signature") != "valid":
            raise SignatureInvalid("Payment signature mismatch")
        return GatewayVerification(
            transaction_ref=transaction_ref,
            outcome=self.outcome,
            payment_id=f"pay_{transaction_ref}",
            amount_cents=self.captured_amount,
            message="declined by issuer" if self.outcome == VerificationOutcome.DECLINED else None,
        )

    def refund(self, *, transaction_ref, payment_id, amount_cents, idempotency_key) -> RefundResult:
        self.refund_calls.append({
            "transaction_ref": transaction_ref,
            "payment_id": payment_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        })
        if self.refund_error is not None:
            raise self.refund_error
        return RefundResult(refund_id=f"rfnd_{transaction_ref}", amount_cents=amount_cents)


class RecordingNotifier:
    def __init__(self):
        self.events = []
        self.fail = False

    def _record(self, *event):
        if self.fail:
            raise RuntimeError("mail server down")
        self.events.append(event)

    def notify_order_created(self, order):
        self._record("created", order.id)

    def notify_status_changed(self, order, from_status, to_status):
        self._record("status", order.id, from_status, to_status)

    def notify_refunded(self, order, refund_info):
        self._record("refunded", order.id, refund_info["refund_id"])


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(gateway, notifier):
    """Fresh application and schema per test."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'ADMIN_API_TOKEN': ADMIN_TOKEN,
        },
        gateways={FakeGateway.name: gateway},
        notifier=notifier,
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    return db.session


@pytest.fixture
def services(app):
    return components()


@pytest.fixture
def catalog(db_session):
    """
    One subcategory with a 15%-off-at-10 rule, a 100.00 product and two
    variants (stock 100 and stock 5).
    """
    subcategory = Subcategory(name="T-Shirts")
    db_session.add(subcategory)
    db_session.flush()

    rule = QuantityPriceRule(
        subcategory_id=subcategory.id, threshold_quantity=10, kind="PERCENTAGE", value=1500,
    )
    product = Product(
        name="Crew Neck Tee",
        normal_price_cents=10000,
        wholesale_price_cents=8000,
        subcategory_id=subcategory.id,
    )
    db_session.add_all([rule, product])
    db_session.flush()

    variant = ProductVariant(product_id=product.id, sku="TEE-BLK-M", color="Black", size="M", stock=100)
    scarce = ProductVariant(product_id=product.id, sku="TEE-RED-S", color="Red", size="S", stock=5)
    db_session.add_all([variant, scarce])
    db_session.commit()

    return {
        "subcategory": subcategory,
        "rule": rule,
        "product": product,
        "variant": variant,
        "scarce": scarce,
    }


@pytest.fixture
def make_coupon(db_session):
    def _make(code="SAVE50", **overrides):
        now = utcnow()
        values = dict(
            code=code,
            discount_type="FIXED",
            discount_value=5000,
            min_order_cents=50000,
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=30),
            usage_limit=None,
        )
        values.update(overrides)
        coupon = Coupon(**values)
        db_session.add(coupon)
        db_session.commit()
        return coupon
    return _make


@pytest.fixture
def line():
    def _line(product, quantity, variant=None):
        return CartLine(product_id=product.id, quantity=quantity, variant_id=variant.id if variant else None)
    return _line


@pytest.fixture
def start_payment(services, catalog, line):
    """Initiate a fakepay payment and return the transaction reference."""
    def _start(quantity=2, variant=None, coupon_code=None, buyer_id="buyer-1"):
        initiated = services.intents.initiate(
            buyer_id=buyer_id,
            buyer_info=dict(SHIPPING),
            lines=[line(catalog["product"], quantity, variant or catalog["variant"])],
            coupon_code=coupon_code,
            gateway=FakeGateway.name,
        )
        return initiated.intent.gateway_transaction_ref
    return _start


def buyer_headers(buyer_id="buyer-1", tier=None):
    headers = {"X-Buyer-Id": buyer_id}
    if tier:
        headers["X-Buyer-Tier"] = tier
    return headers


def admin_headers(token=ADMIN_TOKEN):
    return {"Authorization": f"Bearer {token}"}


def refund_error():
    return RefundFailed("Refund processing failed: gateway said no")
