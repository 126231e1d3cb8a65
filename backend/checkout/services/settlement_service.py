# Overview: Verifies gateway payments and atomically turns them into orders.

"""
Settlement

WHY: An order may only exist once its payment is proven authentic, and the
shared state it consumes (variant stock, coupon redemptions) must change
exactly once per payment reference no matter how many times the callback,
the poll and the browser report the same payment.

FLOW (online):
1. Load the intent. COMMITTED replays the existing order.
2. Verify authenticity with the gateway. Bad signatures are audited.
3. Persist VERIFIED in its own short transaction.
4. Recompute the quote from the stored request; it must match the captured
   amount.
5. One write transaction: guarded stock decrements, guarded coupon
   increment, order + items + first tracking event, intent COMMITTED.
6. After commit, notify (best-effort).

Cash on delivery skips 1-4 and runs step 5 with payment still PENDING.

CONCURRENCY:
- BEGIN IMMEDIATE on SQLite, SELECT ... FOR UPDATE elsewhere
- version_id_col on the intent row
- UNIQUE(orders.gateway_transaction_ref); a duplicate insert is a replay
- run_with_retry on lock timeouts and stale versions
"""

from __future__ import annotations

import logging
import secrets
from typing import Callable, Iterable, Mapping, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    SETTLEMENT_FATAL,
    CommitConflict,
    CouponExhausted,
    InsufficientStock,
    IntentClosed,
    NotFound,
    PaymentDeclined,
    PaymentPending,
    QuoteMismatch,
    SignatureInvalid,
    ValidationError,
)
from ..gateways.base import PaymentGateway, VerificationOutcome
from ..models import Coupon, Order, OrderItem, PaymentIntent, ProductVariant, TrackingEvent
from ..schemas import CartLine
from ..statuses import (
    STATUS_DESCRIPTIONS,
    IntentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    TenderTier,
    check_intent_transition,
)
from ..time_utils import utcnow
from .audit_service import AMOUNT_TAMPERED, SIGNATURE_INVALID, SecurityAuditLog
from .concurrency import immediate_transaction, lock_for_update, run_with_retry
from .notification_service import NotificationDispatcher
from .pricing_service import to_cents
from .quote_service import OrderQuoteBuilder, Quote

logger = logging.getLogger(__name__)

CLOSED_INTENT_STATES = {IntentStatus.FAILED.value, IntentStatus.EXPIRED.value}


def generate_order_number(now) -> str:
    return f"ORD-{now:%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


class SettlementCommitter:
    """
    Collaborators:
        session: SQLAlchemy session (transaction owner)
        quotes: OrderQuoteBuilder used to recompute at commit
        gateways: mapping of gateway name to PaymentGateway
        notifications: NotificationDispatcher
        audit: SecurityAuditLog
        clock: callable returning naive UTC now
    """

    def __init__(
        self,
        session,
        quotes: OrderQuoteBuilder,
        gateways: Mapping[str, PaymentGateway],
        notifications: NotificationDispatcher,
        audit: SecurityAuditLog,
        *,
        clock: Callable = utcnow,
        retry_attempts: int = 3,
    ):
        self.session = session
        self.quotes = quotes
        self.gateways = gateways
        self.notifications = notifications
        self.audit = audit
        self.clock = clock
        self.retry_attempts = retry_attempts

    # ------------------------------------------------------------------
    # Online payments
    # ------------------------------------------------------------------

    def verify_and_commit(
        self,
        transaction_ref: str,
        payload: Optional[dict] = None,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Order:
        intent = self._find_intent(transaction_ref)
        if intent.status == IntentStatus.COMMITTED.value:
            logger.info("Replay of committed payment %s", transaction_ref)
            return self._committed_order(intent)
        if intent.status in CLOSED_INTENT_STATES:
            raise IntentClosed(
                f"Payment {transaction_ref} is {intent.status.lower()}",
                details={"transaction_ref": transaction_ref, "status": intent.status},
            )

        gateway_name = intent.gateway
        expected_amount = intent.amount_cents
        gateway = self.gateways.get(gateway_name)
        if gateway is None:
            raise ValidationError("Unsupported payment gateway", details={"gateway": gateway_name})

        try:
            verification = gateway.verify(transaction_ref, payload or {})
        except SignatureInvalid as exc:
            # The intent stays open so a forged request cannot cancel a real payment
            self.audit.log_security_event(
                SIGNATURE_INVALID,
                gateway=gateway_name,
                reference=transaction_ref,
                resource="payment_verification",
                reason=exc.message,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise

        if verification.outcome == VerificationOutcome.PROCESSING:
            raise PaymentPending(
                "Payment is still being processed",
                details={"transaction_ref": transaction_ref},
            )
        if verification.outcome == VerificationOutcome.DECLINED:
            reason = verification.message or "Payment declined"
            self._close_failed(transaction_ref, reason, strict=False)
            raise PaymentDeclined(f"Payment failed: {reason}", details={"transaction_ref": transaction_ref})

        if verification.amount_cents is not None and verification.amount_cents != expected_amount:
            self.audit.log_security_event(
                AMOUNT_TAMPERED,
                gateway=gateway_name,
                reference=transaction_ref,
                resource="payment_verification",
                reason=f"captured {verification.amount_cents}, expected {expected_amount}",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self._close_failed(transaction_ref, "Captured amount does not match quote", strict=False)
            raise QuoteMismatch(
                "Captured amount does not match the order total",
                details={"captured_cents": verification.amount_cents, "expected_cents": expected_amount},
            )

        replay = self._record_verified(transaction_ref, verification.payment_id)
        if replay is not None:
            return replay

        try:
            order = run_with_retry(
                lambda: self._commit_online(transaction_ref),
                session=self.session,
                attempts=self.retry_attempts,
            )
        except CommitConflict as exc:
            logger.info("Payment %s was committed concurrently as order %s", transaction_ref, exc.order_id)
            return self.session.get(Order, exc.order_id)
        except SETTLEMENT_FATAL as exc:
            logger.warning("Settlement of %s failed after verification: %s", transaction_ref, exc.message)
            self._close_failed(transaction_ref, exc.message, strict=False)
            raise

        logger.info("Order %s committed for payment %s", order.order_number, transaction_ref)
        self.notifications.order_created(order)
        return order

    def mark_failed(self, transaction_ref: str, reason: str) -> PaymentIntent:
        """Client-reported failure or abandonment of a checkout."""
        self._find_intent(transaction_ref)
        return self._close_failed(transaction_ref, reason or "Payment failed", strict=True)

    def _record_verified(self, transaction_ref: str, payment_id: Optional[str]) -> Optional[Order]:
        def _op():
            with immediate_transaction(self.session):
                intent = self._locked_intent(transaction_ref)
                if intent.status == IntentStatus.COMMITTED.value:
                    return self._committed_order(intent)
                if intent.status in CLOSED_INTENT_STATES:
                    raise IntentClosed(
                        f"Payment {transaction_ref} is {intent.status.lower()}",
                        details={"transaction_ref": transaction_ref, "status": intent.status},
                    )
                if intent.status == IntentStatus.PENDING.value:
                    check_intent_transition(intent.status, IntentStatus.VERIFIED)
                    intent.status = IntentStatus.VERIFIED.value
                    intent.verified_at = self.clock()
                if payment_id and not intent.gateway_payment_id:
                    intent.gateway_payment_id = payment_id
                return None

        return run_with_retry(_op, session=self.session, attempts=self.retry_attempts)

    def _commit_online(self, transaction_ref: str) -> Order:
        try:
            with immediate_transaction(self.session):
                intent = self._locked_intent(transaction_ref)
                if intent.status == IntentStatus.COMMITTED.value:
                    return self._committed_order(intent)
                if intent.status != IntentStatus.VERIFIED.value:
                    raise IntentClosed(
                        f"Payment {transaction_ref} is {intent.status.lower()}",
                        details={"transaction_ref": transaction_ref, "status": intent.status},
                    )

                request = intent.request_payload or {}
                lines = [CartLine(**item) for item in request.get("items", [])]
                quote = self.quotes.build(lines, request.get("coupon_code"), request.get("tender_tier"))
                if quote.total_cents != intent.amount_cents:
                    raise QuoteMismatch(
                        "Prices changed since the payment was started",
                        details={"captured_cents": intent.amount_cents, "recomputed_cents": quote.total_cents},
                    )

                order = self._write_order(
                    quote,
                    buyer_id=intent.buyer_id,
                    buyer_info=intent.buyer_info,
                    payment_method=PaymentMethod.ONLINE,
                    payment_status=PaymentStatus.PAID,
                    gateway=intent.gateway,
                    transaction_ref=transaction_ref,
                    payment_id=intent.gateway_payment_id,
                )

                check_intent_transition(intent.status, IntentStatus.COMMITTED)
                intent.status = IntentStatus.COMMITTED.value
                intent.order_id = order.id
                intent.closed_at = self.clock()
                return order
        except IntegrityError:
            existing = self.session.query(Order).filter_by(gateway_transaction_ref=transaction_ref).first()
            if existing is None:
                raise
            raise CommitConflict("Payment already settled", order_id=existing.id)

    def _close_failed(self, transaction_ref: str, reason: str, *, strict: bool) -> PaymentIntent:
        """
        Move an open intent to FAILED.

        strict=False is used on internal failure paths and leaves committed
        intents alone; strict=True rejects them with InvalidTransition.
        """
        def _op():
            with immediate_transaction(self.session):
                intent = self._locked_intent(transaction_ref)
                if intent.status in CLOSED_INTENT_STATES:
                    return intent
                if intent.status == IntentStatus.COMMITTED.value and not strict:
                    return intent
                check_intent_transition(intent.status, IntentStatus.FAILED)
                intent.status = IntentStatus.FAILED.value
                intent.failure_reason = (reason or "")[:255]
                intent.closed_at = self.clock()
                logger.info("Payment intent %s marked FAILED: %s", transaction_ref, reason)
                return intent

        return run_with_retry(_op, session=self.session, attempts=self.retry_attempts)

    # ------------------------------------------------------------------
    # Cash on delivery
    # ------------------------------------------------------------------

    def place_cod_order(
        self,
        *,
        buyer_id: str,
        buyer_info: dict,
        lines: Iterable,
        coupon_code: Optional[str] = None,
        tender_tier=TenderTier.RETAIL,
    ) -> Order:
        lines = list(lines)
        tier = TenderTier(tender_tier)

        def _op():
            with immediate_transaction(self.session):
                quote = self.quotes.build(lines, coupon_code, tier)
                if quote.total_cents <= 0:
                    raise ValidationError("Order total must be positive", details={"total_cents": quote.total_cents})
                return self._write_order(
                    quote,
                    buyer_id=buyer_id,
                    buyer_info=buyer_info,
                    payment_method=PaymentMethod.COD,
                    payment_status=PaymentStatus.PENDING,
                )

        order = run_with_retry(_op, session=self.session, attempts=self.retry_attempts)
        logger.info("COD order %s placed by buyer %s", order.order_number, buyer_id)
        self.notifications.order_created(order)
        return order

    # ------------------------------------------------------------------
    # Shared write path
    # ------------------------------------------------------------------

    def _write_order(
        self,
        quote: Quote,
        *,
        buyer_id: str,
        buyer_info: dict,
        payment_method: PaymentMethod,
        payment_status: PaymentStatus,
        gateway: Optional[str] = None,
        transaction_ref: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> Order:
        """Must run inside immediate_transaction. Raises before any insert on conflict."""
        for line in quote.lines:
            if line.variant_id is None:
                continue
            result = self.session.execute(
                update(ProductVariant)
                .where(ProductVariant.id == line.variant_id, ProductVariant.stock >= line.quantity)
                .values(stock=ProductVariant.stock - line.quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InsufficientStock(
                    f"Insufficient stock for {line.product_name}",
                    details={"variant_id": line.variant_id, "requested": line.quantity},
                )

        discount_cents = quote.discount_cents
        if quote.coupon_id is not None:
            result = self.session.execute(
                update(Coupon)
                .where(
                    Coupon.id == quote.coupon_id,
                    Coupon.is_active.is_(True),
                    or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
                )
                .values(
                    used_count=Coupon.used_count + 1,
                    total_discount_cents=Coupon.total_discount_cents + discount_cents,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise CouponExhausted("Coupon usage limit reached", details={"code": quote.coupon_code})

        now = self.clock()
        order = Order(
            order_number=generate_order_number(now),
            buyer_id=str(buyer_id),
            tender_tier=quote.tender_tier,
            name=buyer_info["name"],
            email=buyer_info["email"],
            phone=buyer_info["phone"],
            address=buyer_info["address"],
            city=buyer_info["city"],
            state=buyer_info["state"],
            pincode=buyer_info["pincode"],
            preferred_courier=buyer_info.get("preferred_courier"),
            courier_instructions=buyer_info.get("courier_instructions"),
            status=OrderStatus.CONFIRMED.value,
            payment_status=payment_status.value,
            payment_method=payment_method.value,
            gateway=gateway,
            gateway_transaction_ref=transaction_ref,
            gateway_payment_id=payment_id,
            subtotal_cents=quote.subtotal_cents,
            quantity_savings_cents=to_cents(quote.quantity_savings),
            discount_cents=discount_cents,
            shipping_cost_cents=quote.shipping_cents,
            total_cents=quote.total_cents,
            coupon_id=quote.coupon_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(order)

        for line in quote.lines:
            snapshot = line.to_dict()
            self.session.add(OrderItem(
                order=order,
                product_id=line.product_id,
                product_variant_id=line.variant_id,
                quantity=line.quantity,
                base_unit_price_cents=snapshot["base_unit_price_cents"],
                unit_price_cents=snapshot["unit_price_cents"],
                line_total_cents=snapshot["line_total_cents"],
                original_line_total_cents=snapshot["original_line_total_cents"],
                savings_cents=snapshot["savings_cents"],
                applied_rule_id=line.pricing.applied_rule.rule_id if line.pricing.applied_rule else None,
                created_at=now,
            ))

        self.session.add(TrackingEvent(
            order=order,
            status=OrderStatus.CONFIRMED.value,
            description=STATUS_DESCRIPTIONS[OrderStatus.CONFIRMED],
            location=order.location(),
            occurred_at=now,
        ))
        self.session.flush()
        return order

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _find_intent(self, transaction_ref: str) -> PaymentIntent:
        intent = self.session.query(PaymentIntent).filter_by(gateway_transaction_ref=transaction_ref).first()
        if intent is None:
            raise NotFound("Payment not found", details={"transaction_ref": transaction_ref})
        return intent

    def _locked_intent(self, transaction_ref: str) -> PaymentIntent:
        intent = lock_for_update(
            self.session.query(PaymentIntent)
            .filter_by(gateway_transaction_ref=transaction_ref)
            .populate_existing()
        ).first()
        if intent is None:
            raise NotFound("Payment not found", details={"transaction_ref": transaction_ref})
        return intent

    def _committed_order(self, intent: PaymentIntent) -> Order:
        order = None
        if intent.order_id is not None:
            order = self.session.get(Order, intent.order_id)
        if order is None:
            order = self.session.query(Order).filter_by(
                gateway_transaction_ref=intent.gateway_transaction_ref
            ).first()
        if order is None:
            raise NotFound("Order for committed payment not found", details={"transaction_ref": intent.gateway_transaction_ref})
        return order
