# Overview: Full refund of a paid order through its gateway, restoring stock on success.

from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional

from sqlalchemy import update

from ..errors import AlreadyRefunded, NotFound, ValidationError
from ..gateways.base import PaymentGateway
from ..models import Order, ProductVariant, TrackingEvent
from ..statuses import (
    OrderStatus,
    PaymentStatus,
    check_order_transition,
    check_payment_transition,
)
from ..time_utils import utcnow
from .concurrency import immediate_transaction, lock_for_update, run_with_retry
from .notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)


def refund_idempotency_key(order_id: int) -> str:
    return f"REFUND_{order_id}"


class RefundCoordinator:
    """
    One refund per order.

    The gateway is called before any local write. If it fails nothing
    changes; if it succeeds the order, payment status and stock move together
    in one transaction. The idempotency key makes a repeated gateway call
    for the same order harmless.

    The check before the gateway call reads an unlocked row, so two
    concurrent refunds of one order can both reach the gateway. The shared
    idempotency key is what stops the second from refunding again; the
    locked re-check then rejects it locally with AlreadyRefunded.
    """

    def __init__(
        self,
        session,
        gateways: Mapping[str, PaymentGateway],
        notifications: NotificationDispatcher,
        *,
        clock: Callable = utcnow,
    ):
        self.session = session
        self.gateways = gateways
        self.notifications = notifications
        self.clock = clock

    def refund(
        self,
        order_id: int,
        *,
        reason: str,
        amount_cents: Optional[int] = None,
        admin_notes: Optional[str] = None,
    ) -> dict:
        order = self.session.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found", details={"order_id": order_id})
        self._check_refundable(order)

        amount = order.total_cents if amount_cents is None else amount_cents
        if amount <= 0 or amount > order.total_cents:
            raise ValidationError(
                "Refund amount must be positive and not exceed the order total",
                details={"amount_cents": amount, "total_cents": order.total_cents},
            )

        gateway = self.gateways.get(order.gateway or "")
        if gateway is None:
            raise ValidationError("Order has no refundable gateway", details={"gateway": order.gateway})

        # Blocking gateway round-trip; RefundFailed leaves the order untouched
        result = gateway.refund(
            transaction_ref=order.gateway_transaction_ref,
            payment_id=order.gateway_payment_id,
            amount_cents=amount,
            idempotency_key=refund_idempotency_key(order.id),
        )

        def _op():
            with immediate_transaction(self.session):
                locked = lock_for_update(
                    self.session.query(Order).filter_by(id=order_id).populate_existing()
                ).first()
                self._check_refundable(locked)
                check_order_transition(locked.status, OrderStatus.REFUNDED)
                check_payment_transition(locked.payment_status, PaymentStatus.REFUNDED)

                now = self.clock()
                locked.status = OrderStatus.REFUNDED.value
                locked.payment_status = PaymentStatus.REFUNDED.value
                locked.refund_id = result.refund_id
                locked.refunded_cents = amount
                locked.refund_reason = reason[:255]
                locked.refunded_at = now
                if admin_notes:
                    locked.admin_notes = admin_notes

                for item in locked.items:
                    if item.product_variant_id is None:
                        continue
                    self.session.execute(
                        update(ProductVariant)
                        .where(ProductVariant.id == item.product_variant_id)
                        .values(stock=ProductVariant.stock + item.quantity)
                        .execution_options(synchronize_session=False)
                    )

                self.session.add(TrackingEvent(
                    order_id=locked.id,
                    status=OrderStatus.REFUNDED.value,
                    description=(
                        f"Order refunded. Amount: {amount / 100:.2f}. "
                        f"Reason: {reason}. Refund ID: {result.refund_id}"
                    ),
                    occurred_at=now,
                ))
                return locked

        refunded = run_with_retry(_op, session=self.session)
        logger.info("Order %s refunded: %s (refund id %s)", refunded.order_number, amount, result.refund_id)

        info = {"refund_id": result.refund_id, "amount_cents": amount, "reason": reason}
        self.notifications.refunded(refunded, info)
        return {"order": refunded.to_dict(), **info}

    def _check_refundable(self, order: Order) -> None:
        if order.status == OrderStatus.REFUNDED.value or order.payment_status == PaymentStatus.REFUNDED.value:
            raise AlreadyRefunded("Order is already refunded", details={"order_id": order.id})
        if order.payment_status != PaymentStatus.PAID.value:
            raise ValidationError("Cannot refund order that is not paid", details={"payment_status": order.payment_status})
        if not order.gateway_transaction_ref:
            raise ValidationError("Original transaction ID not found for refund")
