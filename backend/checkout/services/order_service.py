# Overview: Order queries and post-creation lifecycle (status changes, shipment tracking).

"""
Order Lifecycle

Orders are created only by settlement. After that they move through the
transition table in statuses.py:

    CONFIRMED -> PROCESSING -> SHIPPED -> DELIVERED
            \\-> CANCELLED
    any paid status -> REFUNDED (refund service only)

Every status change appends a TrackingEvent and emits a status-changed
notification after commit.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy import update

from ..errors import NotFound, ValidationError
from ..models import Order, ProductVariant, TrackingEvent
from ..statuses import (
    STATUS_DESCRIPTIONS,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    check_order_transition,
    check_payment_transition,
)
from ..time_utils import utcnow
from .concurrency import immediate_transaction, lock_for_update, run_with_retry
from .notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)


def paginate(query, page: Optional[int], per_page: Optional[int]) -> dict:
    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page or 1, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [o.to_dict(include_tracking=False) for o in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


class OrderService:
    def __init__(self, session, notifications: NotificationDispatcher, *, clock: Callable = utcnow):
        self.session = session
        self.notifications = notifications
        self.clock = clock

    # -- queries ----------------------------------------------------------

    def get(self, order_id: int, *, buyer_id: Optional[str] = None) -> Order:
        """Fetch an order. With buyer_id, orders of other buyers look missing."""
        order = self.session.get(Order, order_id)
        if order is None or (buyer_id is not None and order.buyer_id != str(buyer_id)):
            raise NotFound("Order not found", details={"order_id": order_id})
        return order

    def get_by_number(self, order_number: str, *, buyer_id: Optional[str] = None) -> Order:
        order = self.session.query(Order).filter_by(order_number=order_number).first()
        if order is None or (buyer_id is not None and order.buyer_id != str(buyer_id)):
            raise NotFound("Order not found", details={"order_number": order_number})
        return order

    def get_by_transaction_ref(self, transaction_ref: str) -> Optional[Order]:
        return self.session.query(Order).filter_by(gateway_transaction_ref=transaction_ref).first()

    def list_for_buyer(self, buyer_id: str, *, status: Optional[str] = None,
                       page: Optional[int] = None, per_page: Optional[int] = None) -> dict:
        query = self.session.query(Order).filter(Order.buyer_id == str(buyer_id))
        if status:
            query = query.filter(Order.status == status.upper())
        return paginate(query.order_by(Order.created_at.desc(), Order.id.desc()), page, per_page)

    def list_all(self, *, status: Optional[str] = None, payment_status: Optional[str] = None,
                 search: Optional[str] = None, page: Optional[int] = None,
                 per_page: Optional[int] = None) -> dict:
        query = self.session.query(Order)
        if status:
            query = query.filter(Order.status == status.upper())
        if payment_status:
            query = query.filter(Order.payment_status == payment_status.upper())
        if search:
            like = f"%{search.strip()}%"
            query = query.filter(
                Order.order_number.ilike(like) | Order.name.ilike(like) | Order.email.ilike(like)
            )
        return paginate(query.order_by(Order.created_at.desc(), Order.id.desc()), page, per_page)

    # -- lifecycle --------------------------------------------------------

    def update_status(self, order_id: int, status: OrderStatus, admin_notes: Optional[str] = None) -> Order:
        target = OrderStatus(status)
        if target == OrderStatus.REFUNDED:
            raise ValidationError("Refunds must go through the refund operation")

        def _op():
            with immediate_transaction(self.session):
                order = self._locked(order_id)
                previous = order.status
                if admin_notes:
                    order.admin_notes = admin_notes
                if previous == target.value:
                    return order, previous

                check_order_transition(previous, target)
                now = self.clock()
                order.status = target.value
                if target == OrderStatus.SHIPPED and order.shipped_at is None:
                    order.shipped_at = now
                if target == OrderStatus.DELIVERED:
                    order.delivered_at = now
                    if order.payment_method == PaymentMethod.COD.value:
                        # Cash collected on delivery
                        check_payment_transition(order.payment_status, PaymentStatus.PAID)
                        order.payment_status = PaymentStatus.PAID.value
                if target == OrderStatus.CANCELLED and order.payment_status == PaymentStatus.PENDING.value:
                    # Nothing was collected, so nothing will be refunded; return the goods now
                    self._restore_stock(order)

                self.session.add(TrackingEvent(
                    order_id=order.id,
                    status=target.value,
                    description=STATUS_DESCRIPTIONS[target],
                    location=order.location(),
                    occurred_at=now,
                ))
                return order, previous

        order, previous = run_with_retry(_op, session=self.session)
        if previous != order.status:
            logger.info("Order %s status %s -> %s", order.order_number, previous, order.status)
            self.notifications.status_changed(order, previous, order.status)
        return order

    def update_tracking(
        self,
        order_id: int,
        *,
        tracking_number: str,
        carrier: str,
        tracking_url: Optional[str] = None,
        estimated_delivery=None,
    ) -> Order:
        def _op():
            with immediate_transaction(self.session):
                order = self._locked(order_id)
                previous = order.status
                now = self.clock()

                order.tracking_number = tracking_number
                order.carrier = carrier
                order.tracking_url = tracking_url
                order.estimated_delivery = estimated_delivery

                if previous != OrderStatus.SHIPPED.value:
                    check_order_transition(previous, OrderStatus.SHIPPED)
                    order.status = OrderStatus.SHIPPED.value
                    order.shipped_at = order.shipped_at or now
                    description = f"Order has been shipped via {carrier}. Tracking number: {tracking_number}"
                else:
                    description = f"Tracking information updated. {carrier}: {tracking_number}"

                self.session.add(TrackingEvent(
                    order_id=order.id,
                    status=OrderStatus.SHIPPED.value,
                    description=description,
                    location=order.location(),
                    occurred_at=now,
                ))
                return order, previous

        order, previous = run_with_retry(_op, session=self.session)
        if previous != order.status:
            self.notifications.status_changed(order, previous, order.status)
        return order

    def _locked(self, order_id: int) -> Order:
        order = lock_for_update(
            self.session.query(Order).filter_by(id=order_id).populate_existing()
        ).first()
        if order is None:
            raise NotFound("Order not found", details={"order_id": order_id})
        return order

    def _restore_stock(self, order: Order) -> None:
        for item in order.items:
            if item.product_variant_id is None:
                continue
            self.session.execute(
                update(ProductVariant)
                .where(ProductVariant.id == item.product_variant_id)
                .values(stock=ProductVariant.stock + item.quantity)
                .execution_options(synchronize_session=False)
            )
