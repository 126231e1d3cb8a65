# Overview: Closed status enumerations and their transition tables.

from __future__ import annotations

import enum

from .errors import InvalidTransition


class StrEnum(str, enum.Enum):
    def __str__(self) -> str:
        return self.value


class ProductStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class TenderTier(StrEnum):
    RETAIL = "RETAIL"
    WHOLESALE = "WHOLESALE"


class RuleKind(StrEnum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_TOTAL = "FIXED_TOTAL"


class CouponKind(StrEnum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class PaymentMethod(StrEnum):
    ONLINE = "ONLINE"
    COD = "COD"


class IntentStatus(StrEnum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class OrderStatus(StrEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


INTENT_TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.PENDING: frozenset({IntentStatus.VERIFIED, IntentStatus.FAILED, IntentStatus.EXPIRED}),
    IntentStatus.VERIFIED: frozenset({IntentStatus.COMMITTED, IntentStatus.FAILED}),
    IntentStatus.COMMITTED: frozenset(),
    IntentStatus.FAILED: frozenset(),
    IntentStatus.EXPIRED: frozenset(),
}

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED,
    }),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# Description written to the tracking log when an order enters a status
STATUS_DESCRIPTIONS = {
    OrderStatus.PENDING: "Order has been placed and is awaiting confirmation",
    OrderStatus.CONFIRMED: "Order has been confirmed and is being processed",
    OrderStatus.PROCESSING: "Order is being prepared for shipment",
    OrderStatus.SHIPPED: "Order has been shipped",
    OrderStatus.DELIVERED: "Order has been delivered successfully",
    OrderStatus.CANCELLED: "Order has been cancelled",
    OrderStatus.REFUNDED: "Order has been refunded",
}


def _check(table: dict, current, target, label: str) -> None:
    if target not in table[current]:
        raise InvalidTransition(
            f"Cannot move {label} from {current.value} to {target.value}",
            details={"from": current.value, "to": target.value},
        )


def check_intent_transition(current: str, target: IntentStatus) -> None:
    _check(INTENT_TRANSITIONS, IntentStatus(current), target, "payment intent")


def check_order_transition(current: str, target: OrderStatus) -> None:
    _check(ORDER_TRANSITIONS, OrderStatus(current), target, "order")


def check_payment_transition(current: str, target: PaymentStatus) -> None:
    _check(PAYMENT_TRANSITIONS, PaymentStatus(current), target, "payment status")
