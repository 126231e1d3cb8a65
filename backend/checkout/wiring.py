# Overview: Builds the service graph once per application and exposes it to routes and CLI.

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from flask import Flask, current_app

from .extensions import db
from .gateways import PaymentGateway, PhonePeGateway, RazorpayGateway
from .services.audit_service import SecurityAuditLog
from .services.coupon_service import CouponEvaluator
from .services.intent_service import PaymentIntentInitiator
from .services.maintenance_service import MaintenanceService
from .services.notification_service import LoggingNotifier, NotificationDispatcher, Notifier
from .services.order_service import OrderService
from .services.pricing_service import PricingResolver
from .services.quote_service import OrderQuoteBuilder
from .services.refund_service import RefundCoordinator
from .services.rule_service import QuantityRuleService
from .services.settlement_service import SettlementCommitter
from .time_utils import utcnow

EXTENSION_KEY = "checkout"


@dataclass
class Components:
    gateways: Mapping[str, PaymentGateway]
    pricing: PricingResolver
    coupons: CouponEvaluator
    quotes: OrderQuoteBuilder
    intents: PaymentIntentInitiator
    settlement: SettlementCommitter
    refunds: RefundCoordinator
    orders: OrderService
    rules: QuantityRuleService
    notifications: NotificationDispatcher
    audit: SecurityAuditLog
    maintenance: MaintenanceService


def build_gateways(config) -> dict[str, PaymentGateway]:
    timeout = config["GATEWAY_TIMEOUT_SECONDS"]
    currency = config["CURRENCY"]
    return {
        RazorpayGateway.name: RazorpayGateway(
            key_id=config["RAZORPAY_KEY_ID"],
            key_secret=config["RAZORPAY_KEY_SECRET"],
            base_url=config["RAZORPAY_BASE_URL"],
            currency=currency,
            timeout=timeout,
        ),
        PhonePeGateway.name: PhonePeGateway(
            merchant_id=config["PHONEPE_MERCHANT_ID"],
            salt_key=config["PHONEPE_SALT_KEY"],
            salt_index=config["PHONEPE_SALT_INDEX"],
            base_url=config["PHONEPE_BASE_URL"],
            redirect_url=config["PHONEPE_REDIRECT_URL"],
            callback_url=config["PHONEPE_CALLBACK_URL"],
            currency=currency,
            timeout=timeout,
        ),
    }


def build_components(
    config,
    *,
    session=None,
    gateways: Optional[Mapping[str, PaymentGateway]] = None,
    notifier: Optional[Notifier] = None,
    clock: Callable = utcnow,
) -> Components:
    session = session if session is not None else db.session
    gateways = dict(gateways) if gateways is not None else build_gateways(config)

    pricing = PricingResolver(session)
    coupons = CouponEvaluator(session, clock=clock)
    quotes = OrderQuoteBuilder(
        session, pricing, coupons,
        shipping_cost_cents=config["SHIPPING_COST_CENTS"],
    )
    notifications = NotificationDispatcher(
        session,
        notifier or LoggingNotifier(),
        clock=clock,
        max_attempts=config["NOTIFICATION_MAX_ATTEMPTS"],
    )
    audit = SecurityAuditLog(session, clock=clock)

    return Components(
        gateways=gateways,
        pricing=pricing,
        coupons=coupons,
        quotes=quotes,
        intents=PaymentIntentInitiator(
            session, quotes, gateways,
            clock=clock,
            ttl_hours=config["INTENT_TTL_HOURS"],
        ),
        settlement=SettlementCommitter(session, quotes, gateways, notifications, audit, clock=clock),
        refunds=RefundCoordinator(session, gateways, notifications, clock=clock),
        orders=OrderService(session, notifications, clock=clock),
        rules=QuantityRuleService(session),
        notifications=notifications,
        audit=audit,
        maintenance=MaintenanceService(session, notifications, clock=clock),
    )


def init_app(app: Flask, **kwargs) -> Components:
    components = build_components(app.config, **kwargs)
    app.extensions[EXTENSION_KEY] = components
    return components


def components() -> Components:
    return current_app.extensions[EXTENSION_KEY]
