# Overview: Starts an online payment: quote, gateway session, and a PENDING payment intent.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional

from ..errors import NotFound, ValidationError
from ..gateways.base import PaymentGateway, PaymentSession
from ..models import PaymentIntent
from ..statuses import IntentStatus, TenderTier
from ..time_utils import hours_after, utcnow
from .coupon_service import normalize_code
from .quote_service import OrderQuoteBuilder, Quote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitiatedPayment:
    intent: PaymentIntent
    session: PaymentSession
    quote: Quote

    def to_dict(self) -> dict:
        return {
            "payment": self.session.to_dict(),
            "quote": self.quote.to_dict(),
            "intent": self.intent.to_dict(),
        }


class PaymentIntentInitiator:
    """
    No stock or coupon state changes here. The intent only records what was
    asked for and what the gateway was told to collect.

    Collaborators:
        session: SQLAlchemy session for the intent store
        quotes: OrderQuoteBuilder
        gateways: mapping of gateway name to PaymentGateway
        clock: callable returning naive UTC now
    """

    def __init__(
        self,
        session,
        quotes: OrderQuoteBuilder,
        gateways: Mapping[str, PaymentGateway],
        *,
        clock: Callable = utcnow,
        ttl_hours: int = 24,
    ):
        self.session = session
        self.quotes = quotes
        self.gateways = gateways
        self.clock = clock
        self.ttl_hours = ttl_hours

    def gateway(self, name: Optional[str]) -> PaymentGateway:
        gateway = self.gateways.get((name or "").lower())
        if gateway is None:
            raise ValidationError(
                "Unsupported payment gateway",
                details={"gateway": name, "supported": sorted(self.gateways)},
            )
        return gateway

    def initiate(
        self,
        *,
        buyer_id: str,
        buyer_info: dict,
        lines: Iterable,
        coupon_code: Optional[str] = None,
        tender_tier=TenderTier.RETAIL,
        gateway: str,
    ) -> InitiatedPayment:
        provider = self.gateway(gateway)
        lines = list(lines)
        tier = TenderTier(tender_tier)

        quote = self.quotes.build(lines, coupon_code, tier)
        if quote.total_cents <= 0:
            raise ValidationError("Order total must be positive", details={"total_cents": quote.total_cents})

        # Blocking gateway round-trip
        payment_session = provider.create_session(amount_cents=quote.total_cents, buyer_id=buyer_id)

        now = self.clock()
        intent = PaymentIntent(
            gateway=provider.name,
            gateway_transaction_ref=payment_session.transaction_ref,
            status=IntentStatus.PENDING.value,
            amount_cents=quote.total_cents,
            buyer_id=str(buyer_id),
            buyer_info=dict(buyer_info),
            request_payload={
                "items": [line.to_dict() for line in lines],
                "coupon_code": normalize_code(coupon_code),
                "tender_tier": tier.value,
            },
            quote_snapshot=quote.to_dict(),
            created_at=now,
            expires_at=hours_after(now, self.ttl_hours),
        )
        self.session.add(intent)
        self.session.commit()

        logger.info(
            "Payment intent %s created via %s for buyer %s (amount=%s)",
            intent.gateway_transaction_ref, provider.name, buyer_id, intent.amount_cents,
        )
        return InitiatedPayment(intent=intent, session=payment_session, quote=quote)

    def get(self, transaction_ref: str) -> PaymentIntent:
        intent = self.session.query(PaymentIntent).filter_by(gateway_transaction_ref=transaction_ref).first()
        if intent is None:
            raise NotFound("Payment not found", details={"transaction_ref": transaction_ref})
        return intent
