# Overview: Hosted-checkout gateway (Razorpay orders API and HMAC signature check).

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import Optional

import httpx

from ..errors import GatewayUnavailable, RefundFailed, SignatureInvalid, ValidationError
from .base import (
    GatewayHttpClient,
    GatewayVerification,
    PaymentGateway,
    PaymentSession,
    RefundResult,
    VerificationOutcome,
    response_json,
)

logger = logging.getLogger(__name__)

# Razorpay rejects orders below one rupee
MIN_AMOUNT_CENTS = 100


def razorpay_signature(order_id: str, payment_id: str, key_secret: str) -> str:
    body = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(key_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class RazorpayGateway(PaymentGateway):
    """
    Hosted checkout.

    The remote order fixes the amount, so a valid signature over
    order_id|payment_id proves that exact amount was captured.
    """

    name = "razorpay"

    def __init__(
        self,
        *,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com",
        currency: str = "INR",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.currency = currency
        self.http = GatewayHttpClient(
            base_url,
            timeout=timeout,
            auth=httpx.BasicAuth(key_id, key_secret),
            transport=transport,
        )

    def create_session(self, *, amount_cents: int, buyer_id: str) -> PaymentSession:
        if amount_cents < MIN_AMOUNT_CENTS:
            raise ValidationError(
                "Amount must be at least 1.00 for online payment",
                details={"amount_cents": amount_cents},
            )

        body = {
            "amount": amount_cents,
            "currency": self.currency,
            "receipt": f"rcpt_{secrets.token_hex(8)}",
            "notes": {"buyer_id": buyer_id},
        }
        response = self.http.post("/v1/orders", json=body)
        data = response_json(response)
        if response.status_code != 200 or not data.get("id"):
            description = (data.get("error") or {}).get("description") or "Failed to create payment order"
            logger.error("Razorpay order creation failed: %s", description)
            raise GatewayUnavailable(f"Razorpay error: {description}", details={"status": response.status_code})

        logger.info("Razorpay order created: %s", data["id"])
        return PaymentSession(
            gateway=self.name,
            transaction_ref=data["id"],
            amount_cents=amount_cents,
            currency=self.currency,
            key_id=self.key_id,
        )

    def verify(self, transaction_ref: str, payload: dict) -> GatewayVerification:
        order_id = payload.get("razorpay_order_id") or transaction_ref
        payment_id = payload.get("razorpay_payment_id")
        signature = payload.get("razorpay_signature")

        if not payment_id or not signature:
            raise SignatureInvalid("Missing payment verification parameters")
        if order_id != transaction_ref:
            raise SignatureInvalid("Payment does not belong to this order")

        expected = razorpay_signature(order_id, payment_id, self.key_secret)
        if not hmac.compare_digest(expected, str(signature)):
            raise SignatureInvalid("Payment signature mismatch")

        return GatewayVerification(
            transaction_ref=transaction_ref,
            outcome=VerificationOutcome.CAPTURED,
            payment_id=payment_id,
        )

    def refund(
        self,
        *,
        transaction_ref: str,
        payment_id: Optional[str],
        amount_cents: int,
        idempotency_key: str,
    ) -> RefundResult:
        if not payment_id:
            raise RefundFailed("Original payment id not found for refund")
        if amount_cents < MIN_AMOUNT_CENTS:
            raise RefundFailed("Refund amount must be at least 1.00")

        body = {
            "amount": amount_cents,
            "receipt": idempotency_key,
            "notes": {"idempotency_key": idempotency_key, "order_ref": transaction_ref},
        }
        try:
            response = self.http.post(f"/v1/payments/{payment_id}/refund", json=body)
        except GatewayUnavailable as exc:
            raise RefundFailed(f"Refund processing failed: {exc.message}") from exc

        data = response_json(response)
        if response.status_code != 200 or not data.get("id"):
            description = (data.get("error") or {}).get("description") or "Refund failed"
            raise RefundFailed(f"Refund processing failed: {description}", details={"status": response.status_code})

        return RefundResult(refund_id=data["id"], amount_cents=int(data.get("amount", amount_cents)), raw=data)
