# Overview: Redirect gateway (PhonePe pay page, status poll, callback checksum, refund).

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
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

PAY_PATH = "/pg/v1/pay"
REFUND_PATH = "/pg/v1/refund"

SUCCESS_CODES = {"PAYMENT_SUCCESS"}
PENDING_CODES = {"PAYMENT_PENDING", "PAYMENT_INITIATED", "INTERNAL_SERVER_ERROR"}


def encode_payload(payload: dict) -> str:
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def checksum(material: str, salt_key: str, salt_index: str) -> str:
    """sha256(material + salt_key) hex digest, suffixed with ###salt_index."""
    digest = hashlib.sha256(f"{material}{salt_key}".encode("utf-8")).hexdigest()
    return f"{digest}###{salt_index}"


def new_merchant_transaction_id() -> str:
    return f"MT{int(time.time() * 1000)}{secrets.token_hex(3).upper()}"


class PhonePeGateway(PaymentGateway):
    """
    Redirect checkout.

    The buyer is sent to the PhonePe pay page. The outcome arrives either as
    a server-to-server callback (base64 body plus X-VERIFY checksum) or by
    polling the status API with the merchant transaction id.
    """

    name = "phonepe"

    def __init__(
        self,
        *,
        merchant_id: str,
        salt_key: str,
        salt_index: str = "1",
        base_url: str = "https://api-preprod.phonepe.com/apis/pg-sandbox",
        redirect_url: str = "",
        callback_url: str = "",
        currency: str = "INR",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.merchant_id = merchant_id
        self.salt_key = salt_key
        self.salt_index = str(salt_index)
        self.redirect_url = redirect_url
        self.callback_url = callback_url
        self.currency = currency
        self.http = GatewayHttpClient(base_url, timeout=timeout, transport=transport)

    # -- checksums --------------------------------------------------------

    def pay_checksum(self, base64_payload: str) -> str:
        return checksum(f"{base64_payload}{PAY_PATH}", self.salt_key, self.salt_index)

    def status_checksum(self, transaction_ref: str) -> str:
        # Signed without the leading slash
        path = f"pg/v1/status/{self.merchant_id}/{transaction_ref}"
        return checksum(path, self.salt_key, self.salt_index)

    def refund_checksum(self, base64_payload: str) -> str:
        return checksum(f"{base64_payload}{REFUND_PATH}", self.salt_key, self.salt_index)

    def callback_checksum(self, base64_response: str) -> str:
        return checksum(base64_response, self.salt_key, self.salt_index)

    # -- operations -------------------------------------------------------

    def create_session(self, *, amount_cents: int, buyer_id: str) -> PaymentSession:
        if amount_cents <= 0:
            raise ValidationError("Invalid payment amount", details={"amount_cents": amount_cents})

        transaction_ref = new_merchant_transaction_id()
        payload = {
            "merchantId": self.merchant_id,
            "merchantTransactionId": transaction_ref,
            "merchantUserId": f"USER_{buyer_id}",
            "amount": amount_cents,
            "redirectUrl": f"{self.redirect_url}?txn={transaction_ref}" if self.redirect_url else "",
            "redirectMode": "REDIRECT",
            "callbackUrl": self.callback_url,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        encoded = encode_payload(payload)
        response = self.http.post(
            PAY_PATH,
            json={"request": encoded},
            headers={"X-VERIFY": self.pay_checksum(encoded)},
        )
        data = response_json(response)
        if not data.get("success"):
            message = data.get("message") or "Payment initiation failed"
            logger.error("PhonePe pay request failed: code=%s message=%s", data.get("code"), message)
            raise GatewayUnavailable(f"PhonePe error: {message}", details={"code": data.get("code")})

        redirect = (((data.get("data") or {}).get("instrumentResponse") or {}).get("redirectInfo") or {}).get("url")
        if not redirect:
            raise GatewayUnavailable("No redirect URL received from PhonePe")

        logger.info("PhonePe transaction created: %s", transaction_ref)
        return PaymentSession(
            gateway=self.name,
            transaction_ref=transaction_ref,
            amount_cents=amount_cents,
            currency=self.currency,
            redirect_url=redirect,
        )

    def verify(self, transaction_ref: str, payload: dict) -> GatewayVerification:
        """
        Verify a callback body, or poll the status API when no body is given.
        """
        if payload.get("response"):
            return self._verify_callback(transaction_ref, payload)
        return self.check_status(transaction_ref)

    def _verify_callback(self, transaction_ref: str, payload: dict) -> GatewayVerification:
        encoded = str(payload["response"])
        received = str(payload.get("x_verify") or "")
        if not hmac.compare_digest(self.callback_checksum(encoded), received):
            raise SignatureInvalid("Callback checksum mismatch")

        try:
            body = json.loads(base64.b64decode(encoded))
        except (ValueError, TypeError) as exc:
            raise SignatureInvalid("Callback body is not valid base64 JSON") from exc

        verification = self._interpret(body)
        if verification.transaction_ref != transaction_ref:
            raise SignatureInvalid("Callback does not belong to this transaction")
        return verification

    def check_status(self, transaction_ref: str) -> GatewayVerification:
        path = f"/pg/v1/status/{self.merchant_id}/{transaction_ref}"
        response = self.http.get(
            path,
            headers={"X-VERIFY": self.status_checksum(transaction_ref), "X-MERCHANT-ID": self.merchant_id},
        )
        body = response_json(response)
        if not body.get("code"):
            raise GatewayUnavailable("Unreadable status response from PhonePe", details={"status": response.status_code})
        verification = self._interpret(body, default_ref=transaction_ref)
        if verification.transaction_ref != transaction_ref:
            raise SignatureInvalid("Status response does not belong to this transaction")
        return verification

    def _interpret(self, body: dict, default_ref: Optional[str] = None) -> GatewayVerification:
        data = body.get("data") or {}
        code = body.get("code") or ""
        ref = data.get("merchantTransactionId") or default_ref or ""
        amount = data.get("amount")

        if code in SUCCESS_CODES and body.get("success"):
            outcome = VerificationOutcome.CAPTURED
        elif code in PENDING_CODES:
            outcome = VerificationOutcome.PROCESSING
        else:
            outcome = VerificationOutcome.DECLINED

        return GatewayVerification(
            transaction_ref=ref,
            outcome=outcome,
            payment_id=data.get("transactionId"),
            amount_cents=int(amount) if amount is not None else None,
            message=body.get("message") or code,
        )

    def refund(
        self,
        *,
        transaction_ref: str,
        payment_id: Optional[str],
        amount_cents: int,
        idempotency_key: str,
    ) -> RefundResult:
        if not transaction_ref:
            raise RefundFailed("Original transaction ID not found for refund")

        payload = {
            "merchantId": self.merchant_id,
            "merchantUserId": "ADMIN",
            "originalTransactionId": transaction_ref,
            "merchantTransactionId": idempotency_key,
            "amount": amount_cents,
            "callbackUrl": self.callback_url,
        }
        encoded = encode_payload(payload)
        try:
            response = self.http.post(
                REFUND_PATH,
                json={"request": encoded},
                headers={"X-VERIFY": self.refund_checksum(encoded)},
            )
        except GatewayUnavailable as exc:
            raise RefundFailed(f"Refund processing failed: {exc.message}") from exc

        body = response_json(response)
        if not body.get("success"):
            message = body.get("message") or "Refund failed"
            raise RefundFailed(f"Refund processing failed: {message}", details={"code": body.get("code")})

        data = body.get("data") or {}
        return RefundResult(
            refund_id=data.get("merchantTransactionId") or idempotency_key,
            amount_cents=int(data.get("amount", amount_cents)),
            raw=body,
        )


def callback_transaction_ref(base64_response: str) -> Optional[str]:
    """
    Read the merchant transaction id out of an unverified callback body.

    Only used to find the intent; the checksum is verified afterwards.
    """
    try:
        body = json.loads(base64.b64decode(base64_response))
    except (ValueError, TypeError):
        return None
    if not isinstance(body, dict):
        return None
    return (body.get("data") or {}).get("merchantTransactionId")
