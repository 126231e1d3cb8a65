# Overview: Payment gateway interface, result types, and the shared HTTP client wrapper.

"""
Payment gateways

Two tenders are supported:
- hosted checkout (Razorpay): the browser returns a signature synchronously
- redirect (PhonePe): the gateway calls back or is polled for the outcome

Every network call is blocking. Transport errors, timeouts and 5xx
responses surface as GatewayUnavailable so callers can retry.
"""

from __future__ import annotations

import abc
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from ..errors import GatewayUnavailable

logger = logging.getLogger(__name__)


class VerificationOutcome(str, enum.Enum):
    CAPTURED = "CAPTURED"
    DECLINED = "DECLINED"
    PROCESSING = "PROCESSING"


@dataclass(frozen=True)
class PaymentSession:
    """Handle returned to the client so it can pay."""
    gateway: str
    transaction_ref: str
    amount_cents: int
    currency: str
    redirect_url: Optional[str] = None
    key_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "gateway": self.gateway,
            "transaction_ref": self.transaction_ref,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
        }
        if self.redirect_url:
            data["redirect_url"] = self.redirect_url
        if self.key_id:
            data["key_id"] = self.key_id
        return data


@dataclass(frozen=True)
class GatewayVerification:
    """Authentic gateway answer about one transaction reference."""
    transaction_ref: str
    outcome: VerificationOutcome
    payment_id: Optional[str] = None
    # Amount the gateway says it captured; None when the gateway fixes it remotely
    amount_cents: Optional[int] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount_cents: int
    raw: dict = field(default_factory=dict)


class PaymentGateway(abc.ABC):
    """Interface every tender implements."""

    name: str = ""

    @abc.abstractmethod
    def create_session(self, *, amount_cents: int, buyer_id: str) -> PaymentSession:
        ...

    @abc.abstractmethod
    def verify(self, transaction_ref: str, payload: dict) -> GatewayVerification:
        """Raise SignatureInvalid when the payload is not authentic."""

    @abc.abstractmethod
    def refund(
        self,
        *,
        transaction_ref: str,
        payment_id: Optional[str],
        amount_cents: int,
        idempotency_key: str,
    ) -> RefundResult:
        ...


class GatewayHttpClient:
    """
    httpx client wrapper with JSON helpers.

    Converts transport failures and 5xx responses into GatewayUnavailable.
    4xx responses are returned to the caller to interpret.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        auth: Any = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=timeout, auth=auth, transport=transport)

    def _headers(self, extra: Optional[dict] = None) -> dict:
        headers = {"Content-Type": "application/json", "accept": "application/json"}
        if extra:
            headers.update(extra)
        return headers

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Gateway %s %s failed: %s", method, path, exc)
            raise GatewayUnavailable(
                "Payment gateway is unreachable",
                details={"path": path, "reason": type(exc).__name__},
            ) from exc
        if response.status_code >= 500:
            logger.warning("Gateway %s %s answered %s", method, path, response.status_code)
            raise GatewayUnavailable(
                "Payment gateway is temporarily unavailable",
                details={"path": path, "status": response.status_code},
            )
        return response

    def get(self, path: str, headers: Optional[dict] = None) -> httpx.Response:
        return self._send("GET", path, headers=self._headers(headers))

    def post(self, path: str, json: Optional[dict] = None, headers: Optional[dict] = None) -> httpx.Response:
        return self._send("POST", path, headers=self._headers(headers), json=json)

    def close(self) -> None:
        self.client.close()


def response_json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
