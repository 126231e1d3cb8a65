# Overview: Frozen request schemas parsed from JSON payloads before business logic runs.

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

from .errors import NoItems, ValidationError
from .statuses import OrderStatus, TenderTier
from .time_utils import parse_iso_datetime


def _require_int(value, field: str, *, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value)
        else:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be at least {minimum}", details={"field": field})
    return value


def _optional_str(data: dict, field: str) -> Optional[str]:
    value = data.get(field)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    variant_id: Optional[int] = None

    @classmethod
    def from_payload(cls, data: dict) -> "CartLine":
        if not isinstance(data, dict):
            raise ValidationError("Each item must be an object")
        variant = data.get("variant_id", data.get("product_variant_id"))
        return cls(
            product_id=_require_int(data.get("product_id"), "product_id", minimum=1),
            quantity=_require_int(data.get("quantity"), "quantity", minimum=1),
            variant_id=_require_int(variant, "variant_id", minimum=1) if variant is not None else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


def parse_lines(items) -> tuple[CartLine, ...]:
    if not items:
        raise NoItems("No items in order")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")
    return tuple(CartLine.from_payload(item) for item in items)


@dataclass(frozen=True)
class BuyerInfo:
    """Shipping contact captured at checkout."""
    name: str
    email: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str
    preferred_courier: Optional[str] = None
    courier_instructions: Optional[str] = None

    REQUIRED = ("name", "email", "phone", "address", "city", "state", "pincode")

    @classmethod
    def from_payload(cls, data: dict) -> "BuyerInfo":
        data = data or {}
        missing = [f for f in cls.REQUIRED if not _optional_str(data, f)]
        if missing:
            raise ValidationError("Missing shipping details", details={"missing": missing})
        if "@" not in data["email"]:
            raise ValidationError("Invalid email address", details={"field": "email"})
        return cls(
            **{f: _optional_str(data, f) for f in cls.REQUIRED},
            preferred_courier=_optional_str(data, "preferred_courier"),
            courier_instructions=_optional_str(data, "courier_instructions"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CheckoutRequest:
    lines: tuple[CartLine, ...]
    buyer: BuyerInfo
    coupon_code: Optional[str] = None
    gateway: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Optional[dict], *, require_gateway: bool = True) -> "CheckoutRequest":
        data = data or {}
        gateway = _optional_str(data, "gateway")
        if require_gateway and not gateway:
            raise ValidationError("gateway is required", details={"field": "gateway"})
        return cls(
            lines=parse_lines(data.get("items")),
            buyer=BuyerInfo.from_payload(data.get("shipping") or data),
            coupon_code=_optional_str(data, "coupon_code"),
            gateway=gateway.lower() if gateway else None,
        )


@dataclass(frozen=True)
class TotalsRequest:
    lines: tuple[CartLine, ...]
    coupon_code: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Optional[dict]) -> "TotalsRequest":
        data = data or {}
        return cls(lines=parse_lines(data.get("items")), coupon_code=_optional_str(data, "coupon_code"))


@dataclass(frozen=True)
class StatusUpdate:
    status: OrderStatus
    admin_notes: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Optional[dict]) -> "StatusUpdate":
        data = data or {}
        raw = _optional_str(data, "status")
        try:
            status = OrderStatus((raw or "").upper())
        except ValueError:
            raise ValidationError("Invalid status", details={"status": raw})
        return cls(status=status, admin_notes=_optional_str(data, "admin_notes"))


@dataclass(frozen=True)
class TrackingUpdate:
    tracking_number: str
    carrier: str
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[object] = None

    @classmethod
    def from_payload(cls, data: Optional[dict]) -> "TrackingUpdate":
        data = data or {}
        number = _optional_str(data, "tracking_number")
        carrier = _optional_str(data, "carrier")
        if not number or not carrier:
            raise ValidationError("tracking_number and carrier are required")
        try:
            eta = parse_iso_datetime(data.get("estimated_delivery"))
        except ValueError:
            raise ValidationError("estimated_delivery must be an ISO-8601 datetime")
        return cls(
            tracking_number=number,
            carrier=carrier,
            tracking_url=_optional_str(data, "tracking_url"),
            estimated_delivery=eta,
        )


@dataclass(frozen=True)
class RefundRequest:
    reason: str
    amount_cents: Optional[int] = None
    admin_notes: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Optional[dict]) -> "RefundRequest":
        data = data or {}
        reason = _optional_str(data, "reason")
        if not reason:
            raise ValidationError("reason is required", details={"field": "reason"})
        amount = data.get("amount_cents")
        return cls(
            reason=reason,
            amount_cents=_require_int(amount, "amount_cents", minimum=1) if amount is not None else None,
            admin_notes=_optional_str(data, "admin_notes"),
        )


@dataclass(frozen=True)
class QuantityRuleInput:
    subcategory_id: int
    threshold_quantity: int
    kind: str
    value: int
    is_active: bool = True

    @classmethod
    def from_payload(cls, data: Optional[dict], *, subcategory_id: Optional[int] = None) -> "QuantityRuleInput":
        data = data or {}
        kind = (_optional_str(data, "kind") or "").upper()
        return cls(
            subcategory_id=subcategory_id or _require_int(data.get("subcategory_id"), "subcategory_id", minimum=1),
            threshold_quantity=_require_int(data.get("threshold_quantity"), "threshold_quantity"),
            kind=kind,
            value=_require_int(data.get("value"), "value"),
            is_active=bool(data.get("is_active", True)),
        )


def parse_tier(raw: Optional[str]) -> TenderTier:
    if not raw:
        return TenderTier.RETAIL
    try:
        return TenderTier(raw.strip().upper())
    except ValueError:
        raise ValidationError("Unknown tender tier", details={"tier": raw})
