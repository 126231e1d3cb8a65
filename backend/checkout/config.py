from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file next to the instance folder by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///checkout.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    CURRENCY = os.environ.get("CURRENCY", "INR")

    # Shipping is a policy knob, not business law. Free shipping today.
    SHIPPING_COST_CENTS = _env_int("SHIPPING_COST_CENTS", 0)

    # Pending intents older than this are swept to EXPIRED
    INTENT_TTL_HOURS = _env_int("INTENT_TTL_HOURS", 24)

    # Hosted checkout gateway (Razorpay)
    RAZORPAY_KEY_ID = os.environ.get("RAZORPAY_KEY_ID", "")
    RAZORPAY_KEY_SECRET = os.environ.get("RAZORPAY_KEY_SECRET", "")
    RAZORPAY_BASE_URL = os.environ.get("RAZORPAY_BASE_URL", "https://api.razorpay.com")

    # Redirect gateway (PhonePe)
    PHONEPE_MERCHANT_ID = os.environ.get("PHONEPE_MERCHANT_ID", "")
    PHONEPE_SALT_KEY = os.environ.get("PHONEPE_SALT_KEY", "")
    PHONEPE_SALT_INDEX = os.environ.get("PHONEPE_SALT_INDEX", "1")
    PHONEPE_BASE_URL = os.environ.get(
        "PHONEPE_BASE_URL",
        "https://api-preprod.phonepe.com/apis/pg-sandbox",
    )
    PHONEPE_REDIRECT_URL = os.environ.get("PHONEPE_REDIRECT_URL", "http://localhost:5173/payment-success")
    PHONEPE_CALLBACK_URL = os.environ.get("PHONEPE_CALLBACK_URL", "http://localhost:5000/api/payments/phonepe/callback")

    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "30"))

    # Admin endpoints (order status, refunds, rule maintenance)
    ADMIN_API_TOKEN = os.environ.get("ADMIN_API_TOKEN", "")

    NOTIFICATION_MAX_ATTEMPTS = _env_int("NOTIFICATION_MAX_ATTEMPTS", 5)
    SECURITY_EVENT_RETENTION_DAYS = _env_int("SECURITY_EVENT_RETENTION_DAYS", 90)
