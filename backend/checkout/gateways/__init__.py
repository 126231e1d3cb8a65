from .base import (
    GatewayHttpClient,
    GatewayVerification,
    PaymentGateway,
    PaymentSession,
    RefundResult,
    VerificationOutcome,
)
from .phonepe import PhonePeGateway
from .razorpay import RazorpayGateway

__all__ = [
    'GatewayHttpClient', 'GatewayVerification', 'PaymentGateway', 'PaymentSession',
    'RefundResult', 'VerificationOutcome',
    'PhonePeGateway', 'RazorpayGateway',
]
