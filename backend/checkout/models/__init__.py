from .catalog import Subcategory, Product, ProductVariant, QuantityPriceRule
from .coupons import Coupon
from .orders import Order, OrderItem, TrackingEvent
from .payments import PaymentIntent
from .security import SecurityEvent
from .notifications import NotificationJob

__all__ = [
    'Subcategory', 'Product', 'ProductVariant', 'QuantityPriceRule',
    'Coupon',
    'Order', 'OrderItem', 'TrackingEvent',
    'PaymentIntent',
    'SecurityEvent',
    'NotificationJob',
]
