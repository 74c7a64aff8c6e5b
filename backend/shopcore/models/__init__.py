from .tenancy import Tenant, TenantPaymentConfig
from .catalog import Product
from .cart import CartItem
from .coupons import Coupon, CouponRedemption
from .orders import Order, OrderItem, Payment, WebhookEvent
from .inventory import StockMovement, InventoryAlert
from .audit import AuditEvent
from .documents import DocumentSequence

__all__ = [
    'Tenant', 'TenantPaymentConfig',
    'Product',
    'CartItem',
    'Coupon', 'CouponRedemption',
    'Order', 'OrderItem', 'Payment', 'WebhookEvent',
    'StockMovement', 'InventoryAlert',
    'AuditEvent',
    'DocumentSequence',
]
