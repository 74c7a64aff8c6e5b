from .base import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SUCCEEDED,
    CheckoutInput,
    ConnectionCheck,
    HostedCheckout,
    PaymentAdapter,
    WebhookVerification,
)
from .factory import UnknownProvider, adapter_class_for, get_payment_adapter
from .myfatoorah import MyFatoorahAdapter
from .tap import TapAdapter

__all__ = [
    'STATUS_FAILED', 'STATUS_PENDING', 'STATUS_SUCCEEDED',
    'CheckoutInput', 'ConnectionCheck', 'HostedCheckout', 'PaymentAdapter', 'WebhookVerification',
    'UnknownProvider', 'adapter_class_for', 'get_payment_adapter',
    'MyFatoorahAdapter', 'TapAdapter',
]
