from .base import (
    PaymentAdapter,
    PaymentIntent,
    PaymentStatus,
    RefundResult,
    STATE_PENDING,
    STATE_COMPLETED,
    STATE_FAILED,
)
from .registry import get_adapter, available_methods

__all__ = [
    'PaymentAdapter', 'PaymentIntent', 'PaymentStatus', 'RefundResult',
    'STATE_PENDING', 'STATE_COMPLETED', 'STATE_FAILED',
    'get_adapter', 'available_methods',
]
