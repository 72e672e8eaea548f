"""
Order core services.

Each service takes an ``OrderStore`` and runs every operation in its own
store transaction.
"""

from ordercore.services.cart import CartLine, CartService, CartView
from ordercore.services.inventory import InventoryService
from ordercore.services.orders import CheckoutResult, OrderService, PaymentIntentResult
from ordercore.services.refunds import RefundService

__all__ = [
    "CartLine",
    "CartService",
    "CartView",
    "CheckoutResult",
    "InventoryService",
    "OrderService",
    "PaymentIntentResult",
    "RefundService",
]
