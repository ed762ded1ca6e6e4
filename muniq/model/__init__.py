from .orm import (
    Base, Registration, Payment, PAYMENT_STATUSES, PAYMENT_METHODS
)
from .store import Store

__all__ = [
    "Base", "Registration", "Payment", "PAYMENT_STATUSES",
    "PAYMENT_METHODS", "Store",
]
