# edusphere/payments/__init__.py
from .base import PaymentProvider, PaymentMethod, IntentStatus, AttemptStatus
from .factory import PaymentProviderFactory
from .service import PaymentService
from .models import PaymentAttempt, PaymentIntent, FraudEvent

__all__ = [
    "PaymentProvider",
    "PaymentMethod",
    "IntentStatus",
    "AttemptStatus",
    "PaymentProviderFactory",
    "PaymentService",
    "PaymentAttempt",
    "PaymentIntent",
    "FraudEvent"
]
