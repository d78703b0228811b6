# edusphere/payments/base.py
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, Dict, Any
from enum import Enum
from dataclasses import dataclass, field


class PaymentProvider(str, Enum):
    PAYPAL = "paypal"
    STRIPE = "stripe"
    NETS = "nets"


class PaymentMethod(str, Enum):
    WALLET = "wallet"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    NETS = "nets"

    @property
    def is_external(self) -> bool:
        return self is not PaymentMethod.WALLET

    @property
    def provider(self) -> Optional[PaymentProvider]:
        if self is PaymentMethod.WALLET:
            return None
        return PaymentProvider(self.value)


class AttemptStatus(str, Enum):
    INITIATED = "initiated"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class IntentStatus(str, Enum):
    CREATED = "created"
    CONFIRMED = "confirmed"
    CONSUMED = "consumed"
    FAILED = "failed"


class PaymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"


class RiskAction(str, Enum):
    ALLOW = "allow"
    REVIEW = "review"
    BLOCK = "block"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ProviderError(Exception):
    """Transport, HTTP or payload failure talking to a payment provider"""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


@dataclass
class ProviderIntent:
    """Standardized response for payment creation"""
    provider_ref: str  # PayPal order id, Stripe session id, NETS txn_retrieval_ref
    checkout_url: Optional[str] = None  # For hosted checkouts
    qr_code: Optional[str] = None  # For NETS QR
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderConfirmation:
    """Standardized capture/query result"""
    outcome: PaymentOutcome
    provider_txn_id: Optional[str] = None
    failure_reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class BasePaymentProvider(ABC):
    """Abstract base class for payment providers"""

    name: PaymentProvider

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self._initialize_client()

    @abstractmethod
    def _initialize_client(self):
        """Initialize provider-specific client"""
        pass

    @abstractmethod
    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ProviderIntent:
        """
        Start a payment with the provider

        Args:
            amount: Amount in major currency units (e.g. 12.50)
            currency: ISO currency code
            reference: Our reference for the payment (sent as invoice/txn id)
            metadata: Additional metadata

        Returns:
            ProviderIntent with the provider's reference

        Raises:
            ProviderError: on transport failure or a malformed response
        """
        pass

    @abstractmethod
    async def confirm_or_query(self, provider_ref: str) -> ProviderConfirmation:
        """
        Capture (PayPal) or look up (Stripe, NETS) a payment

        Returns:
            ProviderConfirmation, outcome is pending while the payer
            has not finished

        Raises:
            ProviderError: on transport failure or a malformed response
        """
        pass


def to_minor_units(amount: Decimal) -> int:
    """12.34 -> 1234"""
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


def format_amount(amount: Decimal) -> str:
    """Two-decimal string used in provider payloads"""
    return str(Decimal(amount).quantize(Decimal("0.01")))
