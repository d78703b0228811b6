# edusphere/payments/factory.py
from typing import Dict, Any
from .base import BasePaymentProvider, PaymentProvider
from .providers.paypal_provider import PayPalProvider
from .providers.stripe_provider import StripeProvider
from .providers.nets_provider import NetsQrProvider


class PaymentProviderFactory:
    """Factory for creating payment provider instances"""

    _providers = {
        PaymentProvider.PAYPAL: PayPalProvider,
        PaymentProvider.STRIPE: StripeProvider,
        PaymentProvider.NETS: NetsQrProvider,
    }

    @classmethod
    def create_provider(
        cls,
        provider: PaymentProvider,
        config: Dict[str, Any]
    ) -> BasePaymentProvider:
        """
        Create a payment provider instance

        Args:
            provider: Provider type (paypal/stripe/nets)
            config: Provider-specific configuration

        Returns:
            BasePaymentProvider instance

        Raises:
            ValueError: If provider not supported
        """
        provider_class = cls._providers.get(provider)

        if not provider_class:
            raise ValueError(f"Unsupported payment provider: {provider}")

        return provider_class(config)
