# edusphere/payments/currency.py
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from ..config import CurrencyConfig

CENTS = Decimal("0.01")


class CurrencyConverter:
    """Normalizes currency codes and converts amounts with a static rate table"""

    def __init__(self, config: CurrencyConfig):
        self.config = config

    @property
    def default_currency(self) -> str:
        return self.config.default_currency

    def normalize(self, code: Optional[str]) -> str:
        """Upper-case a code, falling back to the default when empty or unsupported"""
        candidate = (code or "").strip().upper()
        if not candidate:
            return self.config.default_currency
        if self.config.supported and candidate not in self.config.supported:
            return self.config.default_currency
        return candidate

    def rate(self, source: str, target: str) -> Decimal:
        source = self.normalize(source)
        target = self.normalize(target)
        if source == target:
            return Decimal("1")

        rate = self.config.rates.get(source, {}).get(target)
        if rate is None or not rate.is_finite() or rate <= 0:
            return Decimal("1")
        return rate

    def convert(self, amount: Decimal, source: str, target: str) -> Decimal:
        """Convert and round half-up to 2 decimal places"""
        value = Decimal(amount) * self.rate(source, target)
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)
