import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    DATABASE_URL: str
    CLERK_SECRET_KEY: str = ""
    FRONTEND_URL: str | None = None

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # "json" or "text"
    ENABLE_FILE_LOGGING: bool = False
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # Currency
    DEFAULT_CURRENCY: str = "USD"
    SUPPORTED_CURRENCIES: str = "USD,SGD,MYR,EUR,GBP"
    EXCHANGE_RATES: str = "{}"  # JSON: {"USD": {"SGD": 1.35}}

    # Fraud screening
    FRAUD_MAX_ATTEMPTS: int = 5
    FRAUD_MAX_FAILED: int = 3
    FRAUD_WINDOW_MINUTES: int = 10
    FRAUD_MAX_AMOUNT: Decimal = Decimal("0")  # 0 disables the rule
    FRAUD_BLOCK: bool = True

    # Wallet top-up screening (anti money laundering)
    AML_SINGLE_TOPUP_LIMIT: Decimal = Decimal("2000")  # 0 disables the rule
    AML_DAILY_TOPUP_LIMIT: Decimal = Decimal("5000")  # 0 disables the rule
    AML_TOPUP_BURST_WINDOW_MINUTES: int = 60
    AML_TOPUP_BURST_COUNT: int = 4
    AML_STRUCTURING_WINDOW_MINUTES: int = 180
    AML_STRUCTURING_THRESHOLD: Decimal = Decimal("1000")
    AML_STRUCTURING_COUNT: int = 3
    AML_BLOCK_ON_SUSPICIOUS: bool = False

    # Payment orchestration
    PAYMENT_INTENT_TTL_MINUTES: int = 30
    PROVIDER_RETRIES: int = 2
    PROVIDER_RETRY_BASE_DELAY_MS: int = 250
    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    # PayPal Configuration
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_API: str = "https://api-m.sandbox.paypal.com"

    # Stripe Configuration
    STRIPE_SECRET_KEY: str = ""
    STRIPE_SUCCESS_URL: str = "http://localhost:8000/payments/stripe/success?session_id={CHECKOUT_SESSION_ID}"
    STRIPE_CANCEL_URL: str = "http://localhost:8000/payments/stripe/cancel?session_id={CHECKOUT_SESSION_ID}"

    # NETS QR Configuration
    NETS_API_KEY: str = ""
    NETS_PROJECT_ID: str = ""
    NETS_API_URL: str = "https://sandbox.nets.openapipaas.com/api/v1/common/payments/nets-qr"

    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')


@dataclass(frozen=True)
class FraudConfig:
    """Thresholds for velocity/amount screening and wallet top-up (AML) rules"""
    max_attempts: int = 5
    max_failed: int = 3
    window_minutes: int = 10
    max_amount: Decimal = Decimal("0")
    block_enabled: bool = True
    aml_single_topup_limit: Decimal = Decimal("2000")
    aml_daily_topup_limit: Decimal = Decimal("5000")
    aml_topup_burst_window_minutes: int = 60
    aml_topup_burst_count: int = 4
    aml_structuring_window_minutes: int = 180
    aml_structuring_threshold: Decimal = Decimal("1000")
    aml_structuring_count: int = 3
    aml_block_on_suspicious: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "FraudConfig":
        return cls(
            max_attempts=settings.FRAUD_MAX_ATTEMPTS,
            max_failed=settings.FRAUD_MAX_FAILED,
            window_minutes=settings.FRAUD_WINDOW_MINUTES if settings.FRAUD_WINDOW_MINUTES > 0 else 10,
            max_amount=settings.FRAUD_MAX_AMOUNT,
            block_enabled=settings.FRAUD_BLOCK,
            aml_single_topup_limit=settings.AML_SINGLE_TOPUP_LIMIT,
            aml_daily_topup_limit=settings.AML_DAILY_TOPUP_LIMIT,
            aml_topup_burst_window_minutes=max(1, settings.AML_TOPUP_BURST_WINDOW_MINUTES),
            aml_topup_burst_count=settings.AML_TOPUP_BURST_COUNT,
            aml_structuring_window_minutes=max(1, settings.AML_STRUCTURING_WINDOW_MINUTES),
            aml_structuring_threshold=max(Decimal("1"), settings.AML_STRUCTURING_THRESHOLD),
            aml_structuring_count=settings.AML_STRUCTURING_COUNT,
            aml_block_on_suspicious=settings.AML_BLOCK_ON_SUSPICIOUS,
        )


@dataclass(frozen=True)
class CurrencyConfig:
    """Default currency, supported codes and the static rate table"""
    default_currency: str = "USD"
    supported: tuple = ("USD", "SGD", "MYR", "EUR", "GBP")
    rates: Dict[str, Dict[str, Decimal]] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CurrencyConfig":
        supported = tuple(
            code.strip().upper()
            for code in settings.SUPPORTED_CURRENCIES.split(",")
            if code.strip()
        )
        return cls(
            default_currency=settings.DEFAULT_CURRENCY.strip().upper() or "USD",
            supported=supported,
            rates=_parse_rate_table(settings.EXCHANGE_RATES),
        )


def _parse_rate_table(raw: str) -> Dict[str, Dict[str, Decimal]]:
    # A malformed table means "no conversions", same as an empty one
    try:
        parsed = json.loads(raw or "{}")
    except ValueError:
        return {}
    if not isinstance(parsed, dict):
        return {}

    table = {}
    for source, targets in parsed.items():
        if not isinstance(targets, dict):
            continue
        row = {}
        for target, rate in targets.items():
            try:
                row[str(target).upper()] = Decimal(str(rate))
            except ArithmeticError:
                continue
        table[str(source).upper()] = row
    return table


settings = Settings()
