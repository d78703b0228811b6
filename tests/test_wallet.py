from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from edusphere.config import FraudConfig
from edusphere.error_handlers import PaymentBlockedException, ValidationException
from edusphere.payments.base import RiskAction, Severity
from edusphere.payments.fraud import FraudAssessor
from edusphere.payments.models import FraudEvent, PaymentAttempt
from edusphere.wallet.models import LedgerTransaction
from edusphere.wallet.service import TOPUP_METHOD, WalletService

USER = "student_1"
IP = "203.0.113.20"


@pytest_asyncio.fixture
async def student(seed):
    await seed.user(USER)


async def add_ledger_row(db, amount, minutes_ago, type=TOPUP_METHOD, status="completed"):
    db.add(LedgerTransaction(
        user_id=USER,
        type=type,
        amount=Decimal(amount),
        status=status,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    ))
    await db.commit()


async def topup_rows(db):
    result = await db.execute(
        select(LedgerTransaction)
        .where(LedgerTransaction.type == TOPUP_METHOD)
        .order_by(LedgerTransaction.id)
    )
    return result.scalars().all()


async def latest_event(db):
    result = await db.execute(select(FraudEvent).order_by(FraudEvent.id.desc()).limit(1))
    return result.scalar_one()


async def test_top_up_credits_wallet_and_appends_ledger_row(db, seed, student, fraud_assessor):
    await seed.wallet(USER, "10.00")

    balance = await WalletService.top_up(db, USER, Decimal("25.50"), IP, fraud_assessor, currency="USD")

    assert balance == Decimal("35.50")
    assert await WalletService.get_balance(db, USER) == Decimal("35.50")

    [row] = await topup_rows(db)
    assert row.amount == Decimal("25.50")
    assert row.status == "completed"

    event = await latest_event(db)
    assert event.rule_code == "ok"
    assert event.details["aml"]["recent_topup_count"] == 0
    assert event.details["aml"]["daily_topup_total"] == "0.00"

    # Top-ups are screened but never write a payment attempt
    attempts = await db.execute(select(PaymentAttempt))
    assert attempts.scalars().all() == []


async def test_top_up_creates_missing_wallet(db, student, fraud_assessor):
    balance = await WalletService.top_up(db, USER, Decimal("5"), IP, fraud_assessor)
    assert balance == Decimal("5.00")


@pytest.mark.parametrize("amount", ["0", "-5.00", "0.001"])
async def test_non_positive_top_up_is_rejected(db, student, fraud_assessor, amount):
    with pytest.raises(ValidationException):
        await WalletService.top_up(db, USER, Decimal(amount), IP, fraud_assessor)

    events = await db.execute(select(FraudEvent))
    assert events.scalars().all() == []


async def test_single_limit_flags_but_credits(db, student, fraud_assessor):
    balance = await WalletService.top_up(db, USER, Decimal("2000.00"), IP, fraud_assessor)

    assert balance == Decimal("2000.00")
    event = await latest_event(db)
    assert event.rule_code == "aml_single_topup_limit"
    assert event.severity == Severity.MEDIUM


async def test_third_small_top_up_is_a_structuring_pattern(db, student, fraud_assessor):
    for _ in range(2):
        await WalletService.top_up(db, USER, Decimal("900.00"), IP, fraud_assessor)
        assert (await latest_event(db)).rule_code == "ok"

    await WalletService.top_up(db, USER, Decimal("900.00"), IP, fraud_assessor)

    event = await latest_event(db)
    assert event.rule_code == "aml_structuring_pattern"
    assert event.details["action"] == RiskAction.REVIEW.value
    assert event.details["aml"]["recent_sub_threshold_count"] == 2
    assert event.details["aml"]["recent_sub_threshold_total"] == "1800.00"
    assert len(await topup_rows(db)) == 3


async def test_daily_limit_blocks_and_leaves_balance(db, seed, student, fraud_assessor):
    await seed.wallet(USER, "1.00")
    await add_ledger_row(db, "4500.00", minutes_ago=120)

    with pytest.raises(PaymentBlockedException) as exc_info:
        await WalletService.top_up(db, USER, Decimal("600.00"), IP, fraud_assessor)

    assert exc_info.value.details["flags"] == ["aml_daily_topup_limit"]
    assert await WalletService.get_balance(db, USER) == Decimal("1.00")
    assert len(await topup_rows(db)) == 1

    # The screening outcome is kept even though the top-up was refused
    event = await latest_event(db)
    assert event.details["action"] == "block"
    assert event.severity == Severity.HIGH


async def test_daily_total_only_counts_the_last_day(db, student, fraud_assessor):
    await add_ledger_row(db, "4800.00", minutes_ago=25 * 60)

    balance = await WalletService.top_up(db, USER, Decimal("600.00"), IP, fraud_assessor)
    assert balance == Decimal("600.00")


async def test_burst_counts_completed_topups_only(db, student, fraud_assessor):
    for minutes_ago in (5, 10, 20, 30):
        await add_ledger_row(db, "1200.00", minutes_ago=minutes_ago)
    await add_ledger_row(db, "1200.00", minutes_ago=1, status="pending")
    await add_ledger_row(db, "1200.00", minutes_ago=1, type="paypal_checkout")

    await WalletService.top_up(db, USER, Decimal("100.00"), IP, fraud_assessor)

    event = await latest_event(db)
    assert event.details["flags"] == ["aml_topup_velocity"]
    assert event.details["aml"]["recent_topup_count"] == 4
    assert event.details["aml"]["daily_topup_total"] == "4800.00"


async def test_suspicious_top_up_blocks_when_configured(db, student):
    strict = FraudAssessor(FraudConfig(aml_block_on_suspicious=True))

    with pytest.raises(PaymentBlockedException) as exc_info:
        await WalletService.top_up(db, USER, Decimal("2000.00"), IP, strict)

    assert exc_info.value.details["risk_score"] == 60
    assert await WalletService.get_balance(db, USER) == Decimal("0.00")
    assert await topup_rows(db) == []
