# edusphere/payments/fraud.py
"""
Velocity and amount screening for payment attempts, plus anti money
laundering (AML) rules for wallet top-ups.

Every assessment leaves a FraudEvent behind. When a provider and method are
known an attempt row is written too, FAILED if the assessment blocks.

Top-up rules read the completed top-up rows of the `transactions` ledger:

- aml_single_topup_limit: one top-up at or above the single limit
- aml_daily_topup_limit: the last 24h of top-ups plus this one exceed the daily limit
- aml_topup_velocity: too many top-ups inside the burst window
- aml_structuring_pattern: repeated top-ups just under the reporting threshold
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from .base import PaymentProvider, AttemptStatus, RiskAction, Severity
from .ledger import PaymentAttemptLedger
from .models import FraudEvent, PaymentAttempt
from ..config import FraudConfig
from ..wallet.models import LedgerTransaction
from ..logging_config import get_logger, log_business_event

logger = get_logger(__name__)

VELOCITY_SCORE = 70
RAPID_FAILURE_SCORE = 50
HIGH_AMOUNT_SCORE = 40
AML_SINGLE_TOPUP_SCORE = 60
AML_DAILY_TOPUP_SCORE = 70
AML_TOPUP_VELOCITY_SCORE = 45
AML_STRUCTURING_SCORE = 50

BLOCK_THRESHOLD = 70
REVIEW_THRESHOLD = 40

BLOCKED_REASON = "Blocked by fraud rules"

TOPUP_FLOW = "topup"
CENTS = Decimal("0.01")


@dataclass
class PaymentContext:
    amount: Decimal = Decimal("0")
    provider: Optional[PaymentProvider] = None
    method: Optional[str] = None
    currency: Optional[str] = None
    provider_order_id: Optional[str] = None
    flow: Optional[str] = None

    @property
    def is_topup(self) -> bool:
        return (
            TOPUP_FLOW in (self.method or "").lower()
            or (self.flow or "").lower() == TOPUP_FLOW
        )


@dataclass
class TopUpMetrics:
    """Completed top-ups of one user, read before the incoming one is credited"""
    recent_count: int = 0
    sub_threshold_count: int = 0
    sub_threshold_total: Decimal = Decimal("0")
    daily_total: Decimal = Decimal("0")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "recent_topup_count": self.recent_count,
            "recent_sub_threshold_count": self.sub_threshold_count,
            "recent_sub_threshold_total": str(self.sub_threshold_total),
            "daily_topup_total": str(self.daily_total),
        }


@dataclass
class RiskAssessment:
    action: RiskAction
    risk_score: int
    flags: List[str] = field(default_factory=list)
    ip_address: str = ""
    attempt: Optional[PaymentAttempt] = None
    topup: Optional[TopUpMetrics] = None

    @property
    def severity(self) -> Severity:
        if self.action == RiskAction.BLOCK:
            return Severity.HIGH
        if self.action == RiskAction.REVIEW:
            return Severity.MEDIUM
        return Severity.LOW

    @property
    def rule_code(self) -> str:
        return self.flags[0] if self.flags else "ok"

    @property
    def blocked(self) -> bool:
        return self.action == RiskAction.BLOCK


def client_ip(forwarded_for: Optional[str], peer: Optional[str]) -> str:
    """X-Forwarded-For wins over the socket peer, capped to fit the column"""
    return str(forwarded_for or peer or "")[:45]


class FraudAssessor:
    def __init__(self, config: FraudConfig):
        self.config = config

    def score(
        self,
        attempts: int,
        failures: int,
        amount: Decimal,
        topup: Optional[TopUpMetrics] = None,
    ) -> RiskAssessment:
        """Pure scoring step, no I/O. Top-up rules run only when `topup` is given."""
        config = self.config
        flags = []
        risk_score = 0

        if attempts >= config.max_attempts:
            flags.append("velocity")
            risk_score += VELOCITY_SCORE

        if failures >= config.max_failed:
            flags.append("rapid_failures")
            risk_score += RAPID_FAILURE_SCORE

        if config.max_amount > 0 and amount >= config.max_amount:
            flags.append("high_amount")
            risk_score += HIGH_AMOUNT_SCORE

        if topup is not None:
            if config.aml_single_topup_limit > 0 and amount >= config.aml_single_topup_limit:
                flags.append("aml_single_topup_limit")
                risk_score += AML_SINGLE_TOPUP_SCORE

            if config.aml_daily_topup_limit > 0 and topup.daily_total + amount > config.aml_daily_topup_limit:
                flags.append("aml_daily_topup_limit")
                risk_score += AML_DAILY_TOPUP_SCORE

            if config.aml_topup_burst_count > 0 and topup.recent_count >= config.aml_topup_burst_count:
                flags.append("aml_topup_velocity")
                risk_score += AML_TOPUP_VELOCITY_SCORE

            if (
                config.aml_structuring_count > 0
                and 0 < amount < config.aml_structuring_threshold
                and topup.sub_threshold_count + 1 >= config.aml_structuring_count
            ):
                flags.append("aml_structuring_pattern")
                risk_score += AML_STRUCTURING_SCORE

        aml_block = config.aml_block_on_suspicious and any(f.startswith("aml_") for f in flags)

        if aml_block or (risk_score >= BLOCK_THRESHOLD and config.block_enabled):
            action = RiskAction.BLOCK
        elif risk_score >= REVIEW_THRESHOLD:
            action = RiskAction.REVIEW
        else:
            action = RiskAction.ALLOW

        return RiskAssessment(action=action, risk_score=risk_score, flags=flags, topup=topup)

    async def topup_metrics(self, db: AsyncSession, user_id: Optional[str]) -> TopUpMetrics:
        """Burst count, 24h total and sub-threshold count of the user's completed top-ups"""
        if not user_id:
            return TopUpMetrics()

        now = datetime.now(timezone.utc)
        topups = (
            LedgerTransaction.user_id == user_id,
            LedgerTransaction.status == "completed",
            func.lower(LedgerTransaction.type).like(f"%{TOPUP_FLOW}%"),
        )

        recent = await db.execute(
            select(func.count(LedgerTransaction.id)).where(
                *topups,
                LedgerTransaction.created_at >= now - timedelta(minutes=self.config.aml_topup_burst_window_minutes),
            )
        )
        daily = await db.execute(
            select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
                *topups,
                LedgerTransaction.created_at >= now - timedelta(days=1),
            )
        )
        structuring = await db.execute(
            select(
                func.count(LedgerTransaction.id),
                func.coalesce(func.sum(LedgerTransaction.amount), 0),
            ).where(
                *topups,
                LedgerTransaction.amount > 0,
                LedgerTransaction.amount < self.config.aml_structuring_threshold,
                LedgerTransaction.created_at >= now - timedelta(minutes=self.config.aml_structuring_window_minutes),
            )
        )
        sub_count, sub_total = structuring.one()

        return TopUpMetrics(
            recent_count=int(recent.scalar_one() or 0),
            sub_threshold_count=int(sub_count or 0),
            sub_threshold_total=Decimal(str(sub_total or 0)).quantize(CENTS),
            daily_total=Decimal(str(daily.scalar_one() or 0)).quantize(CENTS),
        )

    async def assess(
        self,
        db: AsyncSession,
        user_id: Optional[str],
        ip_address: str,
        context: PaymentContext,
    ) -> RiskAssessment:
        """
        Score an attempt against the trailing window and record the outcome.

        Flushes but does not commit; the caller commits before contacting
        any provider so blocked attempts are counted by later assessments.
        """
        ip_address = (ip_address or "")[:45]
        amount = Decimal(context.amount or 0)

        attempts = await PaymentAttemptLedger.count_recent_attempts(
            db, user_id, ip_address, self.config.window_minutes
        )
        failures = await PaymentAttemptLedger.count_recent_failures(
            db, user_id, ip_address, self.config.window_minutes
        )

        topup = await self.topup_metrics(db, user_id) if context.is_topup else None

        assessment = self.score(attempts, failures, amount, topup=topup)
        assessment.ip_address = ip_address

        if context.provider and context.method:
            assessment.attempt = await PaymentAttemptLedger.record_attempt(
                db,
                user_id=user_id,
                provider=context.provider,
                method=context.method,
                amount=amount,
                currency=context.currency,
                ip_address=ip_address,
                provider_order_id=context.provider_order_id,
                status=AttemptStatus.FAILED if assessment.blocked else AttemptStatus.INITIATED,
                failure_reason=BLOCKED_REASON if assessment.blocked else None,
            )

        db.add(FraudEvent(
            user_id=user_id,
            payment_id=assessment.attempt.id if assessment.attempt else None,
            rule_code=assessment.rule_code,
            severity=assessment.severity,
            details={
                "action": assessment.action.value,
                "risk_score": assessment.risk_score,
                "flags": assessment.flags,
                "ip_address": ip_address,
                "amount": str(amount),
                "aml": topup.as_dict() if topup else None,
            },
        ))
        await db.flush()

        log_business_event(
            "fraud_assessed",
            user_id=user_id,
            action=assessment.action.value,
            risk_score=assessment.risk_score,
            flags=assessment.flags,
            recent_attempts=attempts,
            recent_failures=failures,
            flow=TOPUP_FLOW if topup else None,
        )

        if assessment.action != RiskAction.ALLOW:
            logger.warning(
                f"Payment attempt flagged: {assessment.action.value}",
                extra={
                    "user_id": user_id,
                    "extra_data": {
                        "risk_score": assessment.risk_score,
                        "flags": assessment.flags,
                        "ip_address": ip_address
                    }
                }
            )

        return assessment

    # ========================================================================
    # ADMIN REPORTING
    # ========================================================================

    @staticmethod
    async def summary(db: AsyncSession, hours: int = 24) -> Dict[str, Any]:
        """Event counts by severity over the last `hours` (clamped to 1..720)"""
        hours = max(1, min(int(hours), 720))
        since = datetime.now(timezone.utc) - timedelta(hours=hours)

        result = await db.execute(
            select(FraudEvent.severity, func.count(FraudEvent.id))
            .where(FraudEvent.created_at >= since)
            .group_by(FraudEvent.severity)
        )
        counts = {severity.value: 0 for severity in Severity}
        for severity, count in result.all():
            counts[severity.value] = int(count)

        return {
            "hours": hours,
            "total": sum(counts.values()),
            **counts,
        }

    @staticmethod
    async def recent(db: AsyncSession, limit: int = 30) -> List[FraudEvent]:
        """Newest events first (limit clamped to 1..200)"""
        limit = max(1, min(int(limit), 200))
        result = await db.execute(
            select(FraudEvent)
            .order_by(FraudEvent.created_at.desc(), FraudEvent.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
