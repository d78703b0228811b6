import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from edusphere.config import CurrencyConfig, FraudConfig
from edusphere.database import Base
from edusphere.cart.models import Cart, CartItem
from edusphere.courses.models import Course, Enrollment, SubscriptionModel
from edusphere.payments.base import IntentStatus, PaymentMethod
from edusphere.payments.currency import CurrencyConverter
from edusphere.payments.fraud import FraudAssessor
from edusphere.payments.models import PaymentIntent
from edusphere.users.models import User, UserRole, SubscriptionTier
from edusphere.wallet.models import Wallet


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def converter():
    return CurrencyConverter(CurrencyConfig(
        default_currency="USD",
        supported=("USD", "SGD", "EUR"),
        rates={"USD": {"SGD": Decimal("1.35")}},
    ))


@pytest.fixture
def fraud_config():
    return FraudConfig(max_attempts=5, max_failed=3, window_minutes=10)


@pytest.fixture
def fraud_assessor(fraud_config):
    return FraudAssessor(fraud_config)


class Seeder:
    """Writes fixture rows and commits them"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def user(self, user_id="student_1", role=UserRole.STUDENT, tier=SubscriptionTier.FREE):
        user = User(
            user_id=user_id,
            email=f"{user_id}@example.com",
            role=role,
            subscription_tier=tier,
        )
        self.db.add(user)
        await self.db.commit()
        return user

    async def course(self, price="50.00", stock_qty=None, model=SubscriptionModel.FREE, title="Course"):
        course = Course(
            title=title,
            price=Decimal(price),
            stock_qty=stock_qty,
            subscription_model=model,
            is_active=True,
        )
        self.db.add(course)
        await self.db.commit()
        return course

    async def wallet(self, user_id, balance):
        wallet = Wallet(user_id=user_id, balance=Decimal(balance))
        self.db.add(wallet)
        await self.db.commit()
        return wallet

    async def cart(self, user_id, *courses):
        result = await self.db.execute(select(Cart).where(Cart.user_id == user_id))
        cart = result.scalar_one_or_none()
        if cart is None:
            cart = Cart(user_id=user_id)
            self.db.add(cart)
            await self.db.flush()
        for course in courses:
            self.db.add(CartItem(cart_id=cart.id, course_id=course.id, quantity=1))
        await self.db.commit()
        return cart

    async def enroll(self, user_id, course):
        enrollment = Enrollment(course_id=course.id, student_id=user_id, progress=0)
        self.db.add(enrollment)
        await self.db.commit()
        return enrollment

    async def intent(
        self,
        user_id,
        amount,
        method=PaymentMethod.PAYPAL,
        currency="USD",
        status=IntentStatus.CONFIRMED,
        confirmed_minutes_ago=1,
        provider_ref=None,
    ):
        now = datetime.now(timezone.utc)
        intent = PaymentIntent(
            id=uuid.uuid4(),
            user_id=user_id,
            method=method.value,
            provider=method.provider,
            provider_ref=provider_ref or f"ref_{uuid.uuid4().hex[:12]}",
            provider_txn_id="txn_123",
            amount=Decimal(amount),
            currency=currency,
            status=status,
            confirmed_at=(
                now - timedelta(minutes=confirmed_minutes_ago)
                if status in (IntentStatus.CONFIRMED, IntentStatus.CONSUMED) else None
            ),
        )
        self.db.add(intent)
        await self.db.commit()
        return intent


@pytest.fixture
def seed(db):
    return Seeder(db)
