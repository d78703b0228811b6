import enum

from sqlalchemy import Column, String, TIMESTAMP, Enum as SQLEnum
from sqlalchemy.sql import func
from ..database import Base


class UserRole(str, enum.Enum):
    STUDENT = "student"
    LECTURER = "lecturer"
    ADMIN = "admin"


class SubscriptionTier(str, enum.Enum):
    FREE = "free"
    PRO = "pro"


class User(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    role = Column(SQLEnum(UserRole, name="user_role"), default=UserRole.STUDENT, nullable=False)
    subscription_tier = Column(
        SQLEnum(SubscriptionTier, name="subscription_tier"),
        default=SubscriptionTier.FREE,
        nullable=False
    )
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<User {self.user_id} - {self.role}>"
