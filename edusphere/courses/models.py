import enum

from sqlalchemy import (
    Column, String, Integer, Numeric, Boolean, ForeignKey, TIMESTAMP,
    UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.sql import func
from ..database import Base


class SubscriptionModel(str, enum.Enum):
    FREE = "free"
    PRO = "pro"


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)

    # NULL or <= 0 means unlimited seats
    stock_qty = Column(Integer, nullable=True)

    subscription_model = Column(
        SQLEnum(SubscriptionModel, name="course_subscription_model"),
        default=SubscriptionModel.FREE,
        nullable=False
    )
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    @property
    def has_limited_stock(self) -> bool:
        return self.stock_qty is not None and self.stock_qty > 0

    def __repr__(self):
        return f"<Course {self.id} - {self.title}>"


class Enrollment(Base):
    """A student's entitlement to a course"""
    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("course_id", "student_id", name="uq_enrollments_course_student"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    progress = Column(Integer, default=0, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
