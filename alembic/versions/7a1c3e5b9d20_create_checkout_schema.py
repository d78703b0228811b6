"""create_checkout_schema

Revision ID: 7a1c3e5b9d20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '7a1c3e5b9d20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUM_TYPES = (
    'refund_status',
    'payment_intent_status',
    'risk_action',
    'fraud_severity',
    'payment_attempt_status',
    'payment_provider',
    'payment_record_status',
    'order_status',
    'order_payment_status',
    'course_subscription_model',
    'subscription_tier',
    'user_role',
)


def _now():
    return sa.text('now()')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('role', sa.Enum('STUDENT', 'LECTURER', 'ADMIN', name='user_role'), nullable=False),
        sa.Column('subscription_tier', sa.Enum('FREE', 'PRO', name='subscription_tier'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=_now(), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
    )
    op.create_index('ix_users_user_id', 'users', ['user_id'], unique=False)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'courses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('stock_qty', sa.Integer(), nullable=True),
        sa.Column(
            'subscription_model',
            sa.Enum('FREE', 'PRO', name='course_subscription_model'),
            nullable=False
        ),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=_now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'enrollments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.String(), nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=_now(), nullable=True),
        sa.ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('course_id', 'student_id', name='uq_enrollments_course_student'),
    )
    op.create_index('ix_enrollments_course_id', 'enrollments', ['course_id'], unique=False)
    op.create_index('ix_enrollments_student_id', 'enrollments', ['student_id'], unique=False)

    op.create_table(
        'carts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=_now(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('cart_id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=_now(), nullable=True),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cart_id', 'course_id', name='uq_cart_items_cart_course'),
    )
    op.create_index('ix_cart_items_cart_id', 'cart_items', ['cart_id'], unique=False)

    op.create_table(
        'wallets',
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('balance', sa.Numeric(10, 2), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id'),
        sa.CheckConstraint('balance >= 0', name='ck_wallets_balance_non_negative'),
    )

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_transactions_user_created', 'transactions', ['user_id', 'created_at'], unique=False)
    op.create_index('ix_transactions_order_id', 'transactions', ['order_id'], unique=False)

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('refunded_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_status', sa.Enum('PAID', 'REFUNDED', name='order_payment_status'), nullable=False),
        sa.Column('order_status', sa.Enum('COMPLETED', name='order_status'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'], unique=False)

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('method', sa.String(), nullable=False),
        sa.Column('provider_txn_id', sa.String(), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.Enum('COMPLETED', 'REFUNDED', name='payment_record_status'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'], unique=False)
    op.create_index('ix_payments_user_id', 'payments', ['user_id'], unique=False)
    op.create_index('ix_payments_provider_txn_id', 'payments', ['provider_txn_id'], unique=False)

    op.create_table(
        'payment_attempts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('provider', sa.Enum('PAYPAL', 'STRIPE', 'NETS', name='payment_provider'), nullable=False),
        sa.Column('method', sa.String(), nullable=False),
        sa.Column('provider_order_id', sa.String(), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column(
            'status',
            sa.Enum('INITIATED', 'SUCCEEDED', 'FAILED', name='payment_attempt_status'),
            nullable=False
        ),
        sa.Column('failure_reason', sa.String(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_attempts_user_created', 'payment_attempts', ['user_id', 'created_at'], unique=False)
    op.create_index('ix_payment_attempts_ip_created', 'payment_attempts', ['ip_address', 'created_at'], unique=False)
    op.create_index('ix_payment_attempts_provider_order_id', 'payment_attempts', ['provider_order_id'], unique=False)
    op.create_index('ix_payment_attempts_status', 'payment_attempts', ['status'], unique=False)

    op.create_table(
        'fraud_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('rule_code', sa.String(), nullable=False),
        sa.Column('severity', sa.Enum('LOW', 'MEDIUM', 'HIGH', name='fraud_severity'), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['payment_id'], ['payment_attempts.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_fraud_events_user_id', 'fraud_events', ['user_id'], unique=False)
    op.create_index('ix_fraud_events_created_at', 'fraud_events', ['created_at'], unique=False)

    op.create_table(
        'payment_intents',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('attempt_id', sa.Integer(), nullable=True),
        sa.Column('method', sa.String(), nullable=False),
        # Type already created with payment_attempts
        sa.Column(
            'provider',
            postgresql.ENUM('PAYPAL', 'STRIPE', 'NETS', name='payment_provider', create_type=False),
            nullable=False
        ),
        sa.Column('provider_ref', sa.String(), nullable=False),
        sa.Column('provider_txn_id', sa.String(), nullable=True),
        sa.Column('checkout_url', sa.String(), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column(
            'status',
            sa.Enum('CREATED', 'CONFIRMED', 'CONSUMED', 'FAILED', name='payment_intent_status'),
            nullable=False
        ),
        sa.Column('risk_action', sa.Enum('ALLOW', 'REVIEW', 'BLOCK', name='risk_action'), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['attempt_id'], ['payment_attempts.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_intents_user_id', 'payment_intents', ['user_id'], unique=False)
    op.create_index('ix_payment_intents_provider_ref', 'payment_intents', ['provider_ref'], unique=True)
    op.create_index('ix_payment_intents_status', 'payment_intents', ['status'], unique=False)

    op.create_table(
        'refund_requests',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('requested_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column(
            'status',
            sa.Enum('PENDING', 'APPROVED', 'COMPLETED', 'REJECTED', 'FAILED', name='refund_status'),
            nullable=False
        ),
        sa.Column('admin_note', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refund_requests_order_id', 'refund_requests', ['order_id'], unique=False)
    op.create_index('ix_refund_requests_user_id', 'refund_requests', ['user_id'], unique=False)
    op.create_index('ix_refund_requests_status', 'refund_requests', ['status'], unique=False)
    # One open request per order
    op.create_index(
        'uq_refund_requests_pending_order',
        'refund_requests',
        ['order_id'],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'")
    )

    op.create_table(
        'refund_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('refund_request_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('provider_refund_id', sa.String(), nullable=True),
        sa.Column('provider_txn_id', sa.String(), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('raw_response', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['refund_request_id'], ['refund_requests.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refund_transactions_refund_request_id', 'refund_transactions', ['refund_request_id'], unique=False)
    op.create_index('ix_refund_transactions_order_id', 'refund_transactions', ['order_id'], unique=False)


def downgrade() -> None:
    op.drop_table('refund_transactions')
    op.drop_index('uq_refund_requests_pending_order', table_name='refund_requests')
    op.drop_table('refund_requests')
    op.drop_table('payment_intents')
    op.drop_table('fraud_events')
    op.drop_table('payment_attempts')
    op.drop_table('payments')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('transactions')
    op.drop_table('wallets')
    op.drop_table('cart_items')
    op.drop_table('carts')
    op.drop_table('enrollments')
    op.drop_table('courses')
    op.drop_table('users')

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for enum_name in ENUM_TYPES:
            postgresql.ENUM(name=enum_name).drop(bind, checkfirst=True)
