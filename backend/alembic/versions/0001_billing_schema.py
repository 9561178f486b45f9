"""Create billing schema

Revision ID: 0001_billing_schema
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_billing_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create plans, subscriptions, dunning and promotion tables."""

    op.create_table(
        'subscription_plans',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('interval', sa.String(10), server_default='month', nullable=False),
        sa.Column('interval_count', sa.Integer, server_default='1', nullable=False),
        sa.Column('price_amount', sa.Integer, nullable=False),
        sa.Column('currency_code', sa.String(3), server_default='USD', nullable=False),
        sa.Column('trial_period_days', sa.Integer, server_default='0', nullable=False),
        sa.Column('setup_fee_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False, index=True),
        sa.Column('features', postgresql.JSONB, server_default='[]', nullable=False),
        sa.Column('metadata', postgresql.JSONB, server_default='{}', nullable=False),
        sa.Column('stripe_product_id', sa.String(255)),
        sa.Column('stripe_price_id', sa.String(255)),
        *_timestamps(),
    )

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('customer_id', sa.String(255), nullable=False, index=True),
        sa.Column('customer_email', sa.String(255)),
        sa.Column('plan_id', sa.Uuid(), sa.ForeignKey('subscription_plans.id'), nullable=False, index=True),

        # Stripe IDs
        sa.Column('stripe_customer_id', sa.String(255), index=True),
        sa.Column('stripe_subscription_id', sa.String(255), unique=True, index=True),

        sa.Column('status', sa.String(20), server_default='pending', nullable=False, index=True),
        sa.Column('quantity', sa.Integer, server_default='1', nullable=False),

        # Billing period dates
        sa.Column('current_period_start', sa.DateTime(timezone=True)),
        sa.Column('current_period_end', sa.DateTime(timezone=True)),
        sa.Column('trial_start', sa.DateTime(timezone=True)),
        sa.Column('trial_end', sa.DateTime(timezone=True)),

        # Cancellation and pause
        sa.Column('cancel_at_period_end', sa.Boolean, server_default='false', nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('cancel_reason', sa.Text()),
        sa.Column('ended_at', sa.DateTime(timezone=True)),
        sa.Column('paused_at', sa.DateTime(timezone=True)),
        sa.Column('resume_at', sa.DateTime(timezone=True)),

        sa.Column('shipping_address', postgresql.JSONB),
        *_timestamps(),
        sa.CheckConstraint('quantity >= 1', name='ck_subscriptions_quantity_positive'),
        sa.CheckConstraint(
            "status IN ('pending', 'trialing', 'active', 'paused', 'past_due', 'cancelled', 'expired')",
            name='ck_subscriptions_status',
        ),
    )

    op.create_table(
        'subscription_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('subscription_id', sa.Uuid(), sa.ForeignKey('subscriptions.id'), nullable=False, index=True),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('data', postgresql.JSONB, server_default='{}', nullable=False),
        sa.Column('previous_status', sa.String(20)),
        sa.Column('new_status', sa.String(20)),
        sa.Column('stripe_event_id', sa.String(255)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'subscription_invoices',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('subscription_id', sa.Uuid(), sa.ForeignKey('subscriptions.id'), nullable=False, index=True),
        sa.Column('stripe_invoice_id', sa.String(255), unique=True, index=True),
        sa.Column('subtotal_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('discount_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('tax_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('total_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('amount_paid', sa.Integer, server_default='0', nullable=False),
        sa.Column('amount_due', sa.Integer, server_default='0', nullable=False),
        sa.Column('currency_code', sa.String(3), server_default='USD', nullable=False),
        sa.Column('status', sa.String(20), server_default='open', nullable=False, index=True),
        sa.Column('period_start', sa.DateTime(timezone=True)),
        sa.Column('period_end', sa.DateTime(timezone=True)),
        sa.Column('paid_at', sa.DateTime(timezone=True)),
        sa.Column('voided_at', sa.DateTime(timezone=True)),
        sa.Column('order_id', sa.String(255)),
        *_timestamps(),
    )

    op.create_table(
        'payment_retry_attempts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('subscription_id', sa.Uuid(), sa.ForeignKey('subscriptions.id'), nullable=False, index=True),
        sa.Column('invoice_id', sa.Uuid(), sa.ForeignKey('subscription_invoices.id')),
        sa.Column('attempt_number', sa.Integer, nullable=False),
        sa.Column('amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('currency_code', sa.String(3), server_default='USD', nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('failure_reason', sa.Text()),
        sa.Column('stripe_payment_intent_id', sa.String(255)),
        sa.Column('episode_started_at', sa.DateTime(timezone=True)),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('attempted_at', sa.DateTime(timezone=True)),
        sa.Column('next_retry_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    # Serves the "pending and due" batch query
    op.create_index(
        'ix_payment_retry_attempts_status_scheduled_at',
        'payment_retry_attempts',
        ['status', 'scheduled_at'],
    )

    op.create_table(
        'coupons',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('discount_type', sa.String(20), nullable=False),
        sa.Column('discount_value', sa.Integer, nullable=False),
        sa.Column('currency_code', sa.String(3), server_default='USD', nullable=False),
        sa.Column('duration', sa.String(20), server_default='once', nullable=False),
        sa.Column('duration_in_months', sa.Integer),
        sa.Column('max_redemptions', sa.Integer),
        sa.Column('redemption_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('min_order_amount', sa.Integer),
        sa.Column('applies_to_plans', postgresql.JSONB, server_default='[]', nullable=False),
        sa.Column('valid_from', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('valid_until', sa.DateTime(timezone=True)),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False, index=True),
        sa.Column('stripe_coupon_id', sa.String(255)),
        sa.Column('metadata', postgresql.JSONB, server_default='{}', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'coupon_redemptions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('coupon_id', sa.Uuid(), sa.ForeignKey('coupons.id'), nullable=False, index=True),
        sa.Column('customer_id', sa.String(255), nullable=False, index=True),
        sa.Column('subscription_id', sa.Uuid(), sa.ForeignKey('subscriptions.id')),
        sa.Column('order_id', sa.String(255)),
        sa.Column('discount_amount', sa.Integer, nullable=False),
        sa.Column('currency_code', sa.String(3), server_default='USD', nullable=False),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True)),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
    )

    op.create_table(
        'gift_subscriptions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('sender_customer_id', sa.String(255)),
        sa.Column('sender_email', sa.String(255), nullable=False),
        sa.Column('sender_name', sa.String(255), nullable=False),
        sa.Column('recipient_email', sa.String(255), nullable=False),
        sa.Column('recipient_name', sa.String(255), nullable=False),
        sa.Column('plan_id', sa.Uuid(), sa.ForeignKey('subscription_plans.id'), nullable=False),
        sa.Column('gift_message', sa.Text()),
        sa.Column('redeem_code', sa.String(20), nullable=False, unique=True, index=True),
        sa.Column('expires_at', sa.DateTime(timezone=True)),
        sa.Column('amount_paid', sa.Integer, server_default='0', nullable=False),
        sa.Column('currency_code', sa.String(3), server_default='USD', nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(255)),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False, index=True),
        sa.Column('redeemed_at', sa.DateTime(timezone=True)),
        sa.Column('redeemed_by_customer_id', sa.String(255)),
        sa.Column('subscription_id', sa.Uuid(), sa.ForeignKey('subscriptions.id')),
        *_timestamps(),
    )

    op.create_table(
        'subscription_bundles',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('price_amount', sa.Integer, nullable=False),
        sa.Column('currency_code', sa.String(3), server_default='USD', nullable=False),
        sa.Column('interval', sa.String(10), server_default='month', nullable=False),
        sa.Column('interval_count', sa.Integer, server_default='1', nullable=False),
        sa.Column('savings_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('savings_percentage', sa.Integer, server_default='0', nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'subscription_bundle_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('bundle_id', sa.Uuid(), sa.ForeignKey('subscription_bundles.id'), nullable=False, index=True),
        sa.Column('plan_id', sa.Uuid(), sa.ForeignKey('subscription_plans.id'), nullable=False),
        sa.Column('quantity', sa.Integer, server_default='1', nullable=False),
    )

    op.create_table(
        'processed_webhook_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column(
            'processed_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
    )
    # Index for cleanup queries (delete events older than X days)
    op.create_index(
        'ix_processed_webhook_events_processed_at',
        'processed_webhook_events',
        ['processed_at'],
    )


def downgrade() -> None:
    """Drop billing tables in reverse dependency order."""
    op.drop_index('ix_processed_webhook_events_processed_at')
    op.drop_table('processed_webhook_events')
    op.drop_table('subscription_bundle_items')
    op.drop_table('subscription_bundles')
    op.drop_table('gift_subscriptions')
    op.drop_table('coupon_redemptions')
    op.drop_table('coupons')
    op.drop_index('ix_payment_retry_attempts_status_scheduled_at')
    op.drop_table('payment_retry_attempts')
    op.drop_table('subscription_invoices')
    op.drop_table('subscription_events')
    op.drop_table('subscriptions')
    op.drop_table('subscription_plans')
