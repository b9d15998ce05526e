"""community_billing_schema

Revision ID: 6c1f3a9d2b47
Revises: 
Create Date: 2026-10-18 09:12:41.508113

Production-safe migration: only creates tables that do not exist yet.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '6c1f3a9d2b47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SUBSCRIPTION_STATUSES = (
    'INCOMPLETE', 'INCOMPLETE_EXPIRED', 'TRIALING', 'ACTIVE', 'PAST_DUE',
    'CANCELED', 'UNPAID', 'PAUSED', 'FREE',
)


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    if not table_exists('users'):
        op.create_table('users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('full_name', sa.String(), nullable=True),
            sa.Column('email', sa.String(), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
        op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    if not table_exists('servers'):
        op.create_table('servers',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('owner_id', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_servers_id'), 'servers', ['id'], unique=False)

    if not table_exists('roles'):
        op.create_table('roles',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('server_id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('color', sa.String(), nullable=True),
            sa.Column('is_default', sa.Boolean(), nullable=False),
            sa.Column('creator_id', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.ForeignKeyConstraint(['server_id'], ['servers.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['creator_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('server_id', 'name', name='uq_roles_server_name')
        )
        op.create_index(op.f('ix_roles_id'), 'roles', ['id'], unique=False)
        op.create_index(op.f('ix_roles_server_id'), 'roles', ['server_id'], unique=False)

    if not table_exists('members'):
        op.create_table('members',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('server_id', sa.Integer(), nullable=False),
            sa.Column('role_id', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['server_id'], ['servers.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('user_id', 'server_id', name='uq_members_user_server')
        )
        op.create_index(op.f('ix_members_id'), 'members', ['id'], unique=False)
        op.create_index(op.f('ix_members_user_id'), 'members', ['user_id'], unique=False)
        op.create_index(op.f('ix_members_server_id'), 'members', ['server_id'], unique=False)

    if not table_exists('subscriptions'):
        op.create_table('subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('stripe_subscription_id', sa.String(), nullable=False),
            sa.Column('stripe_customer_id', sa.String(), nullable=False),
            sa.Column('status', sa.Enum(*SUBSCRIPTION_STATUSES, name='subscription_status', native_enum=False, length=32), nullable=False),
            sa.Column('current_period_start', sa.DateTime(), nullable=True),
            sa.Column('current_period_end', sa.DateTime(), nullable=True),
            sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False),
            sa.Column('canceled_at', sa.DateTime(), nullable=True),
            sa.Column('ended_at', sa.DateTime(), nullable=True),
            sa.Column('trial_start', sa.DateTime(), nullable=True),
            sa.Column('trial_end', sa.DateTime(), nullable=True),
            sa.Column('latest_invoice_id', sa.String(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('user_id')
        )
        op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'], unique=False)
        op.create_index(op.f('ix_subscriptions_stripe_subscription_id'), 'subscriptions', ['stripe_subscription_id'], unique=True)
        op.create_index(op.f('ix_subscriptions_stripe_customer_id'), 'subscriptions', ['stripe_customer_id'], unique=False)
        op.create_index(op.f('ix_subscriptions_status'), 'subscriptions', ['status'], unique=False)

    if not table_exists('custom_discount_offers'):
        op.create_table('custom_discount_offers',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('subscription_id', sa.String(), nullable=False),
            sa.Column('original_price_cents', sa.Integer(), nullable=False),
            sa.Column('user_input_cents', sa.Integer(), nullable=False),
            sa.Column('offer_price_cents', sa.Integer(), nullable=False),
            sa.Column('discount_percent', sa.Float(), nullable=False),
            sa.Column('savings_cents', sa.Integer(), nullable=False),
            sa.Column('expires_at', sa.DateTime(), nullable=False),
            sa.Column('is_expired', sa.Boolean(), nullable=False),
            sa.Column('accepted_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('user_id', 'subscription_id', name='uq_custom_discount_offers_user_subscription')
        )
        op.create_index(op.f('ix_custom_discount_offers_id'), 'custom_discount_offers', ['id'], unique=False)
        op.create_index(op.f('ix_custom_discount_offers_user_id'), 'custom_discount_offers', ['user_id'], unique=False)
        op.create_index(op.f('ix_custom_discount_offers_expires_at'), 'custom_discount_offers', ['expires_at'], unique=False)
        op.create_index(op.f('ix_custom_discount_offers_is_expired'), 'custom_discount_offers', ['is_expired'], unique=False)


def downgrade() -> None:
    op.drop_table('custom_discount_offers')
    op.drop_table('subscriptions')
    op.drop_table('members')
    op.drop_table('roles')
    op.drop_table('servers')
    op.drop_table('users')
