"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "currencies",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("symbol", sa.String(), nullable=True),
        sa.Column("minor_unit", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "countries",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("alpha3", sa.String(), nullable=False, unique=True),
        sa.Column(
            "currency_id",
            sa.String(),
            sa.ForeignKey("currencies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "service_providers",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "service_provider_countries",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "service_provider_id",
            sa.String(),
            sa.ForeignKey("service_providers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "country_id",
            sa.String(),
            sa.ForeignKey("countries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("service_provider_id", "country_id", name="uq_service_provider_countries"),
    )
    op.create_index(
        "ix_service_provider_countries_service_provider_id",
        "service_provider_countries",
        ["service_provider_id"],
    )
    op.create_index("ix_service_provider_countries_country_id", "service_provider_countries", ["country_id"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "service_provider_id",
            sa.String(),
            sa.ForeignKey("service_providers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "country_id",
            sa.String(),
            sa.ForeignKey("countries.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("available_slots", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("renewal_info", sa.JSON(), nullable=True),
        sa.Column("user_price", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "currency_id",
            sa.String(),
            sa.ForeignKey("currencies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        # The capacity counter never goes negative, even under racing writers.
        sa.CheckConstraint(
            "available_slots >= 0", name="ck_subscriptions_available_slots_non_negative"
        ),
    )
    op.create_index("ix_subscriptions_service_provider_id", "subscriptions", ["service_provider_id"])
    op.create_index("ix_subscriptions_country_id", "subscriptions", ["country_id"])
    op.create_index(
        "ix_subscriptions_assignable",
        "subscriptions",
        ["service_provider_id", "is_active", "available_slots", "created_at"],
    )

    op.create_table(
        "subscription_slots",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "subscription_id",
            sa.String(),
            sa.ForeignKey("subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_subscription_slots_user_active", "subscription_slots", ["user_id", "is_active"])
    op.create_index(
        "ix_subscription_slots_subscription_active",
        "subscription_slots",
        ["subscription_id", "is_active"],
    )

    op.create_table(
        "subscription_requests",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "service_provider_id",
            sa.String(),
            sa.ForeignKey("service_providers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "country_id",
            sa.String(),
            sa.ForeignKey("countries.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", sa.String(), nullable=False, server_default="PENDING"),
        sa.Column(
            "assigned_slot_id",
            sa.String(),
            sa.ForeignKey("subscription_slots.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_subscription_requests_queue",
        "subscription_requests",
        ["service_provider_id", "status", "requested_at"],
    )
    op.create_index(
        "ix_subscription_requests_user_status",
        "subscription_requests",
        ["user_id", "status"],
    )


def downgrade() -> None:
    op.drop_index("ix_subscription_requests_user_status", table_name="subscription_requests")
    op.drop_index("ix_subscription_requests_queue", table_name="subscription_requests")
    op.drop_table("subscription_requests")
    op.drop_index("ix_subscription_slots_subscription_active", table_name="subscription_slots")
    op.drop_index("ix_subscription_slots_user_active", table_name="subscription_slots")
    op.drop_table("subscription_slots")
    op.drop_index("ix_subscriptions_assignable", table_name="subscriptions")
    op.drop_index("ix_subscriptions_country_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_service_provider_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_service_provider_countries_country_id", table_name="service_provider_countries")
    op.drop_index(
        "ix_service_provider_countries_service_provider_id", table_name="service_provider_countries"
    )
    op.drop_table("service_provider_countries")
    op.drop_table("service_providers")
    op.drop_table("countries")
    op.drop_table("currencies")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
