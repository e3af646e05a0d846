from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from slotshare.domain.state import SubscriptionRequestStatus, UserRole


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Stored lowercased so lookups are case-insensitive without functional indexes.
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    password_hash: Mapped[str] = mapped_column(String)
    role: Mapped[str] = mapped_column(String, default=UserRole.USER.value, nullable=False)
    # Gate access for disabled users without deleting their slot history.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class Currency(Base):
    __tablename__ = "currencies"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, unique=True)
    # ISO 4217 alphabetic code, uppercased.
    code: Mapped[str] = mapped_column(String, unique=True)
    symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    minor_unit: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class Country(Base):
    __tablename__ = "countries"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, unique=True)
    # ISO 3166-1 alpha-2 and alpha-3 codes.
    code: Mapped[str] = mapped_column(String, unique=True)
    alpha3: Mapped[str] = mapped_column(String, unique=True)
    currency_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("currencies.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class ServiceProvider(Base):
    __tablename__ = "service_providers"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class ServiceProviderCountry(Base):
    __tablename__ = "service_provider_countries"
    __table_args__ = (
        UniqueConstraint("service_provider_id", "country_id", name="uq_service_provider_countries"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    service_provider_id: Mapped[str] = mapped_column(
        String, ForeignKey("service_providers.id", ondelete="CASCADE"), index=True
    )
    country_id: Mapped[str] = mapped_column(
        String, ForeignKey("countries.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("available_slots >= 0", name="ck_subscriptions_available_slots_non_negative"),
        # Serve the eligibility scan (provider + active + capacity) without a table walk.
        Index(
            "ix_subscriptions_assignable",
            "service_provider_id",
            "is_active",
            "available_slots",
            "created_at",
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    service_provider_id: Mapped[str] = mapped_column(
        String, ForeignKey("service_providers.id", ondelete="CASCADE"), index=True
    )
    country_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("countries.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String)
    email: Mapped[str] = mapped_column(String, unique=True)
    # Opaque bcrypt hash of the shared account credential; never serialized.
    password_hash: Mapped[str] = mapped_column(String)
    available_slots: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    renewal_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    user_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("currencies.id", ondelete="SET NULL"), nullable=True
    )
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    # Inactive subscriptions are invisible to the assignment engine.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class SubscriptionSlot(Base):
    __tablename__ = "subscription_slots"
    __table_args__ = (
        Index("ix_subscription_slots_user_active", "user_id", "is_active"),
        Index("ix_subscription_slots_subscription_active", "subscription_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"))
    subscription_id: Mapped[str] = mapped_column(
        String, ForeignKey("subscriptions.id", ondelete="CASCADE")
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    # Released slots are kept for history; only active rows consume capacity.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class SubscriptionRequest(Base):
    __tablename__ = "subscription_requests"
    __table_args__ = (
        # FIFO scan of the pending queue per provider.
        Index(
            "ix_subscription_requests_queue",
            "service_provider_id",
            "status",
            "requested_at",
        ),
        Index("ix_subscription_requests_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"))
    service_provider_id: Mapped[str] = mapped_column(
        String, ForeignKey("service_providers.id", ondelete="CASCADE")
    )
    country_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("countries.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String, default=SubscriptionRequestStatus.PENDING.value, nullable=False
    )
    assigned_slot_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("subscription_slots.id", ondelete="SET NULL"), nullable=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )
