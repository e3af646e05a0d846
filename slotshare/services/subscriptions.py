from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
import logging
import re
from typing import Any, Callable, Generic, TypeVar
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from slotshare.core.config import Settings, get_settings
from slotshare.core.errors import (
    ConflictError,
    DomainValidationError,
    NotFoundError,
    UnsupportedCountryError,
)
from slotshare.domain.models import Subscription, SubscriptionRequest, SubscriptionSlot
from slotshare.domain.state import SubscriptionRequestStatus
from slotshare.persistence.db import Database
from slotshare.persistence.repos import catalog as catalog_repo
from slotshare.persistence.repos import requests as requests_repo
from slotshare.persistence.repos import slots as slots_repo
from slotshare.persistence.repos import subscriptions as subscriptions_repo
from slotshare.persistence.repos.subscriptions import UNSET, SubscriptionQuery
from slotshare.services.auth.passwords import hash_password
from slotshare.services.drainer import DrainReport, PendingRequestDrainer
from slotshare.services.slot_assignment import AssignmentResult, ReleasedSlot, SlotAssignmentEngine


logger = logging.getLogger(__name__)

T = TypeVar("T")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NAME_MAX_LENGTH = 100
_PASSWORD_MIN_LENGTH = 6


@dataclass(frozen=True)
class SubscriptionCreate:
    service_provider_id: str
    name: str
    email: str
    password: str
    available_slots: int
    country_id: str | None = None
    expires_at: datetime | None = None
    renewal_info: dict[str, Any] | None = None
    user_price: Decimal | None = None
    currency_id: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class SubscriptionUpdate:
    # Fields left as UNSET are untouched; nullable fields accept None to clear them.
    name: str | None = None
    email: str | None = None
    password: str | None = None
    available_slots: int | None = None
    is_active: bool | None = None
    country_id: Any = UNSET
    expires_at: Any = UNSET
    renewal_info: Any = UNSET
    user_price: Any = UNSET
    currency_id: Any = UNSET
    metadata: Any = UNSET

    @classmethod
    def from_fields(cls, fields: dict[str, Any]) -> SubscriptionUpdate:
        # Only keys present in the payload are applied.
        known = set(cls.__dataclass_fields__)
        unknown = set(fields) - known
        if unknown:
            raise DomainValidationError(f"Unknown subscription fields: {', '.join(sorted(unknown))}")
        return cls(**fields)


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int
    has_next: bool = field(init=False)
    has_previous: bool = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "has_next", self.page * self.limit < self.total)
        object.__setattr__(self, "has_previous", self.page > 1)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps from clients are interpreted as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _expiry_extended(before: datetime | None, after: datetime | None) -> bool:
    if before is None:
        return False
    if after is None:
        return True
    return _as_utc(after) > _as_utc(before)


def _validate_name(name: str) -> None:
    if not name or not name.strip():
        raise DomainValidationError("Subscription name is required")
    if len(name.strip()) > _NAME_MAX_LENGTH:
        raise DomainValidationError(f"Subscription name must be {_NAME_MAX_LENGTH} characters or less")


def validate_email(email: str) -> None:
    if not email or not email.strip():
        raise DomainValidationError("Email is required")
    if not _EMAIL_RE.match(email.strip()):
        raise DomainValidationError("Invalid email format")


def _validate_password(password: str) -> None:
    if not password:
        raise DomainValidationError("Password is required")
    if len(password) < _PASSWORD_MIN_LENGTH:
        raise DomainValidationError(
            f"Password must be at least {_PASSWORD_MIN_LENGTH} characters long"
        )


def _validate_price(price: Decimal | None) -> None:
    if price is not None and price < 0:
        raise DomainValidationError("User price cannot be negative")


def _validate_expiry(expires_at: datetime | None, now: datetime) -> datetime | None:
    if expires_at is None:
        return None
    normalized = _as_utc(expires_at)
    if normalized <= now:
        raise DomainValidationError("Expiration date must be in the future")
    return normalized


class SubscriptionService:
    """Admin and member operations over subscriptions, slots and requests.

    Writes run inside :meth:`Database.transaction`. Capacity changes made here
    (new accounts, raised slot counts, reactivation, released slots) re-drain the
    provider's pending queue when ``drain_on_capacity_change`` is enabled.
    """

    def __init__(
        self,
        database: Database,
        *,
        engine: SlotAssignmentEngine | None = None,
        drainer: PendingRequestDrainer | None = None,
        settings: Settings | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.database = database
        self.engine = engine or SlotAssignmentEngine(
            database, settings=self.settings, time_provider=time_provider
        )
        self.drainer = drainer or PendingRequestDrainer(self.engine, settings=self.settings)
        self._now = time_provider or (lambda: datetime.now(timezone.utc))

    async def create_subscription(self, data: SubscriptionCreate) -> Subscription:
        now = self._now()
        if not data.service_provider_id or not data.service_provider_id.strip():
            raise DomainValidationError("Service provider ID is required")
        _validate_name(data.name)
        validate_email(data.email)
        _validate_password(data.password)
        self._validate_slots(data.available_slots, minimum=1)
        _validate_price(data.user_price)
        expires_at = _validate_expiry(data.expires_at, now)

        # bcrypt is CPU bound; keep it off the event loop.
        password_hash = await asyncio.to_thread(
            hash_password, data.password, rounds=self.settings.bcrypt_rounds
        )
        async with self.database.transaction() as session:
            if await catalog_repo.get_service_provider(session, data.service_provider_id) is None:
                raise NotFoundError("service_provider", data.service_provider_id)
            if data.country_id is not None:
                await self._ensure_country_supported(session, data.service_provider_id, data.country_id)
            if data.currency_id is not None and await catalog_repo.get_currency(session, data.currency_id) is None:
                raise NotFoundError("currency", data.currency_id)
            if await subscriptions_repo.email_exists(session, data.email):
                raise ConflictError("A subscription with this email already exists")
            subscription = await subscriptions_repo.create_subscription(
                session,
                subscription_id=uuid4().hex,
                service_provider_id=data.service_provider_id,
                country_id=data.country_id,
                name=data.name,
                email=data.email,
                password_hash=password_hash,
                available_slots=data.available_slots,
                expires_at=expires_at,
                renewal_info=data.renewal_info,
                user_price=data.user_price,
                currency_id=data.currency_id,
                metadata_json=data.metadata,
            )
        logger.info(
            "subscription_created subscription_id=%s service_provider_id=%s available_slots=%s",
            subscription.id,
            subscription.service_provider_id,
            subscription.available_slots,
        )
        await self._drain_after_capacity_change(subscription.service_provider_id, subscription.country_id)
        return subscription

    async def get_subscription(self, subscription_id: str) -> Subscription:
        async with self.database.session() as session:
            subscription = await subscriptions_repo.get_subscription(session, subscription_id)
        if subscription is None:
            raise NotFoundError("subscription", subscription_id)
        return subscription

    async def list_subscriptions(self, query: SubscriptionQuery | None = None) -> Page[Subscription]:
        query = query or SubscriptionQuery(limit=self.settings.default_page_size)
        if query.page < 1:
            raise DomainValidationError("Page must be at least 1")
        if query.limit < 1 or query.limit > self.settings.max_page_size:
            raise DomainValidationError(f"Limit must be between 1 and {self.settings.max_page_size}")
        async with self.database.session() as session:
            items, total = await subscriptions_repo.list_subscriptions(session, query)
        return Page(items=items, total=total, page=query.page, limit=query.limit)

    async def update_subscription(self, subscription_id: str, data: SubscriptionUpdate) -> Subscription:
        now = self._now()
        if data.name is not None:
            _validate_name(data.name)
        if data.email is not None:
            validate_email(data.email)
        if data.password is not None:
            _validate_password(data.password)
        if data.available_slots is not None:
            # Zero is allowed here so an admin can close an account to new members.
            self._validate_slots(data.available_slots, minimum=0)
        if data.user_price is not UNSET:
            _validate_price(data.user_price)
        expires_at = data.expires_at
        if expires_at is not UNSET:
            expires_at = _validate_expiry(expires_at, now)

        password_hash = None
        if data.password is not None:
            password_hash = await asyncio.to_thread(
                hash_password, data.password, rounds=self.settings.bcrypt_rounds
            )

        async with self.database.transaction() as session:
            existing = await subscriptions_repo.get_subscription(session, subscription_id)
            if existing is None:
                raise NotFoundError("subscription", subscription_id)
            previous_slots = existing.available_slots
            previous_active = existing.is_active
            previous_country_id = existing.country_id
            previous_expires_at = existing.expires_at
            if data.country_id is not UNSET and data.country_id is not None:
                await self._ensure_country_supported(session, existing.service_provider_id, data.country_id)
            if data.currency_id is not UNSET and data.currency_id is not None:
                if await catalog_repo.get_currency(session, data.currency_id) is None:
                    raise NotFoundError("currency", data.currency_id)
            if data.email is not None and await subscriptions_repo.email_exists(
                session, data.email, exclude_id=subscription_id
            ):
                raise ConflictError("A subscription with this email already exists")
            subscription = await subscriptions_repo.update_fields(
                session,
                subscription_id,
                name=data.name,
                email=data.email,
                password_hash=password_hash,
                available_slots=data.available_slots,
                country_id=data.country_id,
                expires_at=expires_at,
                renewal_info=data.renewal_info,
                user_price=data.user_price,
                currency_id=data.currency_id,
                metadata_json=data.metadata,
                is_active=data.is_active,
            )
            if subscription is None:
                raise NotFoundError("subscription", subscription_id)
            subscription.updated_at = now

        # Moving the account to another country or extending its expiry can open it
        # to queued requests without touching the slot count.
        capacity_added = subscription.is_active and (
            subscription.available_slots > previous_slots
            or not previous_active
            or subscription.country_id != previous_country_id
            or _expiry_extended(previous_expires_at, subscription.expires_at)
        )
        logger.info(
            "subscription_updated subscription_id=%s available_slots=%s is_active=%s capacity_added=%s",
            subscription.id,
            subscription.available_slots,
            subscription.is_active,
            capacity_added,
        )
        if capacity_added and subscription.available_slots > 0:
            await self._drain_after_capacity_change(subscription.service_provider_id, subscription.country_id)
        return subscription

    async def delete_subscription(self, subscription_id: str) -> None:
        async with self.database.transaction() as session:
            if not await subscriptions_repo.delete_subscription(session, subscription_id):
                raise NotFoundError("subscription", subscription_id)
        logger.info("subscription_deleted subscription_id=%s", subscription_id)

    async def request_subscription_slot(
        self, user_id: str, service_provider_id: str, country_id: str | None = None
    ) -> AssignmentResult:
        if not service_provider_id or not service_provider_id.strip():
            raise DomainValidationError("Service provider ID is required")
        async with self.database.session() as session:
            if await catalog_repo.get_service_provider(session, service_provider_id) is None:
                raise NotFoundError("service_provider", service_provider_id)
            if country_id is not None:
                await self._ensure_country_supported(session, service_provider_id, country_id)
        return await self.engine.assign_slot_to_user(user_id, service_provider_id, country_id)

    async def cancel_request(self, user_id: str, request_id: str) -> SubscriptionRequest:
        now = self._now()
        async with self.database.transaction() as session:
            request = await requests_repo.get_request(session, request_id, for_update=True)
            # Other users' requests are indistinguishable from missing ones.
            if request is None or request.user_id != user_id:
                raise NotFoundError("subscription_request", request_id)
            requests_repo.mark_closed(request, status=SubscriptionRequestStatus.CANCELLED, now=now)
        logger.info("subscription_request_cancelled request_id=%s user_id=%s", request_id, user_id)
        return request

    async def reject_request(self, request_id: str, reason: str | None = None) -> SubscriptionRequest:
        now = self._now()
        async with self.database.transaction() as session:
            request = await requests_repo.get_request(session, request_id, for_update=True)
            if request is None:
                raise NotFoundError("subscription_request", request_id)
            requests_repo.mark_closed(
                request, status=SubscriptionRequestStatus.REJECTED, now=now, reason=reason
            )
        logger.info("subscription_request_rejected request_id=%s", request_id)
        return request

    async def release_slot(self, slot_id: str) -> ReleasedSlot:
        released = await self.engine.release_slot(slot_id)
        await self._drain_after_capacity_change(released.service_provider_id, released.country_id)
        return released

    async def drain(self, service_provider_id: str, country_id: str | None = None) -> DrainReport:
        async with self.database.session() as session:
            if await catalog_repo.get_service_provider(session, service_provider_id) is None:
                raise NotFoundError("service_provider", service_provider_id)
            if country_id is not None and await catalog_repo.get_country(session, country_id) is None:
                raise NotFoundError("country", country_id)
        return await self.drainer.drain(service_provider_id, country_id)

    async def list_user_slots(self, user_id: str) -> list[tuple[SubscriptionSlot, Subscription]]:
        async with self.database.session() as session:
            return await slots_repo.list_active_for_user(session, user_id)

    async def list_user_requests(self, user_id: str) -> list[SubscriptionRequest]:
        async with self.database.session() as session:
            return await requests_repo.list_for_user(session, user_id)

    def _validate_slots(self, available_slots: int, *, minimum: int) -> None:
        maximum = self.settings.subscription_max_slots
        if available_slots < minimum:
            raise DomainValidationError(f"Available slots must be at least {minimum}")
        if available_slots > maximum:
            raise DomainValidationError(f"Available slots cannot exceed {maximum}")

    async def _ensure_country_supported(
        self, session: AsyncSession, service_provider_id: str, country_id: str
    ) -> None:
        country = await catalog_repo.get_country(session, country_id)
        if country is None:
            raise NotFoundError("country", country_id)
        if not country.is_active:
            raise UnsupportedCountryError("Country is not active")
        if not await catalog_repo.provider_supports_country(session, service_provider_id, country_id):
            raise UnsupportedCountryError("Service provider does not support the specified country")

    async def _drain_after_capacity_change(self, service_provider_id: str, country_id: str | None) -> None:
        if not self.settings.drain_on_capacity_change:
            return
        # A subscription without a country can serve any request for the provider.
        try:
            await self.drainer.drain(service_provider_id, country_id)
        except Exception as exc:  # noqa: BLE001 - the triggering write is already committed
            logger.warning(
                "capacity_change_drain_failed service_provider_id=%s country_id=%s error=%s",
                service_provider_id,
                country_id,
                type(exc).__name__,
            )
