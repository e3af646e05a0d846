from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from slotshare.domain.models import Subscription
from slotshare.domain.state import SelectionPolicy


SubscriptionSortField = Literal[
    "name", "email", "available_slots", "expires_at", "created_at", "updated_at"
]

_SORT_COLUMNS = {
    "name": Subscription.name,
    "email": Subscription.email,
    "available_slots": Subscription.available_slots,
    "expires_at": Subscription.expires_at,
    "created_at": Subscription.created_at,
    "updated_at": Subscription.updated_at,
}

UNSET: Any = object()


@dataclass(frozen=True)
class AvailabilityFilter:
    # Explicit eligibility predicate for the assignment engine's candidate scan.
    service_provider_id: str
    now: datetime
    country_id: str | None = None

    def clauses(self) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = [
            Subscription.service_provider_id == self.service_provider_id,
            Subscription.is_active.is_(True),
            Subscription.available_slots > 0,
            or_(Subscription.expires_at.is_(None), Subscription.expires_at > self.now),
        ]
        if self.country_id is not None:
            clauses.append(Subscription.country_id == self.country_id)
        return clauses


@dataclass(frozen=True)
class SubscriptionQuery:
    page: int = 1
    limit: int = 10
    sort_by: SubscriptionSortField = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    search: str | None = None
    service_provider_id: str | None = None
    country_id: str | None = None
    is_active: bool | None = None

    def clauses(self) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        if self.search:
            term = self.search.strip()
            clauses.append(
                or_(
                    Subscription.name.icontains(term, autoescape=True),
                    Subscription.email.icontains(term, autoescape=True),
                )
            )
        if self.service_provider_id:
            clauses.append(Subscription.service_provider_id == self.service_provider_id)
        if self.country_id:
            clauses.append(Subscription.country_id == self.country_id)
        if self.is_active is not None:
            clauses.append(Subscription.is_active.is_(self.is_active))
        return clauses


def selection_order(policy: SelectionPolicy) -> tuple[ColumnElement[Any], ...]:
    # Oldest-first and id tie-breaks keep the order total and deterministic.
    if policy is SelectionPolicy.EMPTIEST_FIRST:
        slots_order = Subscription.available_slots.desc()
    else:
        slots_order = Subscription.available_slots.asc()
    return (slots_order, Subscription.created_at.asc(), Subscription.id.asc())


async def create_subscription(
    session: AsyncSession,
    *,
    subscription_id: str,
    service_provider_id: str,
    name: str,
    email: str,
    password_hash: str,
    available_slots: int,
    country_id: str | None = None,
    expires_at: datetime | None = None,
    renewal_info: dict[str, Any] | None = None,
    user_price: Decimal | None = None,
    currency_id: str | None = None,
    metadata_json: dict[str, Any] | None = None,
    is_active: bool = True,
) -> Subscription:
    subscription = Subscription(
        id=subscription_id,
        service_provider_id=service_provider_id,
        country_id=country_id,
        name=name.strip(),
        email=email.strip().lower(),
        password_hash=password_hash,
        available_slots=available_slots,
        expires_at=expires_at,
        renewal_info=renewal_info,
        user_price=user_price,
        currency_id=currency_id,
        metadata_json=metadata_json,
        is_active=is_active,
    )
    session.add(subscription)
    return subscription


async def get_subscription(session: AsyncSession, subscription_id: str) -> Subscription | None:
    result = await session.execute(select(Subscription).where(Subscription.id == subscription_id))
    return result.scalar_one_or_none()


async def list_subscriptions(
    session: AsyncSession, query: SubscriptionQuery
) -> tuple[list[Subscription], int]:
    clauses = query.clauses()
    column = _SORT_COLUMNS[query.sort_by]
    ordering = column.asc() if query.sort_order == "asc" else column.desc()
    offset = (query.page - 1) * query.limit
    result = await session.execute(
        select(Subscription)
        .where(*clauses)
        .order_by(ordering, Subscription.id)
        .offset(offset)
        .limit(query.limit)
    )
    total = await session.execute(select(func.count()).select_from(Subscription).where(*clauses))
    return list(result.scalars().all()), int(total.scalar() or 0)


async def email_exists(session: AsyncSession, email: str, *, exclude_id: str | None = None) -> bool:
    stmt = select(Subscription.id).where(Subscription.email == email.strip().lower())
    if exclude_id:
        stmt = stmt.where(Subscription.id != exclude_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


async def list_available(
    session: AsyncSession,
    availability: AvailabilityFilter,
    *,
    policy: SelectionPolicy = SelectionPolicy.FULLEST_FIRST,
    limit: int | None = None,
) -> list[Subscription]:
    stmt = select(Subscription).where(*availability.clauses()).order_by(*selection_order(policy))
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def is_assignable(session: AsyncSession, subscription_id: str, *, now: datetime) -> bool:
    # Evaluate the predicate in SQL so expiry compares against the stored timezone.
    result = await session.execute(
        select(Subscription.id).where(
            Subscription.id == subscription_id,
            Subscription.is_active.is_(True),
            Subscription.available_slots > 0,
            or_(Subscription.expires_at.is_(None), Subscription.expires_at > now),
        )
    )
    return result.scalar_one_or_none() is not None


async def decrement_available_slots(session: AsyncSession, subscription_id: str, *, now: datetime) -> bool:
    # Single conditional UPDATE: only one racing caller can take the last slot.
    result = await session.execute(
        update(Subscription)
        .where(
            Subscription.id == subscription_id,
            Subscription.available_slots > 0,
            Subscription.is_active.is_(True),
        )
        .values(available_slots=Subscription.available_slots - 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0) == 1


async def increment_available_slots(session: AsyncSession, subscription_id: str, *, now: datetime) -> bool:
    result = await session.execute(
        update(Subscription)
        .where(Subscription.id == subscription_id)
        .values(available_slots=Subscription.available_slots + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0) == 1


async def update_fields(
    session: AsyncSession,
    subscription_id: str,
    *,
    name: str | None = None,
    email: str | None = None,
    password_hash: str | None = None,
    available_slots: int | None = None,
    country_id: str | None = UNSET,
    expires_at: datetime | None = UNSET,
    renewal_info: dict[str, Any] | None = UNSET,
    user_price: Decimal | None = UNSET,
    currency_id: str | None = UNSET,
    metadata_json: dict[str, Any] | None = UNSET,
    is_active: bool | None = None,
) -> Subscription | None:
    # Fetch first to avoid accidental upserts; nullable fields use a sentinel so None clears them.
    subscription = await get_subscription(session, subscription_id)
    if subscription is None:
        return None
    if name is not None:
        subscription.name = name.strip()
    if email is not None:
        subscription.email = email.strip().lower()
    if password_hash is not None:
        subscription.password_hash = password_hash
    if available_slots is not None:
        subscription.available_slots = available_slots
    if country_id is not UNSET:
        subscription.country_id = country_id
    if expires_at is not UNSET:
        subscription.expires_at = expires_at
    if renewal_info is not UNSET:
        subscription.renewal_info = renewal_info
    if user_price is not UNSET:
        subscription.user_price = user_price
    if currency_id is not UNSET:
        subscription.currency_id = currency_id
    if metadata_json is not UNSET:
        subscription.metadata_json = metadata_json
    if is_active is not None:
        subscription.is_active = is_active
    return subscription


async def delete_subscription(session: AsyncSession, subscription_id: str) -> bool:
    result = await session.execute(delete(Subscription).where(Subscription.id == subscription_id))
    return int(result.rowcount or 0) == 1
