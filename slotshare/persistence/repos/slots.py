from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slotshare.domain.models import Subscription, SubscriptionSlot


async def create_slot(
    session: AsyncSession,
    *,
    slot_id: str,
    user_id: str,
    subscription_id: str,
    assigned_at: datetime,
) -> SubscriptionSlot:
    slot = SubscriptionSlot(
        id=slot_id,
        user_id=user_id,
        subscription_id=subscription_id,
        assigned_at=assigned_at,
        is_active=True,
        created_at=assigned_at,
        updated_at=assigned_at,
    )
    session.add(slot)
    # Flush so the request row can reference the slot id under FK enforcement.
    await session.flush()
    return slot


async def get_slot(session: AsyncSession, slot_id: str, *, for_update: bool = False) -> SubscriptionSlot | None:
    stmt = select(SubscriptionSlot).where(SubscriptionSlot.id == slot_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_active_for_provider(
    session: AsyncSession, user_id: str, service_provider_id: str
) -> SubscriptionSlot | None:
    # A user may hold at most one active slot per provider, across all of its subscriptions.
    result = await session.execute(
        select(SubscriptionSlot)
        .join(Subscription, SubscriptionSlot.subscription_id == Subscription.id)
        .where(
            SubscriptionSlot.user_id == user_id,
            SubscriptionSlot.is_active.is_(True),
            Subscription.service_provider_id == service_provider_id,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_active_for_user(
    session: AsyncSession, user_id: str
) -> list[tuple[SubscriptionSlot, Subscription]]:
    result = await session.execute(
        select(SubscriptionSlot, Subscription)
        .join(Subscription, SubscriptionSlot.subscription_id == Subscription.id)
        .where(SubscriptionSlot.user_id == user_id, SubscriptionSlot.is_active.is_(True))
        .order_by(SubscriptionSlot.assigned_at, SubscriptionSlot.id)
    )
    return [(slot, subscription) for slot, subscription in result.all()]


async def deactivate_slot(session: AsyncSession, slot: SubscriptionSlot, *, now: datetime) -> SubscriptionSlot:
    slot.is_active = False
    slot.released_at = now
    slot.updated_at = now
    return slot
