from __future__ import annotations

import pytest

from slotshare.persistence.repos import subscriptions as subscriptions_repo
from slotshare.services.slot_assignment import AssignmentOutcome, SlotAssignmentEngine
from slotshare.tests.utils.factories import (
    PROVIDER_ID,
    count_active_slots,
    create_subscription,
    create_user,
    get_subscription,
)


@pytest.mark.asyncio
async def test_lost_reservation_reselects_and_assigns(monkeypatch, database, engine) -> None:
    subscription = await create_subscription(database, available_slots=2)
    user = await create_user(database)
    real_decrement = subscriptions_repo.decrement_available_slots
    calls = {"count": 0}

    async def lose_first_race(session, subscription_id, *, now):
        # Simulate a concurrent caller taking the slot between selection and reservation.
        calls["count"] += 1
        if calls["count"] == 1:
            return False
        return await real_decrement(session, subscription_id, now=now)

    monkeypatch.setattr(subscriptions_repo, "decrement_available_slots", lose_first_race)

    result = await engine.assign_slot_to_user(user.id, PROVIDER_ID)

    assert result.outcome is AssignmentOutcome.ASSIGNED
    assert result.attempts == 2
    assert (await get_subscription(database, subscription.id)).available_slots == 1
    assert await count_active_slots(database, subscription.id) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_fall_back_to_pending(monkeypatch, database, settings) -> None:
    subscription = await create_subscription(database, available_slots=1)
    user = await create_user(database)
    engine = SlotAssignmentEngine(database, settings=settings, max_attempts=3)
    calls = {"count": 0}

    async def always_lose(session, subscription_id, *, now):
        calls["count"] += 1
        return False

    monkeypatch.setattr(subscriptions_repo, "decrement_available_slots", always_lose)

    result = await engine.assign_slot_to_user(user.id, PROVIDER_ID)

    assert calls["count"] == 3
    assert result.success is True
    assert result.outcome is AssignmentOutcome.PENDING
    assert result.slot is None
    assert result.request.status == "PENDING"
    # Rolled-back attempts leave no trace: no slot rows and no capacity change.
    assert (await get_subscription(database, subscription.id)).available_slots == 1
    assert await count_active_slots(database) == 0
