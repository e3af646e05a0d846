from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from slotshare.persistence.repos import subscriptions as subscriptions_repo
from slotshare.services.drainer import PendingRequestDrainer
from slotshare.services.slot_assignment import AssignmentOutcome
from slotshare.services.subscriptions import SubscriptionCreate, SubscriptionUpdate
from slotshare.tests.utils.factories import (
    COUNTRY_DE,
    COUNTRY_US,
    PROVIDER_ID,
    count_active_slots,
    create_active_slot,
    create_subscription,
    create_user,
    get_request,
    get_subscription,
    minutes_ago,
    set_available_slots,
    utc_now,
)


async def _queue_users(engine, count: int, country_id: str | None = None) -> list[str]:
    request_ids = []
    for _ in range(count):
        user = await create_user(engine.database)
        result = await engine.assign_slot_to_user(user.id, PROVIDER_ID, country_id)
        assert result.outcome is AssignmentOutcome.PENDING
        request_ids.append(result.request.id)
    return request_ids


@pytest.mark.asyncio
async def test_drain_serves_oldest_requests_first(database, engine, settings) -> None:
    subscription = await create_subscription(database, available_slots=0)
    first, second, third = await _queue_users(engine, 3)
    await set_available_slots(database, subscription.id, 2)

    report = await PendingRequestDrainer(engine, settings=settings).drain(PROVIDER_ID)

    assert report.assigned == 2
    assert report.assigned_request_ids == [first, second]
    assert report.exhausted is True
    assert (await get_request(database, first)).status == "ASSIGNED"
    assert (await get_request(database, second)).status == "ASSIGNED"
    assert (await get_request(database, third)).status == "PENDING"
    assert (await get_subscription(database, subscription.id)).available_slots == 0


@pytest.mark.asyncio
async def test_repeated_drain_is_a_no_op(database, engine, settings) -> None:
    subscription = await create_subscription(database, available_slots=0)
    request_ids = await _queue_users(engine, 2)
    await set_available_slots(database, subscription.id, 1)
    drainer = PendingRequestDrainer(engine, settings=settings)

    first_run = await drainer.drain(PROVIDER_ID)
    second_run = await drainer.drain(PROVIDER_ID)

    assert first_run.assigned == 1
    assert second_run.assigned == 0
    assert second_run.exhausted is True
    assert (await get_request(database, request_ids[1])).status == "PENDING"
    assert await count_active_slots(database, subscription.id) == 1


@pytest.mark.asyncio
async def test_terminal_request_is_skipped(database, engine, service) -> None:
    await create_subscription(database, available_slots=0)
    user = await create_user(database)
    pending = await engine.assign_slot_to_user(user.id, PROVIDER_ID)
    await service.cancel_request(user.id, pending.request.id)
    await create_subscription(database, available_slots=1)

    result = await engine.assign_slot_to_user(user.id, PROVIDER_ID, request_id=pending.request.id)

    assert result.success is False
    assert result.outcome is AssignmentOutcome.SKIPPED
    assert (await get_request(database, pending.request.id)).status == "CANCELLED"
    assert await count_active_slots(database) == 0


@pytest.mark.asyncio
async def test_country_scoped_drain_includes_requests_without_preference(database, engine, settings) -> None:
    us_account = await create_subscription(database, available_slots=0, country_id=COUNTRY_US)
    (us_request,) = await _queue_users(engine, 1, COUNTRY_US)
    (any_request,) = await _queue_users(engine, 1)
    (de_request,) = await _queue_users(engine, 1, COUNTRY_DE)
    await set_available_slots(database, us_account.id, 3)

    report = await PendingRequestDrainer(engine, settings=settings).drain(PROVIDER_ID, COUNTRY_US)

    assert report.assigned_request_ids == [us_request, any_request]
    assert (await get_request(database, de_request)).status == "PENDING"
    assert (await get_subscription(database, us_account.id)).available_slots == 1


@pytest.mark.asyncio
async def test_request_for_unserved_country_keeps_its_place(database, engine, settings) -> None:
    shared = await create_subscription(database, available_slots=0)
    (de_request,) = await _queue_users(engine, 1, COUNTRY_DE)
    (any_request,) = await _queue_users(engine, 1)
    await set_available_slots(database, shared.id, 1)

    report = await PendingRequestDrainer(engine, settings=settings).drain(PROVIDER_ID)

    # Only country-less capacity exists, so the DE request waits while the next one is served.
    assert report.still_pending == 1
    assert report.assigned_request_ids == [any_request]
    assert (await get_request(database, de_request)).status == "PENDING"


@pytest.mark.asyncio
async def test_capacity_increase_assigns_pending_request(database, service) -> None:
    subscription = await create_subscription(database, available_slots=0)
    user = await create_user(database)

    queued = await service.request_subscription_slot(user.id, PROVIDER_ID)
    assert queued.outcome is AssignmentOutcome.PENDING

    await service.update_subscription(subscription.id, SubscriptionUpdate(available_slots=1))

    request = await get_request(database, queued.request.id)
    assert request.status == "ASSIGNED"
    assert request.assigned_slot_id is not None
    assert (await get_subscription(database, subscription.id)).available_slots == 0
    slots = await service.list_user_slots(user.id)
    assert [subscription_row.id for _slot, subscription_row in slots] == [subscription.id]


@pytest.mark.asyncio
async def test_released_slot_goes_to_next_in_queue(database, engine, service) -> None:
    subscription = await create_subscription(database, available_slots=1)
    holder = await create_user(database)
    held = await engine.assign_slot_to_user(holder.id, PROVIDER_ID)
    (waiting,) = await _queue_users(engine, 1)

    await service.release_slot(held.slot.id)

    assert (await get_request(database, waiting)).status == "ASSIGNED"
    assert (await get_subscription(database, subscription.id)).available_slots == 0


@pytest.mark.asyncio
async def test_storage_error_on_one_request_does_not_stop_the_drain(
    monkeypatch, database, engine, settings
) -> None:
    subscription = await create_subscription(database, available_slots=0)
    first, second = await _queue_users(engine, 2)
    await set_available_slots(database, subscription.id, 2)
    real_list_available = subscriptions_repo.list_available
    calls = {"count": 0}

    async def fail_once(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("SELECT subscriptions", {}, Exception("connection reset"))
        return await real_list_available(*args, **kwargs)

    monkeypatch.setattr(subscriptions_repo, "list_available", fail_once)

    report = await PendingRequestDrainer(engine, settings=settings).drain(PROVIDER_ID)

    assert report.failed == 1
    assert report.examined == 2
    assert report.assigned_request_ids == [second]
    assert (await get_request(database, first)).status == "PENDING"
    assert (await get_request(database, second)).status == "ASSIGNED"
    assert (await get_subscription(database, subscription.id)).available_slots == 1


@pytest.mark.asyncio
async def test_user_already_holding_a_slot_is_counted_as_failed(database, engine, settings) -> None:
    held_on = await create_subscription(database, available_slots=0)
    open_account = await create_subscription(database, available_slots=0)
    holder_request, waiting_request = await _queue_users(engine, 2)
    holder = await get_request(database, holder_request)
    await create_active_slot(database, user_id=holder.user_id, subscription_id=held_on.id)
    await set_available_slots(database, open_account.id, 2)

    report = await PendingRequestDrainer(engine, settings=settings).drain(PROVIDER_ID)

    assert report.failed == 1
    assert report.assigned_request_ids == [waiting_request]
    assert (await get_request(database, holder_request)).status == "PENDING"
    assert (await get_subscription(database, open_account.id)).available_slots == 1


@pytest.mark.asyncio
async def test_drain_reads_the_queue_past_one_batch(database, engine, settings) -> None:
    shared = await create_subscription(database, available_slots=0)
    de_requests = await _queue_users(engine, 2, COUNTRY_DE)
    (any_request,) = await _queue_users(engine, 1)
    await set_available_slots(database, shared.id, 1)

    report = await PendingRequestDrainer(engine, batch_size=1, settings=settings).drain(PROVIDER_ID)

    assert report.examined == 3
    assert report.still_pending == 2
    assert report.assigned_request_ids == [any_request]
    for request_id in de_requests:
        assert (await get_request(database, request_id)).status == "PENDING"


@pytest.mark.asyncio
async def test_failed_follow_up_drain_keeps_the_committed_write(monkeypatch, database, service) -> None:
    user = await create_user(database)
    queued = await service.request_subscription_slot(user.id, PROVIDER_ID)
    assert queued.outcome is AssignmentOutcome.PENDING

    async def broken_drain(service_provider_id, country_id=None):
        raise OperationalError("SELECT subscription_requests", {}, Exception("connection reset"))

    monkeypatch.setattr(service.drainer, "drain", broken_drain)

    created = await service.create_subscription(
        SubscriptionCreate(
            service_provider_id=PROVIDER_ID,
            name="Family plan",
            email="family@example.com",
            password="s3cret-pass",
            available_slots=2,
        )
    )

    page = await service.list_subscriptions()
    assert [item.email for item in page.items] == ["family@example.com"]
    assert created.available_slots == 2
    assert (await get_request(database, queued.request.id)).status == "PENDING"


@pytest.mark.asyncio
async def test_moving_account_to_requested_country_drains_queue(database, engine, service) -> None:
    subscription = await create_subscription(database, available_slots=1, country_id=COUNTRY_DE)
    (us_request,) = await _queue_users(engine, 1, COUNTRY_US)

    await service.update_subscription(subscription.id, SubscriptionUpdate(country_id=COUNTRY_US))

    assert (await get_request(database, us_request)).status == "ASSIGNED"
    assert (await get_subscription(database, subscription.id)).available_slots == 0


@pytest.mark.asyncio
async def test_extending_expired_account_drains_queue(database, engine, service) -> None:
    subscription = await create_subscription(database, available_slots=1, expires_at=minutes_ago(5))
    (waiting,) = await _queue_users(engine, 1)

    await service.update_subscription(
        subscription.id, SubscriptionUpdate(expires_at=utc_now() + timedelta(days=30))
    )

    assert (await get_request(database, waiting)).status == "ASSIGNED"
    assert await count_active_slots(database, subscription.id) == 1
