from __future__ import annotations

from datetime import timedelta

import pytest

from slotshare.domain.state import UserRole
from slotshare.tests.utils.factories import (
    COUNTRY_FR,
    COUNTRY_INACTIVE,
    COUNTRY_US,
    OTHER_PROVIDER_ID,
    PROVIDER_ID,
    auth_headers,
    create_subscription,
    create_user,
    get_subscription,
    utc_now,
)


@pytest.mark.asyncio
async def test_health_reports_ok_with_request_id(client) -> None:
    response = await client.get("/health", headers={"X-Request-Id": "req-health"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "ok"
    assert body["meta"]["request_id"] == "req-health"
    assert response.headers["X-Request-Id"] == "req-health"


@pytest.mark.asyncio
async def test_register_then_login_issues_tokens(client) -> None:
    registered = await client.post(
        "/auth/register",
        json={"email": "Member@Example.com", "password": "secret-pw", "name": "Member"},
    )
    assert registered.status_code == 201
    data = registered.json()["data"]
    assert data["user"]["email"] == "member@example.com"
    assert data["user"]["role"] == "user"
    assert data["accessToken"]

    duplicate = await client.post("/auth/register", json={"email": "member@example.com", "password": "secret-pw"})
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "CONFLICT"

    login = await client.post("/auth/login", json={"email": "member@example.com", "password": "secret-pw"})
    assert login.status_code == 200
    token = login.json()["data"]["accessToken"]
    slots = await client.get("/subscriptions/my-slots", headers={"Authorization": f"Bearer {token}"})
    assert slots.status_code == 200
    assert slots.json()["data"] == []

    bad_login = await client.post("/auth/login", json={"email": "member@example.com", "password": "wrong-pw"})
    assert bad_login.status_code == 401
    assert bad_login.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_request_slot_requires_authentication(client) -> None:
    response = await client.post("/subscriptions/request", json={"serviceProviderId": PROVIDER_ID})
    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "AUTH_UNAUTHORIZED"

    garbage = await client.get("/subscriptions/my-slots", headers={"Authorization": "Bearer not-a-jwt"})
    assert garbage.status_code == 401


@pytest.mark.asyncio
async def test_request_slot_validates_body(client, database, settings) -> None:
    user = await create_user(database)
    headers = auth_headers(user, settings)

    missing = await client.post("/subscriptions/request", json={}, headers=headers)
    blank = await client.post("/subscriptions/request", json={"serviceProviderId": "  "}, headers=headers)

    assert missing.status_code == 400
    assert missing.json()["error"]["code"] == "VALIDATION_ERROR"
    assert blank.status_code == 400


@pytest.mark.asyncio
async def test_request_slot_assigns_then_reports_conflict(client, database, settings) -> None:
    subscription = await create_subscription(database, available_slots=2, country_id=COUNTRY_US)
    user = await create_user(database)
    headers = auth_headers(user, settings)

    response = await client.post(
        "/subscriptions/request",
        json={"serviceProviderId": PROVIDER_ID, "countryId": COUNTRY_US},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Slot successfully assigned"
    assert body["data"]["outcome"] == "assigned"
    assert body["data"]["request"]["status"] == "ASSIGNED"
    assert body["data"]["slot"]["subscriptionId"] == subscription.id

    again = await client.post(
        "/subscriptions/request", json={"service_provider_id": PROVIDER_ID}, headers=headers
    )
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "ALREADY_ASSIGNED"

    slots = await client.get("/subscriptions/my-slots", headers=headers)
    assert slots.status_code == 200
    (slot,) = slots.json()["data"]
    assert slot["subscription"]["id"] == subscription.id
    assert slot["subscription"]["serviceProviderId"] == PROVIDER_ID
    assert "passwordHash" not in slot["subscription"]


@pytest.mark.asyncio
async def test_request_slot_without_capacity_is_pending(client, database, settings) -> None:
    await create_subscription(database, available_slots=0)
    user = await create_user(database)
    headers = auth_headers(user, settings)

    response = await client.post("/subscriptions/request", json={"serviceProviderId": PROVIDER_ID}, headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["request"]["status"] == "PENDING"
    assert body["data"]["slot"] is None
    request_id = body["data"]["request"]["id"]

    mine = await client.get("/subscriptions/my-requests", headers=headers)
    assert [item["id"] for item in mine.json()["data"]] == [request_id]

    cancelled = await client.post(f"/subscriptions/requests/{request_id}/cancel", headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["data"]["status"] == "CANCELLED"
    twice = await client.post(f"/subscriptions/requests/{request_id}/cancel", headers=headers)
    assert twice.status_code == 409
    assert twice.json()["error"]["code"] == "INVALID_STATE_TRANSITION"


@pytest.mark.asyncio
async def test_request_slot_catalog_errors(client, database, settings) -> None:
    user = await create_user(database)
    headers = auth_headers(user, settings)

    unknown_provider = await client.post(
        "/subscriptions/request", json={"serviceProviderId": "sp_missing"}, headers=headers
    )
    unknown_country = await client.post(
        "/subscriptions/request",
        json={"serviceProviderId": PROVIDER_ID, "countryId": "ctry_missing"},
        headers=headers,
    )
    unsupported = await client.post(
        "/subscriptions/request",
        json={"serviceProviderId": PROVIDER_ID, "countryId": COUNTRY_FR},
        headers=headers,
    )
    inactive = await client.post(
        "/subscriptions/request",
        json={"serviceProviderId": PROVIDER_ID, "countryId": COUNTRY_INACTIVE},
        headers=headers,
    )

    assert unknown_provider.status_code == 404
    assert unknown_provider.json()["error"]["message"] == "Service provider not found"
    assert unknown_country.status_code == 404
    assert unsupported.status_code == 422
    assert unsupported.json()["error"]["code"] == "UNSUPPORTED_COUNTRY"
    assert inactive.status_code == 422


@pytest.mark.asyncio
async def test_admin_routes_require_admin_role(client, database, settings) -> None:
    user = await create_user(database)
    response = await client.get("/admin/subscriptions", headers=auth_headers(user, settings))
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "AUTH_FORBIDDEN"


@pytest.mark.asyncio
async def test_admin_subscription_lifecycle(client, database, settings) -> None:
    admin = await create_user(database, role=UserRole.ADMIN.value)
    headers = auth_headers(admin, settings)
    member = await create_user(database)
    member_headers = auth_headers(member, settings)

    queued = await client.post("/subscriptions/request", json={"serviceProviderId": PROVIDER_ID}, headers=member_headers)
    assert queued.json()["data"]["request"]["status"] == "PENDING"

    created = await client.post(
        "/admin/subscriptions",
        json={
            "serviceProviderId": PROVIDER_ID,
            "countryId": COUNTRY_US,
            "name": "Family plan",
            "email": "family@example.com",
            "password": "account-pw",
            "availableSlots": 2,
            "expiresAt": (utc_now() + timedelta(days=30)).isoformat(),
            "userPrice": "4.50",
        },
        headers=headers,
    )
    assert created.status_code == 201
    subscription = created.json()["data"]
    assert subscription["availableSlots"] == 2
    assert subscription["userPrice"] == "4.50"
    assert "password" not in subscription and "passwordHash" not in subscription

    # Creating capacity drained the member's pending request.
    member_slots = await client.get("/subscriptions/my-slots", headers=member_headers)
    assert [slot["subscriptionId"] for slot in member_slots.json()["data"]] == [subscription["id"]]
    assert (await get_subscription(database, subscription["id"])).available_slots == 1

    duplicate = await client.post(
        "/admin/subscriptions",
        json={
            "serviceProviderId": PROVIDER_ID,
            "name": "Copy",
            "email": "FAMILY@example.com",
            "password": "account-pw",
            "availableSlots": 1,
        },
        headers=headers,
    )
    assert duplicate.status_code == 409

    listed = await client.get(
        "/admin/subscriptions",
        params={"serviceProviderId": PROVIDER_ID, "search": "family", "sortBy": "name", "sortOrder": "asc"},
        headers=headers,
    )
    assert listed.status_code == 200
    page = listed.json()["data"]
    assert page["total"] == 1
    assert page["hasNext"] is False and page["hasPrevious"] is False

    patched = await client.patch(
        f"/admin/subscriptions/{subscription['id']}",
        json={"name": "Family plan XL", "availableSlots": 0},
        headers=headers,
    )
    assert patched.status_code == 200
    assert patched.json()["data"]["name"] == "Family plan XL"

    availability = await client.get(f"/admin/subscriptions/{subscription['id']}/availability", headers=headers)
    assert availability.json()["data"]["assignable"] is False
    provider = await client.get(f"/admin/service-providers/{PROVIDER_ID}/availability", headers=headers)
    assert provider.json()["data"]["subscription"] is None

    deleted = await client.delete(f"/admin/subscriptions/{subscription['id']}", headers=headers)
    assert deleted.status_code == 200
    missing = await client.get(f"/admin/subscriptions/{subscription['id']}", headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_list_filters_by_service_provider(client, database, settings) -> None:
    admin = await create_user(database, role=UserRole.ADMIN.value)
    headers = auth_headers(admin, settings)
    stream = await create_subscription(database, available_slots=1)
    music = await create_subscription(database, available_slots=1, service_provider_id=OTHER_PROVIDER_ID)

    by_stream = await client.get("/admin/subscriptions", params={"serviceProviderId": PROVIDER_ID}, headers=headers)
    by_music = await client.get(
        "/admin/subscriptions", params={"serviceProviderId": OTHER_PROVIDER_ID}, headers=headers
    )

    assert [item["id"] for item in by_stream.json()["data"]["subscriptions"]] == [stream.id]
    assert [item["id"] for item in by_music.json()["data"]["subscriptions"]] == [music.id]


@pytest.mark.asyncio
async def test_admin_subscription_validation(client, database, settings) -> None:
    headers = auth_headers(await create_user(database, role=UserRole.ADMIN.value), settings)
    base = {
        "serviceProviderId": PROVIDER_ID,
        "name": "Plan",
        "email": "plan@example.com",
        "password": "account-pw",
        "availableSlots": 1,
    }

    too_many = await client.post("/admin/subscriptions", json={**base, "availableSlots": 101}, headers=headers)
    short_password = await client.post("/admin/subscriptions", json={**base, "password": "123"}, headers=headers)
    past = await client.post(
        "/admin/subscriptions",
        json={**base, "expiresAt": (utc_now() - timedelta(days=1)).isoformat()},
        headers=headers,
    )
    unsupported = await client.post("/admin/subscriptions", json={**base, "countryId": COUNTRY_FR}, headers=headers)

    assert too_many.status_code == 400
    assert short_password.status_code == 400
    assert past.status_code == 400
    assert unsupported.status_code == 422


@pytest.mark.asyncio
async def test_admin_drain_reject_and_release(client, database, settings) -> None:
    headers = auth_headers(await create_user(database, role=UserRole.ADMIN.value), settings)
    subscription = await create_subscription(database, available_slots=1)
    holder = await create_user(database)
    waiter = await create_user(database)
    rejected_user = await create_user(database)

    held = await client.post(
        "/subscriptions/request", json={"serviceProviderId": PROVIDER_ID}, headers=auth_headers(holder, settings)
    )
    slot_id = held.json()["data"]["slot"]["id"]
    waiting = await client.post(
        "/subscriptions/request", json={"serviceProviderId": PROVIDER_ID}, headers=auth_headers(waiter, settings)
    )
    to_reject = await client.post(
        "/subscriptions/request",
        json={"serviceProviderId": PROVIDER_ID},
        headers=auth_headers(rejected_user, settings),
    )
    assert waiting.json()["data"]["request"]["status"] == "PENDING"

    rejected = await client.post(
        f"/admin/subscription-requests/{to_reject.json()['data']['request']['id']}/reject",
        json={"reason": "duplicate account"},
        headers=headers,
    )
    assert rejected.status_code == 200
    assert rejected.json()["data"]["status"] == "REJECTED"
    assert rejected.json()["data"]["metadata"] == {"reason": "duplicate account"}

    drained = await client.post(f"/admin/service-providers/{PROVIDER_ID}/drain", headers=headers)
    assert drained.status_code == 200
    assert drained.json()["data"]["assigned"] == 0
    assert drained.json()["data"]["exhausted"] is True

    released = await client.delete(f"/admin/slots/{slot_id}", headers=headers)
    assert released.status_code == 200
    assert released.json()["data"]["isActive"] is False

    waiter_slots = await client.get("/subscriptions/my-slots", headers=auth_headers(waiter, settings))
    assert [slot["subscriptionId"] for slot in waiter_slots.json()["data"]] == [subscription.id]
    rejected_slots = await client.get("/subscriptions/my-slots", headers=auth_headers(rejected_user, settings))
    assert rejected_slots.json()["data"] == []


@pytest.mark.asyncio
async def test_public_catalog(client) -> None:
    providers = await client.get("/service-providers")
    countries = await client.get("/countries")

    assert providers.status_code == 200
    stream = next(item for item in providers.json()["data"] if item["id"] == PROVIDER_ID)
    assert {country["id"] for country in stream["countries"]} == {"ctry_us", "ctry_de", "ctry_xx"}
    # Inactive countries are hidden from the public list.
    assert "ctry_xx" not in {country["id"] for country in countries.json()["data"]}
