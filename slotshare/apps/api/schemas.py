from __future__ import annotations

from datetime import datetime
from typing import Any

from slotshare.apps.api.response import CamelModel
from slotshare.domain.models import (
    Country,
    ServiceProvider,
    Subscription,
    SubscriptionRequest,
    SubscriptionSlot,
    User,
)


class UserOut(CamelModel):
    id: str
    email: str
    name: str | None
    role: str
    is_active: bool
    created_at: datetime | None


class CountryOut(CamelModel):
    id: str
    name: str
    code: str
    alpha3: str
    currency_id: str | None
    is_active: bool


class ServiceProviderOut(CamelModel):
    id: str
    name: str
    description: str | None
    metadata: dict[str, Any] | None
    is_active: bool
    countries: list[CountryOut] = []


class SubscriptionOut(CamelModel):
    # Credentials are never serialized; only the login email is exposed.
    id: str
    service_provider_id: str
    country_id: str | None
    name: str
    email: str
    available_slots: int
    expires_at: datetime | None
    renewal_info: dict[str, Any] | None
    user_price: str | None
    currency_id: str | None
    metadata: dict[str, Any] | None
    is_active: bool
    created_at: datetime | None
    updated_at: datetime | None


class SlotSubscriptionSummary(CamelModel):
    id: str
    name: str
    email: str
    service_provider_id: str
    country_id: str | None
    user_price: str | None
    currency_id: str | None
    expires_at: datetime | None


class SlotOut(CamelModel):
    id: str
    user_id: str
    subscription_id: str
    assigned_at: datetime | None
    is_active: bool
    released_at: datetime | None
    subscription: SlotSubscriptionSummary | None = None


class RequestOut(CamelModel):
    id: str
    user_id: str
    service_provider_id: str
    country_id: str | None
    status: str
    assigned_slot_id: str | None
    requested_at: datetime | None
    processed_at: datetime | None
    metadata: dict[str, Any] | None
    created_at: datetime | None
    updated_at: datetime | None


def user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        is_active=user.is_active,
        created_at=user.created_at,
    )


def country_out(country: Country) -> CountryOut:
    return CountryOut(
        id=country.id,
        name=country.name,
        code=country.code,
        alpha3=country.alpha3,
        currency_id=country.currency_id,
        is_active=country.is_active,
    )


def service_provider_out(provider: ServiceProvider, countries: list[Country] | None = None) -> ServiceProviderOut:
    return ServiceProviderOut(
        id=provider.id,
        name=provider.name,
        description=provider.description,
        metadata=provider.metadata_json,
        is_active=provider.is_active,
        countries=[country_out(country) for country in countries or []],
    )


def _price(value: Any) -> str | None:
    # Decimal prices travel as strings to keep their scale.
    return None if value is None else str(value)


def subscription_out(subscription: Subscription) -> SubscriptionOut:
    return SubscriptionOut(
        id=subscription.id,
        service_provider_id=subscription.service_provider_id,
        country_id=subscription.country_id,
        name=subscription.name,
        email=subscription.email,
        available_slots=subscription.available_slots,
        expires_at=subscription.expires_at,
        renewal_info=subscription.renewal_info,
        user_price=_price(subscription.user_price),
        currency_id=subscription.currency_id,
        metadata=subscription.metadata_json,
        is_active=subscription.is_active,
        created_at=subscription.created_at,
        updated_at=subscription.updated_at,
    )


def slot_out(slot: SubscriptionSlot, subscription: Subscription | None = None) -> SlotOut:
    summary = None
    if subscription is not None:
        summary = SlotSubscriptionSummary(
            id=subscription.id,
            name=subscription.name,
            email=subscription.email,
            service_provider_id=subscription.service_provider_id,
            country_id=subscription.country_id,
            user_price=_price(subscription.user_price),
            currency_id=subscription.currency_id,
            expires_at=subscription.expires_at,
        )
    return SlotOut(
        id=slot.id,
        user_id=slot.user_id,
        subscription_id=slot.subscription_id,
        assigned_at=slot.assigned_at,
        is_active=slot.is_active,
        released_at=slot.released_at,
        subscription=summary,
    )


def request_out(request: SubscriptionRequest) -> RequestOut:
    return RequestOut(
        id=request.id,
        user_id=request.user_id,
        service_provider_id=request.service_provider_id,
        country_id=request.country_id,
        status=request.status,
        assigned_slot_id=request.assigned_slot_id,
        requested_at=request.requested_at,
        processed_at=request.processed_at,
        metadata=request.metadata_json,
        created_at=request.created_at,
        updated_at=request.updated_at,
    )
