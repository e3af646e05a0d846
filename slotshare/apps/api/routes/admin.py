from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field

from slotshare.apps.api.deps import Principal, get_subscription_service, require_role
from slotshare.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slotshare.apps.api.response import CamelModel, SuccessEnvelope, success_response
from slotshare.apps.api.schemas import (
    RequestOut,
    SlotOut,
    SubscriptionOut,
    request_out,
    slot_out,
    subscription_out,
)
from slotshare.persistence.repos.subscriptions import SubscriptionQuery
from slotshare.services.subscriptions import SubscriptionCreate, SubscriptionService, SubscriptionUpdate


router = APIRouter(prefix="/admin", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)

_SORT_FIELDS = {
    "name": "name",
    "email": "email",
    "availableSlots": "available_slots",
    "expiresAt": "expires_at",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


class SubscriptionCreateBody(CamelModel):
    service_provider_id: str = Field(min_length=1)
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


class SubscriptionPatchBody(CamelModel):
    name: str | None = None
    email: str | None = None
    password: str | None = None
    available_slots: int | None = None
    is_active: bool | None = None
    country_id: str | None = None
    expires_at: datetime | None = None
    renewal_info: dict[str, Any] | None = None
    user_price: Decimal | None = None
    currency_id: str | None = None
    metadata: dict[str, Any] | None = None


class SubscriptionListOut(CamelModel):
    subscriptions: list[SubscriptionOut]
    total: int
    page: int
    limit: int
    has_next: bool
    has_previous: bool


class SubscriptionAvailabilityOut(CamelModel):
    subscription_id: str
    assignable: bool


class ProviderAvailabilityOut(CamelModel):
    service_provider_id: str
    country_id: str | None
    subscription: SubscriptionOut | None


class DrainReportOut(CamelModel):
    service_provider_id: str
    country_id: str | None
    examined: int
    assigned: int
    still_pending: int
    skipped: int
    failed: int
    exhausted: bool
    assigned_request_ids: list[str]


class RejectBody(CamelModel):
    reason: str | None = Field(default=None, max_length=500)


@router.post("/subscriptions", response_model=SuccessEnvelope[SubscriptionOut], status_code=201)
async def create_subscription(
    request: Request,
    payload: SubscriptionCreateBody,
    principal: Principal = Depends(require_role("admin")),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    subscription = await service.create_subscription(
        SubscriptionCreate(**payload.model_dump())
    )
    return success_response(
        request=request, data=subscription_out(subscription), message="Subscription created successfully"
    )


@router.get("/subscriptions", response_model=SuccessEnvelope[SubscriptionListOut])
async def list_subscriptions(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sort_by: Literal["name", "email", "availableSlots", "expiresAt", "createdAt", "updatedAt"] = Query(
        default="createdAt", alias="sortBy"
    ),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    search: str | None = Query(default=None, max_length=200),
    service_provider_id: str | None = Query(default=None, alias="serviceProviderId"),
    country_id: str | None = Query(default=None, alias="countryId"),
    is_active: bool | None = Query(default=None, alias="isActive"),
    principal: Principal = Depends(require_role("admin")),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    result = await service.list_subscriptions(
        SubscriptionQuery(
            page=page,
            limit=limit,
            sort_by=_SORT_FIELDS[sort_by],  # type: ignore[arg-type]
            sort_order=sort_order,
            search=search,
            service_provider_id=service_provider_id,
            country_id=country_id,
            is_active=is_active,
        )
    )
    data = SubscriptionListOut(
        subscriptions=[subscription_out(item) for item in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        has_next=result.has_next,
        has_previous=result.has_previous,
    )
    return success_response(request=request, data=data)


@router.get("/subscriptions/{subscription_id}", response_model=SuccessEnvelope[SubscriptionOut])
async def get_subscription(
    request: Request,
    subscription_id: str,
    principal: Principal = Depends(require_role("admin")),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    subscription = await service.get_subscription(subscription_id)
    return success_response(request=request, data=subscription_out(subscription))


@router.patch("/subscriptions/{subscription_id}", response_model=SuccessEnvelope[SubscriptionOut])
async def update_subscription(
    request: Request,
    subscription_id: str,
    payload: SubscriptionPatchBody,
    principal: Principal = Depends(require_role("admin")),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    # exclude_unset keeps explicit nulls (clear the field) apart from omitted keys.
    changes = SubscriptionUpdate.from_fields(payload.model_dump(exclude_unset=True))
    subscription = await service.update_subscription(subscription_id, changes)
    return success_response(
        request=request, data=subscription_out(subscription), message="Subscription updated successfully"
    )


@router.delete("/subscriptions/{subscription_id}", response_model=SuccessEnvelope[None])
async def delete_subscription(
    request: Request,
    subscription_id: str,
    principal: Principal = Depends(require_role("admin")),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    await service.delete_subscription(subscription_id)
    return success_response(request=request, data=None, message="Subscription deleted successfully")


@router.get(
    "/subscriptions/{subscription_id}/availability",
    response_model=SuccessEnvelope[SubscriptionAvailabilityOut],
)
async def subscription_availability(
    request: Request,
    subscription_id: str,
    principal: Principal = Depends(require_role("admin")),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    assignable = await service.engine.validate_slot_assignment(subscription_id)
    data = SubscriptionAvailabilityOut(subscription_id=subscription_id, assignable=assignable)
    return success_response(request=request, data=data)


@router.get(
    "/service-providers/{service_provider_id}/availability",
    response_model=SuccessEnvelope[ProviderAvailabilityOut],
)
async def provider_availability(
    request: Request,
    service_provider_id: str,
    country_id: str | None = Query(default=None, alias="countryId"),
    principal: Principal = Depends(require_role("admin")),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    # Preview only: the next assignment re-selects inside its own transaction.
    candidate = await service.engine.find_available_slot(service_provider_id, country_id)
    data = ProviderAvailabilityOut(
        service_provider_id=service_provider_id,
        country_id=country_id,
        subscription=subscription_out(candidate) if candidate is not None else None,
    )
    return success_response(request=request, data=data)


@router.post(
    "/service-providers/{service_provider_id}/drain",
    response_model=SuccessEnvelope[DrainReportOut],
)
async def drain_pending_requests(
    request: Request,
    service_provider_id: str,
    country_id: str | None = Query(default=None, alias="countryId"),
    principal: Principal = Depends(require_role("admin")),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    report = await service.drain(service_provider_id, country_id)
    data = DrainReportOut(
        service_provider_id=report.service_provider_id,
        country_id=report.country_id,
        examined=report.examined,
        assigned=report.assigned,
        still_pending=report.still_pending,
        skipped=report.skipped,
        failed=report.failed,
        exhausted=report.exhausted,
        assigned_request_ids=report.assigned_request_ids,
    )
    return success_response(request=request, data=data)


@router.post(
    "/subscription-requests/{request_id}/reject",
    response_model=SuccessEnvelope[RequestOut],
)
async def reject_request(
    request: Request,
    request_id: str,
    payload: RejectBody | None = None,
    principal: Principal = Depends(require_role("admin")),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    rejected = await service.reject_request(request_id, payload.reason if payload else None)
    return success_response(request=request, data=request_out(rejected), message="Request rejected")


@router.delete("/slots/{slot_id}", response_model=SuccessEnvelope[SlotOut])
async def release_slot(
    request: Request,
    slot_id: str,
    principal: Principal = Depends(require_role("admin")),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    released = await service.release_slot(slot_id)
    return success_response(request=request, data=slot_out(released.slot), message="Slot released")
