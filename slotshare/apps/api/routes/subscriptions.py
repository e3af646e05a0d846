from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import StringConstraints

from slotshare.apps.api.deps import Principal, get_current_principal, get_subscription_service
from slotshare.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slotshare.apps.api.response import CamelModel, SuccessEnvelope, success_response
from slotshare.apps.api.schemas import RequestOut, SlotOut, request_out, slot_out
from slotshare.services.slot_assignment import AssignmentOutcome
from slotshare.services.subscriptions import SubscriptionService


router = APIRouter(prefix="/subscriptions", tags=["subscriptions"], responses=DEFAULT_ERROR_RESPONSES)

NonBlankId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]


class SlotRequestBody(CamelModel):
    service_provider_id: NonBlankId
    country_id: NonBlankId | None = None


class SlotRequestResult(CamelModel):
    outcome: AssignmentOutcome
    request: RequestOut
    slot: SlotOut | None = None


@router.post("/request", response_model=SuccessEnvelope[SlotRequestResult])
async def request_slot(
    request: Request,
    payload: SlotRequestBody,
    principal: Principal = Depends(get_current_principal),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    # No capacity is still a 200: the request is queued as PENDING.
    result = await service.request_subscription_slot(
        principal.user_id, payload.service_provider_id, payload.country_id
    )
    data = SlotRequestResult(
        outcome=result.outcome,
        request=request_out(result.request),
        slot=slot_out(result.slot) if result.slot is not None else None,
    )
    return success_response(request=request, data=data, message=result.message)


@router.get("/my-slots", response_model=SuccessEnvelope[list[SlotOut]])
async def my_slots(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    rows = await service.list_user_slots(principal.user_id)
    data = [slot_out(slot, subscription) for slot, subscription in rows]
    return success_response(request=request, data=data, message="Subscription slots retrieved successfully")


@router.get("/my-requests", response_model=SuccessEnvelope[list[RequestOut]])
async def my_requests(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    requests = await service.list_user_requests(principal.user_id)
    return success_response(request=request, data=[request_out(item) for item in requests])


@router.post("/requests/{request_id}/cancel", response_model=SuccessEnvelope[RequestOut])
async def cancel_request(
    request: Request,
    request_id: str,
    principal: Principal = Depends(get_current_principal),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    cancelled = await service.cancel_request(principal.user_id, request_id)
    return success_response(request=request, data=request_out(cancelled), message="Request cancelled")
