from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from slotshare.core.errors import DomainValidationError
from slotshare.domain.models import SubscriptionRequest
from slotshare.domain.state import SubscriptionRequestStatus, ensure_request_transition


@dataclass(frozen=True)
class PendingQueueFilter:
    service_provider_id: str
    # When set, the queue holds requests for this country plus requests with no preference.
    country_id: str | None = None

    def clauses(self) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = [
            SubscriptionRequest.service_provider_id == self.service_provider_id,
            SubscriptionRequest.status == SubscriptionRequestStatus.PENDING.value,
        ]
        if self.country_id is not None:
            clauses.append(
                or_(
                    SubscriptionRequest.country_id == self.country_id,
                    SubscriptionRequest.country_id.is_(None),
                )
            )
        return clauses


async def create_request(
    session: AsyncSession,
    *,
    request_id: str,
    user_id: str,
    service_provider_id: str,
    country_id: str | None,
    requested_at: datetime,
    status: SubscriptionRequestStatus = SubscriptionRequestStatus.PENDING,
    metadata_json: dict[str, Any] | None = None,
) -> SubscriptionRequest:
    request = SubscriptionRequest(
        id=request_id,
        user_id=user_id,
        service_provider_id=service_provider_id,
        country_id=country_id,
        status=status.value,
        requested_at=requested_at,
        metadata_json=metadata_json,
        created_at=requested_at,
        updated_at=requested_at,
    )
    session.add(request)
    return request


async def get_request(
    session: AsyncSession, request_id: str, *, for_update: bool = False
) -> SubscriptionRequest | None:
    stmt = select(SubscriptionRequest).where(SubscriptionRequest.id == request_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_pending(
    session: AsyncSession,
    *,
    user_id: str,
    service_provider_id: str,
    country_id: str | None,
) -> SubscriptionRequest | None:
    # Country match is exact: a no-preference request and a country-scoped one are distinct asks.
    country_clause = (
        SubscriptionRequest.country_id.is_(None)
        if country_id is None
        else SubscriptionRequest.country_id == country_id
    )
    result = await session.execute(
        select(SubscriptionRequest)
        .where(
            SubscriptionRequest.user_id == user_id,
            SubscriptionRequest.service_provider_id == service_provider_id,
            SubscriptionRequest.status == SubscriptionRequestStatus.PENDING.value,
            country_clause,
        )
        .order_by(SubscriptionRequest.requested_at, SubscriptionRequest.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_pending_queue(
    session: AsyncSession,
    queue: PendingQueueFilter,
    *,
    limit: int | None = None,
    after: tuple[datetime, str] | None = None,
) -> list[SubscriptionRequest]:
    # Strict FIFO: first asked, first served; id breaks identical timestamps.
    stmt = (
        select(SubscriptionRequest)
        .where(*queue.clauses())
        .order_by(SubscriptionRequest.requested_at.asc(), SubscriptionRequest.id.asc())
    )
    if after is not None:
        # Keyset cursor: resume strictly after the last (requested_at, id) already read.
        requested_at, request_id = after
        stmt = stmt.where(
            or_(
                SubscriptionRequest.requested_at > requested_at,
                and_(
                    SubscriptionRequest.requested_at == requested_at,
                    SubscriptionRequest.id > request_id,
                ),
            )
        )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_for_user(session: AsyncSession, user_id: str) -> list[SubscriptionRequest]:
    result = await session.execute(
        select(SubscriptionRequest)
        .where(SubscriptionRequest.user_id == user_id)
        .order_by(SubscriptionRequest.requested_at.desc(), SubscriptionRequest.id)
    )
    return list(result.scalars().all())


def mark_assigned(request: SubscriptionRequest, *, slot_id: str, now: datetime) -> SubscriptionRequest:
    request.status = ensure_request_transition(request.status, SubscriptionRequestStatus.ASSIGNED).value
    request.assigned_slot_id = slot_id
    request.processed_at = now
    request.updated_at = now
    return request


def mark_closed(
    request: SubscriptionRequest,
    *,
    status: SubscriptionRequestStatus,
    now: datetime,
    reason: str | None = None,
) -> SubscriptionRequest:
    # REJECTED and CANCELLED close the request without a slot.
    if status is SubscriptionRequestStatus.ASSIGNED:
        raise DomainValidationError("Assigned requests must reference a slot")
    request.status = ensure_request_transition(request.status, status).value
    request.processed_at = now
    request.updated_at = now
    if reason:
        request.metadata_json = {**(request.metadata_json or {}), "reason": reason}
    return request
