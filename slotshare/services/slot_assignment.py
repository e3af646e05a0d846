from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Callable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from slotshare.core.config import Settings, get_settings
from slotshare.core.errors import AlreadyAssignedError, ConflictError, NotFoundError, ReservationLostError
from slotshare.domain.models import Subscription, SubscriptionRequest, SubscriptionSlot
from slotshare.domain.state import SelectionPolicy, SubscriptionRequestStatus, parse_selection_policy
from slotshare.persistence.db import Database
from slotshare.persistence.repos import catalog as catalog_repo
from slotshare.persistence.repos import requests as requests_repo
from slotshare.persistence.repos import slots as slots_repo
from slotshare.persistence.repos import subscriptions as subscriptions_repo
from slotshare.persistence.repos import users as users_repo
from slotshare.persistence.repos.subscriptions import AvailabilityFilter


logger = logging.getLogger(__name__)

MESSAGE_ASSIGNED = "Slot successfully assigned"
MESSAGE_PENDING = (
    "All subscription slots are currently full. Your request is pending and will be "
    "assigned as soon as a slot becomes available."
)
MESSAGE_SKIPPED = "Request is no longer pending"


class AssignmentOutcome(str, Enum):
    ASSIGNED = "assigned"
    PENDING = "pending"
    # The driving request reached a terminal status before this attempt; it is never reprocessed.
    SKIPPED = "skipped"


@dataclass(frozen=True)
class AssignmentResult:
    success: bool
    outcome: AssignmentOutcome
    request: SubscriptionRequest
    message: str
    slot: SubscriptionSlot | None = None
    attempts: int = 1


@dataclass(frozen=True)
class ReleasedSlot:
    slot: SubscriptionSlot
    service_provider_id: str
    country_id: str | None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SlotAssignmentEngine:
    """Assign users to subscription accounts with spare capacity.

    Every attempt runs in one scoped transaction that locks the user, re-checks the
    one-active-slot-per-provider rule, picks a candidate by the configured
    :class:`SelectionPolicy`, and reserves it with a conditional decrement. A
    reservation that loses a race re-runs selection against current state, up to
    ``assignment_max_attempts`` times, before the request is queued as PENDING.
    """

    def __init__(
        self,
        database: Database,
        *,
        settings: Settings | None = None,
        policy: SelectionPolicy | str | None = None,
        max_attempts: int | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        resolved = settings or get_settings()
        self.database = database
        self.policy = parse_selection_policy(policy or resolved.assignment_selection_policy)
        self.max_attempts = max(1, int(max_attempts or resolved.assignment_max_attempts))
        self._now = time_provider or _utc_now

    async def assign_slot_to_user(
        self,
        user_id: str,
        service_provider_id: str,
        country_id: str | None = None,
        *,
        request_id: str | None = None,
    ) -> AssignmentResult:
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.database.transaction() as session:
                    return await self._attempt(
                        session,
                        user_id=user_id,
                        service_provider_id=service_provider_id,
                        country_id=country_id,
                        request_id=request_id,
                        attempt=attempt,
                        reserve=True,
                    )
            except ReservationLostError:
                logger.info(
                    "slot_reservation_lost user_id=%s service_provider_id=%s attempt=%s",
                    user_id,
                    service_provider_id,
                    attempt,
                )
                # Yield so the winning transaction can settle before re-selecting.
                await asyncio.sleep(0)

        # Every attempt lost its race; degrade to queueing instead of failing the caller.
        async with self.database.transaction() as session:
            return await self._attempt(
                session,
                user_id=user_id,
                service_provider_id=service_provider_id,
                country_id=country_id,
                request_id=request_id,
                attempt=self.max_attempts,
                reserve=False,
            )

    async def find_available_slot(
        self, service_provider_id: str, country_id: str | None = None
    ) -> Subscription | None:
        # Read-only preview of the candidate the next assignment would pick.
        async with self.database.session() as session:
            candidates = await subscriptions_repo.list_available(
                session,
                AvailabilityFilter(
                    service_provider_id=service_provider_id,
                    country_id=country_id,
                    now=self._now(),
                ),
                policy=self.policy,
                limit=1,
            )
        return candidates[0] if candidates else None

    async def validate_slot_assignment(self, subscription_id: str) -> bool:
        async with self.database.session() as session:
            return await subscriptions_repo.is_assignable(session, subscription_id, now=self._now())

    async def release_slot(self, slot_id: str, *, user_id: str | None = None) -> ReleasedSlot:
        # Deactivate the grant and return its unit of capacity in the same transaction.
        async with self.database.transaction() as session:
            now = self._now()
            slot = await slots_repo.get_slot(session, slot_id, for_update=True)
            if slot is None or (user_id is not None and slot.user_id != user_id):
                raise NotFoundError("slot", slot_id)
            if not slot.is_active:
                raise ConflictError("Slot has already been released")
            subscription = await subscriptions_repo.get_subscription(session, slot.subscription_id)
            if subscription is None:
                raise NotFoundError("subscription", slot.subscription_id)
            await slots_repo.deactivate_slot(session, slot, now=now)
            await subscriptions_repo.increment_available_slots(session, subscription.id, now=now)
            logger.info(
                "slot_released slot_id=%s user_id=%s subscription_id=%s",
                slot.id,
                slot.user_id,
                subscription.id,
            )
            return ReleasedSlot(
                slot=slot,
                service_provider_id=subscription.service_provider_id,
                country_id=subscription.country_id,
            )

    async def _attempt(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        service_provider_id: str,
        country_id: str | None,
        request_id: str | None,
        attempt: int,
        reserve: bool,
    ) -> AssignmentResult:
        now = self._now()
        # Lock first so the duplicate-slot check and the reservation see one consistent view.
        if await users_repo.lock_user(session, user_id) is None:
            raise NotFoundError("user", user_id)

        request: SubscriptionRequest | None = None
        if request_id is not None:
            request = await requests_repo.get_request(session, request_id, for_update=True)
            if request is None or request.user_id != user_id:
                raise NotFoundError("subscription_request", request_id)
            if request.status != SubscriptionRequestStatus.PENDING.value:
                return AssignmentResult(
                    success=False,
                    outcome=AssignmentOutcome.SKIPPED,
                    request=request,
                    message=MESSAGE_SKIPPED,
                    attempts=attempt,
                )

        if await catalog_repo.get_service_provider(session, service_provider_id) is None:
            raise NotFoundError("service_provider", service_provider_id)
        if country_id is not None and await catalog_repo.get_country(session, country_id) is None:
            raise NotFoundError("country", country_id)

        if await slots_repo.find_active_for_provider(session, user_id, service_provider_id) is not None:
            raise AlreadyAssignedError(user_id, service_provider_id)

        target: Subscription | None = None
        if reserve:
            candidates = await subscriptions_repo.list_available(
                session,
                AvailabilityFilter(
                    service_provider_id=service_provider_id,
                    country_id=country_id,
                    now=now,
                ),
                policy=self.policy,
                limit=1,
            )
            target = candidates[0] if candidates else None

        if target is None:
            return await self._record_pending(
                session,
                request=request,
                user_id=user_id,
                service_provider_id=service_provider_id,
                country_id=country_id,
                now=now,
                attempt=attempt,
            )

        if not await subscriptions_repo.decrement_available_slots(session, target.id, now=now):
            raise ReservationLostError(f"subscription {target.id} has no remaining slots")

        slot = await slots_repo.create_slot(
            session,
            slot_id=uuid4().hex,
            user_id=user_id,
            subscription_id=target.id,
            assigned_at=now,
        )
        if request is None:
            request = await requests_repo.find_pending(
                session,
                user_id=user_id,
                service_provider_id=service_provider_id,
                country_id=country_id,
            )
        if request is None:
            request = await requests_repo.create_request(
                session,
                request_id=uuid4().hex,
                user_id=user_id,
                service_provider_id=service_provider_id,
                country_id=country_id,
                requested_at=now,
            )
        requests_repo.mark_assigned(request, slot_id=slot.id, now=now)
        logger.info(
            "slot_assigned user_id=%s subscription_id=%s slot_id=%s request_id=%s attempt=%s",
            user_id,
            target.id,
            slot.id,
            request.id,
            attempt,
        )
        return AssignmentResult(
            success=True,
            outcome=AssignmentOutcome.ASSIGNED,
            request=request,
            slot=slot,
            message=MESSAGE_ASSIGNED,
            attempts=attempt,
        )

    async def _record_pending(
        self,
        session: AsyncSession,
        *,
        request: SubscriptionRequest | None,
        user_id: str,
        service_provider_id: str,
        country_id: str | None,
        now: datetime,
        attempt: int,
    ) -> AssignmentResult:
        # No capacity is a valid outcome: reuse the open request or queue a new one.
        if request is None:
            request = await requests_repo.find_pending(
                session,
                user_id=user_id,
                service_provider_id=service_provider_id,
                country_id=country_id,
            )
        if request is None:
            request = await requests_repo.create_request(
                session,
                request_id=uuid4().hex,
                user_id=user_id,
                service_provider_id=service_provider_id,
                country_id=country_id,
                requested_at=now,
            )
            logger.info(
                "subscription_request_queued user_id=%s service_provider_id=%s request_id=%s",
                user_id,
                service_provider_id,
                request.id,
            )
        return AssignmentResult(
            success=True,
            outcome=AssignmentOutcome.PENDING,
            request=request,
            message=MESSAGE_PENDING,
            attempts=attempt,
        )
