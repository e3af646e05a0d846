from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging

from slotshare.core.config import Settings, get_settings
from slotshare.core.errors import SlotShareError
from slotshare.persistence.repos import requests as requests_repo
from slotshare.persistence.repos.requests import PendingQueueFilter
from slotshare.services.slot_assignment import AssignmentOutcome, AssignmentResult, SlotAssignmentEngine


logger = logging.getLogger(__name__)


@dataclass
class DrainReport:
    service_provider_id: str
    country_id: str | None = None
    examined: int = 0
    assigned: int = 0
    still_pending: int = 0
    skipped: int = 0
    failed: int = 0
    # True when the run stopped early because the scope ran out of capacity.
    exhausted: bool = False
    assigned_request_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "serviceProviderId": self.service_provider_id,
            "countryId": self.country_id,
            "examined": self.examined,
            "assigned": self.assigned,
            "stillPending": self.still_pending,
            "skipped": self.skipped,
            "failed": self.failed,
            "exhausted": self.exhausted,
            "assignedRequestIds": list(self.assigned_request_ids),
        }


class _ScopeExhausted(Exception):
    """Raised inside a drain when the scope has no capacity left."""


class PendingRequestDrainer:
    """Retry queued requests, oldest first, against currently free capacity.

    Each request is handed to the assignment engine with its own ``request_id`` so
    it transitions in place. Re-running a drain is safe: terminal requests are
    skipped and requests that still find no capacity stay PENDING. The queue is
    read in pages of ``batch_size`` until it is empty or the scope runs dry.
    """

    def __init__(
        self,
        engine: SlotAssignmentEngine,
        *,
        batch_size: int | None = None,
        settings: Settings | None = None,
    ) -> None:
        resolved = settings or get_settings()
        self.engine = engine
        self.batch_size = max(1, int(batch_size or resolved.drain_batch_size))

    async def drain(self, service_provider_id: str, country_id: str | None = None) -> DrainReport:
        report = DrainReport(service_provider_id=service_provider_id, country_id=country_id)
        queue = PendingQueueFilter(service_provider_id=service_provider_id, country_id=country_id)
        cursor: tuple[datetime, str] | None = None
        while not report.exhausted:
            async with self.engine.database.session() as session:
                page = await requests_repo.list_pending_queue(
                    session, queue, limit=self.batch_size, after=cursor
                )
                # Capture identity fields before the read session closes.
                pending = [(item.id, item.user_id, item.country_id) for item in page]
                if page:
                    cursor = (page[-1].requested_at, page[-1].id)
            for request_id, user_id, requested_country_id in pending:
                try:
                    result = await self._drain_one(
                        request_id, user_id, service_provider_id, requested_country_id, country_id
                    )
                except _ScopeExhausted:
                    report.exhausted = True
                    break
                except SlotShareError as exc:
                    # One failing request never stops the rest of the queue.
                    report.examined += 1
                    report.failed += 1
                    logger.warning(
                        "pending_request_drain_failed request_id=%s user_id=%s error=%s",
                        request_id,
                        user_id,
                        type(exc).__name__,
                    )
                    continue
                report.examined += 1
                if result is None:
                    report.still_pending += 1
                elif result.outcome is AssignmentOutcome.ASSIGNED:
                    report.assigned += 1
                    report.assigned_request_ids.append(request_id)
                elif result.outcome is AssignmentOutcome.SKIPPED:
                    report.skipped += 1
                else:
                    report.still_pending += 1
            if len(pending) < self.batch_size:
                break

        logger.info(
            "pending_requests_drained service_provider_id=%s country_id=%s examined=%s assigned=%s "
            "still_pending=%s skipped=%s failed=%s exhausted=%s",
            service_provider_id,
            country_id,
            report.examined,
            report.assigned,
            report.still_pending,
            report.skipped,
            report.failed,
            report.exhausted,
        )
        return report

    async def _drain_one(
        self,
        request_id: str,
        user_id: str,
        service_provider_id: str,
        requested_country_id: str | None,
        scope_country_id: str | None,
    ) -> AssignmentResult | None:
        # None means the request's own country is full while the scope still has room.
        lookup_country = requested_country_id if requested_country_id is not None else scope_country_id
        if await self.engine.find_available_slot(service_provider_id, lookup_country) is None:
            if (
                lookup_country == scope_country_id
                or await self.engine.find_available_slot(service_provider_id, scope_country_id) is None
            ):
                raise _ScopeExhausted()
            return None
        return await self.engine.assign_slot_to_user(
            user_id,
            service_provider_id,
            requested_country_id,
            request_id=request_id,
        )
