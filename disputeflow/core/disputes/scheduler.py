"""Deferred automated assessment of newly opened disputes.

A dispute is armed once when it is created. After a short settle delay the
job claims it (``open`` -> ``auto_assessment``), runs the criteria outside
any transaction, then applies the recommendation. Whatever goes wrong
along the way, the dispute ends up in front of an admin rather than stuck
in ``auto_assessment``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

from disputeflow.common.enums import DisputeStatus
from disputeflow.common.exceptions import (
    AssessmentPipelineError,
    ConcurrentModificationError,
    NotFoundError,
)
from disputeflow.common.logging import get_logger
from disputeflow.config import settings
from disputeflow.core.disputes.workflow import utcnow
from disputeflow.db.models.dispute import Dispute

if TYPE_CHECKING:
    from disputeflow.core.disputes.service import DisputeService

logger = get_logger("disputes.scheduler")

FAIL_SAFE_REASON = "Automated assessment failed - escalated to admin"


def _enqueue_celery(dispute_id: str, countdown: float) -> None:
    from disputeflow.tasks.dispute_tasks import run_automated_assessment

    run_automated_assessment.apply_async(args=[dispute_id], countdown=countdown)


class AssessmentScheduler:
    def __init__(
        self,
        session_factory=None,
        service_factory: Callable[[], DisputeService] | None = None,
        enqueue: Callable[[str, float], None] | None = None,
        settle_delay: float | None = None,
        timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._service_factory = service_factory
        self._enqueue = enqueue or _enqueue_celery
        self.settle_delay = (
            settings.ASSESSMENT_SETTLE_DELAY_SECONDS if settle_delay is None else settle_delay
        )
        self.timeout = settings.ASSESSMENT_TIMEOUT_SECONDS if timeout is None else timeout

    @property
    def session_factory(self):
        if self._session_factory is None:
            from disputeflow.db.session import async_session_factory

            self._session_factory = async_session_factory
        return self._session_factory

    def service(self) -> DisputeService:
        if self._service_factory is not None:
            return self._service_factory()
        from disputeflow.core.disputes.service import DisputeService

        return DisputeService(scheduler=self)

    def arm(self, dispute: Dispute) -> bool:
        """Schedule the one automated assessment of ``dispute``.

        Returns False when the dispute is not open or a job is already armed.
        """
        if dispute.status != DisputeStatus.OPEN.value or dispute.assessment_in_flight:
            return False

        dispute.assessment_in_flight = True
        dispute.assessment_scheduled_at = utcnow()
        self._enqueue(str(dispute.id), self.settle_delay)
        logger.info(
            "Armed automated assessment for dispute %s in %ss", dispute.id, self.settle_delay
        )
        return True

    async def run(self, dispute_id: str) -> str | None:
        """Execute the armed job. Returns the dispute's resulting status, or
        None when there was nothing to do.

        Only claiming, assessing and recording the outcome are bounded by
        ``timeout``. Once a resolution is committed its effects always run
        to completion or leave the dispute flagged for reconciliation.
        """
        service = self.service()
        try:
            dispute = await asyncio.wait_for(
                self._assess(service, dispute_id), timeout=self.timeout
            )
        except NotFoundError as e:
            if e.resource != "Dispute":
                return await self._fail_safe(dispute_id, e)
            logger.warning("Dispute %s disappeared before its assessment ran", dispute_id)
            return None
        except Exception as e:
            return await self._fail_safe(dispute_id, e)

        if dispute is None:
            return None

        if dispute.status == DisputeStatus.RESOLVED.value:
            await self._execute(service, dispute_id)
        return dispute.status

    async def _assess(self, service: DisputeService, dispute_id: str) -> Dispute | None:
        snapshot = await self._with_retry(
            dispute_id, lambda db: service.begin_assessment(dispute_id, db)
        )
        if snapshot is None:
            return None

        async with self.session_factory() as db:
            result = await service.run_assessment(snapshot, db)

        return await self._with_retry(
            dispute_id, lambda db: service.complete_assessment(dispute_id, result, db)
        )

    async def _execute(self, service: DisputeService, dispute_id: str) -> None:
        # The decision stands even if the effects could not be applied.
        try:
            await self._with_retry(
                dispute_id, lambda db: service.execute_resolution(dispute_id, db)
            )
        except Exception as e:
            logger.error(
                "Executing automated resolution of dispute %s crashed: %r",
                dispute_id,
                e,
                exc_info=True,
            )
            await self._with_retry(
                dispute_id,
                lambda db: service.flag_for_reconciliation(
                    dispute_id, f"Resolution execution crashed: {e!r}", db
                ),
            )

    async def _fail_safe(self, dispute_id: str, cause: Exception) -> str | None:
        if isinstance(cause, asyncio.TimeoutError):
            error = AssessmentPipelineError(dispute_id, f"timed out after {self.timeout}s")
        elif isinstance(cause, AssessmentPipelineError):
            error = cause
        else:
            error = AssessmentPipelineError(dispute_id, repr(cause))
        logger.error("%s", error.detail, exc_info=cause)

        service = self.service()
        try:
            escalated = await self._with_retry(
                dispute_id, lambda db: service.fail_safe_escalate(dispute_id, FAIL_SAFE_REASON, db)
            )
        except Exception:
            logger.exception(
                "ALERT: fail-safe escalation of dispute %s failed, the deadline sweep will retry",
                dispute_id,
            )
            return None
        return DisputeStatus.ADMIN_REVIEW.value if escalated else None

    async def _with_retry(self, dispute_id: str, work):
        """Run ``work(db)`` in its own transaction, retrying lost races."""
        attempts = max(1, settings.TRANSITION_RETRY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            async with self.session_factory() as db:
                try:
                    outcome = await work(db)
                    await db.commit()
                    return outcome
                except ConcurrentModificationError:
                    await db.rollback()
                    if attempt == attempts:
                        raise
                    logger.info(
                        "Dispute %s changed concurrently, retrying (%d/%d)",
                        dispute_id,
                        attempt,
                        attempts,
                    )
                except Exception:
                    await db.rollback()
                    raise
