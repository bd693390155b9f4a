import asyncio

from disputeflow.common.logging import get_logger
from disputeflow.tasks.celery_app import app

logger = get_logger("tasks.dispute")


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@app.task(name="disputeflow.tasks.dispute_tasks.run_automated_assessment")
def run_automated_assessment(dispute_id: str):
    """Armed once per dispute at creation, delayed by the settle period."""
    logger.info("Running automated assessment for dispute %s", dispute_id)

    async def _run():
        from disputeflow.core.disputes.scheduler import AssessmentScheduler

        status = await AssessmentScheduler().run(dispute_id)
        logger.info("Automated assessment for dispute %s finished: %s", dispute_id, status)
        return status

    return _run_async(_run())


@app.task(name="disputeflow.tasks.dispute_tasks.sweep_dispute_deadlines")
def sweep_dispute_deadlines():
    """Celery Beat task: apply deadline rules to every active dispute."""
    logger.info("Sweeping dispute deadlines")

    async def _sweep():
        from disputeflow.core.disputes.service import DisputeService
        from disputeflow.db.session import async_session_factory

        async with async_session_factory() as db:
            try:
                service = DisputeService()
                changed = await service.check_deadlines(db)
                await db.commit()

                if changed:
                    logger.info("Deadline rules applied to %d disputes", len(changed))
                return changed
            except Exception as e:
                await db.rollback()
                logger.error("Deadline sweep failed: %s", e)
                raise

    return _run_async(_sweep())


@app.task(name="disputeflow.tasks.dispute_tasks.retry_resolution_effects")
def retry_resolution_effects(dispute_id: str):
    logger.info("Retrying resolution effects for dispute %s", dispute_id)

    async def _retry():
        from disputeflow.core.disputes.service import DisputeService
        from disputeflow.db.session import async_session_factory

        async with async_session_factory() as db:
            try:
                service = DisputeService()
                report = await service.execute_resolution(dispute_id, db, retry=True)
                await db.commit()
                return report.model_dump(mode="json")
            except Exception as e:
                await db.rollback()
                logger.error("Effect retry failed for dispute %s: %s", dispute_id, e)
                raise

    return _run_async(_retry())


@app.task(name="disputeflow.tasks.dispute_tasks.retry_pending_reconciliations")
def retry_pending_reconciliations():
    """Celery Beat task: re-run failed effects of every flagged dispute."""
    logger.info("Retrying disputes pending reconciliation")

    async def _list():
        from disputeflow.core.disputes.service import DisputeService
        from disputeflow.db.session import async_session_factory

        async with async_session_factory() as db:
            return await DisputeService().pending_reconciliations(db)

    dispute_ids = _run_async(_list())
    for dispute_id in dispute_ids:
        retry_resolution_effects.delay(dispute_id)

    if dispute_ids:
        logger.info("Queued effect retries for %d disputes", len(dispute_ids))
    return dispute_ids
