"""Applies a final dispute decision to money, escrow contracts and accounts.

Effects run in a fixed order and are recorded individually on the dispute,
so a retry only repeats the effects that have not succeeded yet. A failed
effect never reverts the decision or earlier effects; it flags the dispute
for manual reconciliation instead.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from disputeflow.common.enums import (
    DisputeStatus,
    EffectStatus,
    OrderStatus,
    ResolutionDecision,
    ResolutionEffect,
    ResolutionMethod,
    TimelineAction,
)
from disputeflow.common.exceptions import InvalidTransitionError, ResolutionEffectError
from disputeflow.common.logging import get_logger
from disputeflow.core.disputes.schemas import EffectRecord, ExecutionReport, Resolution
from disputeflow.core.disputes.workflow import (
    DECIDED_STATUSES,
    append_timeline,
    get_resolution,
    utcnow,
)
from disputeflow.db.models.dispute import Dispute
from disputeflow.integrations.chain import ChainGatewayClient
from disputeflow.integrations.marketplace import MarketplaceClient
from disputeflow.integrations.moderation import ModerationClient
from disputeflow.integrations.payments import PaymentClient

logger = get_logger("disputes.resolution")

ORDER_STATUS_BY_DECISION = {
    ResolutionDecision.BUYER_WINS: OrderStatus.CANCELLED,
    ResolutionDecision.SELLER_WINS: OrderStatus.DELIVERED,
}

CHAIN_ACTION_BY_DECISION = {
    ResolutionDecision.BUYER_WINS: "refund",
    ResolutionDecision.SELLER_WINS: "release",
}

Step = tuple[ResolutionEffect, Callable[[], Awaitable[str | None]]]


def idempotency_key(dispute: Dispute, effect: ResolutionEffect, suffix: str | None = None) -> str:
    key = f"{dispute.id}:{effect.value}"
    return f"{key}:{suffix}" if suffix else key


class ResolutionExecutor:
    def __init__(
        self,
        payments: PaymentClient | None = None,
        chain: ChainGatewayClient | None = None,
        moderation: ModerationClient | None = None,
        marketplace: MarketplaceClient | None = None,
    ):
        self.payments = payments or PaymentClient()
        self.chain = chain or ChainGatewayClient()
        self.moderation = moderation or ModerationClient()
        self.marketplace = marketplace or MarketplaceClient()

    async def execute(self, dispute: Dispute, *, retry: bool = False) -> ExecutionReport:
        """Run every effect not yet applied.

        A first run is only legal right after the dispute entered
        ``resolved``; retries may also run once it was appealed or closed.
        """
        resolution = get_resolution(dispute)
        allowed = DECIDED_STATUSES if retry else {DisputeStatus.RESOLVED}
        if resolution is None or DisputeStatus(dispute.status) not in allowed:
            raise InvalidTransitionError(
                dispute.status,
                DisputeStatus.RESOLVED.value,
                "resolution effects only run on a resolved dispute",
            )

        effects = dict(dispute.effects or {})
        report = ExecutionReport(dispute_id=str(dispute.id))

        for effect, run in self._plan(dispute, resolution):
            record = EffectRecord.model_validate(effects.get(effect.value) or {})
            if record.status is EffectStatus.SUCCEEDED:
                report.skipped.append(effect)
                continue

            record.attempts += 1
            try:
                record.reference = await run()
            except Exception as e:
                error = ResolutionEffectError(str(dispute.id), effect.value, e)
                logger.error(
                    "%s | attempt=%d buyer=%s seller=%s refund=%s compensation=%s currency=%s order=%s",
                    error.detail,
                    record.attempts,
                    dispute.buyer_id,
                    dispute.seller_id,
                    resolution.refund_amount,
                    resolution.seller_compensation,
                    dispute.currency,
                    dispute.order_id,
                    exc_info=e,
                )
                record.status = EffectStatus.FAILED
                record.last_error = str(e)
                report.failed[effect] = str(e)
            else:
                record.status = EffectStatus.SUCCEEDED
                record.last_error = None
                report.succeeded.append(effect)

            record.updated_at = utcnow()
            effects[effect.value] = record.model_dump(mode="json")

        dispute.effects = effects
        self._record_outcome(dispute, resolution, report)
        return report

    def _plan(self, dispute: Dispute, resolution: Resolution) -> list[Step]:
        steps: list[Step] = []

        if resolution.refund_amount > 0:
            async def refund() -> str | None:
                result = await self.payments.refund(
                    dispute.buyer_id,
                    resolution.refund_amount,
                    dispute.currency,
                    idempotency_key(dispute, ResolutionEffect.REFUND),
                )
                return result.get("id")

            steps.append((ResolutionEffect.REFUND, refund))

        if resolution.seller_compensation > 0:
            async def release() -> str | None:
                result = await self.payments.release(
                    dispute.seller_id,
                    resolution.seller_compensation,
                    dispute.currency,
                    idempotency_key(dispute, ResolutionEffect.RELEASE),
                )
                return result.get("id")

            steps.append((ResolutionEffect.RELEASE, release))

        if dispute.blockchain_locked and dispute.smart_contract_address:
            async def settle_contract() -> str | None:
                tx_hash = await self.chain.resolve_on_chain(
                    dispute.smart_contract_address,
                    CHAIN_ACTION_BY_DECISION.get(resolution.decision, resolution.decision.value),
                    idempotency_key(dispute, ResolutionEffect.CHAIN_RESOLUTION),
                )
                dispute.resolution_tx_hash = tx_hash
                return tx_hash

            steps.append((ResolutionEffect.CHAIN_RESOLUTION, settle_contract))

        if resolution.additional_actions:
            async def moderate() -> str | None:
                for index, action in enumerate(resolution.additional_actions):
                    await self.moderation.apply_action(
                        action.action.value,
                        action.target_user,
                        {"details": action.details, "dispute_id": str(dispute.id)},
                        idempotency_key(dispute, ResolutionEffect.ADDITIONAL_ACTIONS, str(index)),
                    )
                return f"{len(resolution.additional_actions)} actions"

            steps.append((ResolutionEffect.ADDITIONAL_ACTIONS, moderate))

        order_status = ORDER_STATUS_BY_DECISION.get(resolution.decision)
        if order_status is not None:
            async def update_order() -> str | None:
                await self.marketplace.update_order_status(dispute.order_id, order_status.value)
                return order_status.value

            steps.append((ResolutionEffect.ORDER_STATUS, update_order))

        return steps

    def _record_outcome(
        self, dispute: Dispute, resolution: Resolution, report: ExecutionReport
    ) -> None:
        automated = resolution.resolution_method is ResolutionMethod.AUTOMATED
        metadata = {
            "succeeded": [e.value for e in report.succeeded],
            "skipped": [e.value for e in report.skipped],
            "failed": {e.value: msg for e, msg in report.failed.items()},
        }

        if not report.failed:
            dispute.requires_reconciliation = False
            entry = append_timeline(
                dispute,
                TimelineAction.RESOLUTION_EXECUTED,
                "Resolution executed successfully",
                performed_by=resolution.resolved_by,
                automated=automated,
                metadata=metadata,
            )
            dispute.updated_at = entry.timestamp
            logger.info("Resolution for dispute %s executed: %s", dispute.id, metadata["succeeded"])
            return

        dispute.requires_reconciliation = True
        append_timeline(
            dispute,
            TimelineAction.RESOLUTION_EXECUTED,
            "Resolution executed with failed effects",
            performed_by=resolution.resolved_by,
            automated=automated,
            metadata=metadata,
        )
        entry = append_timeline(
            dispute,
            TimelineAction.RECONCILIATION_REQUIRED,
            "Resolution effects failed: "
            + ", ".join(e.value for e in report.failed)
            + ". Manual reconciliation required.",
            automated=True,
            metadata=metadata,
        )
        dispute.updated_at = entry.timestamp
        logger.error(
            "ALERT: dispute %s (%s) needs manual reconciliation, failed effects: %s",
            dispute.id,
            dispute.reference,
            ", ".join(e.value for e in report.failed),
        )
