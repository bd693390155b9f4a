"""Weighted multi-criteria assessment of a dispute."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime, timezone
from functools import lru_cache

from disputeflow.common.enums import DisputeCategory, RecommendedAction
from disputeflow.common.exceptions import CriterionEvaluationError
from disputeflow.common.logging import get_logger
from disputeflow.config import settings
from disputeflow.core.disputes.criteria import (
    Criterion,
    CriterionContext,
    DeliveryConfirmation,
    DeliveryTimeline,
    build_criteria,
    validate_criteria,
)
from disputeflow.core.disputes.history import HistoryLookup
from disputeflow.core.disputes.schemas import (
    AssessmentResult,
    AssessmentThresholds,
    CriterionResult,
    DisputeSnapshot,
    OrderSnapshot,
)

logger = get_logger("disputes.assessment")

FAILED_DETAILS = "evaluation failed"


def compute_confidence(results: Sequence[CriterionResult]) -> int:
    """Weighted share of satisfied criteria, 0-100.

    Every criterion's weight counts toward the denominator, including
    criteria that failed to evaluate.
    """
    total_weight = sum(r.weight for r in results)
    if total_weight == 0:
        return 0
    weighted = sum(r.weight * (r.confidence / 100) for r in results if r.satisfied)
    return round(100 * weighted / total_weight)


def recommend_action(
    confidence_score: int,
    category: DisputeCategory | str,
    results: Sequence[CriterionResult],
    thresholds: AssessmentThresholds = AssessmentThresholds(),
) -> tuple[RecommendedAction, str]:
    """Decision table. Order matters: the seller carve-outs win over the
    generic high-confidence buyer outcome."""
    category = DisputeCategory(category)
    satisfied = {r.criterion for r in results if r.satisfied}

    if confidence_score >= thresholds.high_confidence:
        if (
            category is DisputeCategory.ITEM_NOT_RECEIVED
            and DeliveryConfirmation.name in satisfied
        ):
            return (
                RecommendedAction.AUTO_RESOLVE_SELLER,
                "High confidence that the item was delivered: delivery evidence supports seller",
            )
        if category is DisputeCategory.LATE_DELIVERY and DeliveryTimeline.name in satisfied:
            return (
                RecommendedAction.AUTO_RESOLVE_SELLER,
                "Delivery was within the acceptable timeframe",
            )
        return RecommendedAction.AUTO_RESOLVE_BUYER, "Evidence supports buyer's claim"

    if confidence_score >= thresholds.medium_confidence:
        return (
            RecommendedAction.REQUEST_MORE_INFO,
            "Medium confidence - additional evidence needed for resolution",
        )

    return RecommendedAction.ESCALATE_TO_ADMIN, "Low confidence score requires human review"


class AssessmentAggregator:
    def __init__(
        self,
        criteria: Sequence[Criterion],
        thresholds: AssessmentThresholds = AssessmentThresholds(),
        criterion_timeout: float = 10.0,
    ):
        self.criteria = validate_criteria(criteria, expected_total=None)
        self.thresholds = thresholds
        self.criterion_timeout = criterion_timeout

    @property
    def total_weight(self) -> int:
        return sum(c.weight for c in self.criteria)

    async def assess(
        self,
        dispute: DisputeSnapshot,
        order: OrderSnapshot,
        history: HistoryLookup,
        now: datetime | None = None,
    ) -> AssessmentResult:
        now = now or datetime.now(timezone.utc)
        ctx = CriterionContext(dispute=dispute, order=order, history=history, now=now)

        results = await asyncio.gather(*(self._evaluate(c, ctx) for c in self.criteria))

        score = compute_confidence(results)
        action, reasoning = recommend_action(score, dispute.category, results, self.thresholds)

        logger.info(
            "Assessed dispute %s: score=%d action=%s (%d/%d criteria satisfied)",
            dispute.dispute_id,
            score,
            action.value,
            sum(1 for r in results if r.satisfied),
            len(results),
        )

        return AssessmentResult(
            criteria_checked=list(results),
            confidence_score=score,
            recommended_action=action,
            reasoning=reasoning,
            assessed_at=now,
        )

    async def _evaluate(self, criterion: Criterion, ctx: CriterionContext) -> CriterionResult:
        try:
            verdict = await asyncio.wait_for(criterion.evaluate(ctx), timeout=self.criterion_timeout)
        except Exception as e:
            error = CriterionEvaluationError(criterion.name, e)
            logger.warning(
                "%s for dispute %s, counting it as unsatisfied",
                error.detail,
                ctx.dispute.dispute_id,
                exc_info=e,
            )
            return CriterionResult(
                criterion=criterion.name,
                weight=criterion.weight,
                satisfied=False,
                confidence=0,
                details=FAILED_DETAILS,
            )

        return CriterionResult(
            criterion=criterion.name,
            weight=criterion.weight,
            satisfied=verdict.satisfied,
            confidence=verdict.confidence,
            details=verdict.details,
        )


@lru_cache(maxsize=1)
def default_aggregator() -> AssessmentAggregator:
    """Process-wide aggregator built once from settings."""
    return AssessmentAggregator(
        build_criteria(settings.CRITERION_WEIGHTS, settings.HIGH_VALUE_ORDER_THRESHOLD),
        AssessmentThresholds(
            high_confidence=settings.ASSESSMENT_HIGH_CONFIDENCE,
            medium_confidence=settings.ASSESSMENT_MEDIUM_CONFIDENCE,
        ),
        criterion_timeout=settings.CRITERION_TIMEOUT_SECONDS,
    )
