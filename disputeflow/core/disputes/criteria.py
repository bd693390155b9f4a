"""Assessment criteria.

Each criterion looks at one signal about a dispute and returns a partial
verdict. Criteria never mutate their inputs; everything they may read is
carried on :class:`CriterionContext`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from disputeflow.common.enums import DisputeStatus, OrderStatus, PartyRole
from disputeflow.core.disputes.history import HistoryLookup
from disputeflow.core.disputes.schemas import CriterionVerdict, DisputeSnapshot, OrderSnapshot

CRITERIA_TOTAL_WEIGHT = 100


@dataclass(frozen=True)
class CriterionContext:
    dispute: DisputeSnapshot
    order: OrderSnapshot
    history: HistoryLookup
    now: datetime


class Criterion(ABC):
    name: str = ""
    default_weight: int = 0

    def __init__(self, weight: int | None = None):
        self.weight = self.default_weight if weight is None else weight

    @abstractmethod
    async def evaluate(self, ctx: CriterionContext) -> CriterionVerdict: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, weight={self.weight})"


class DeliveryConfirmation(Criterion):
    name = "delivery_confirmation"
    default_weight = 25

    async def evaluate(self, ctx: CriterionContext) -> CriterionVerdict:
        order = ctx.order
        has_tracking = bool(order.tracking_number)
        return CriterionVerdict(
            satisfied=has_tracking and order.status == OrderStatus.DELIVERED.value,
            confidence=90 if has_tracking else 20,
            details="Tracking number available" if has_tracking else "No tracking information",
        )


class DeliveryTimeline(Criterion):
    name = "delivery_timeline"
    default_weight = 20

    grace_days = 7

    async def evaluate(self, ctx: CriterionContext) -> CriterionVerdict:
        estimated = ctx.order.estimated_delivery
        if estimated is None:
            return CriterionVerdict(satisfied=False, confidence=50, details="No delivery estimate")

        if estimated.tzinfo is None:
            estimated = estimated.replace(tzinfo=timezone.utc)

        if ctx.now <= estimated:
            return CriterionVerdict(satisfied=True, confidence=95, details="Delivered on time")

        days_late = (ctx.now - estimated).days
        return CriterionVerdict(
            satisfied=days_late < self.grace_days,
            confidence=max(30, 90 - days_late * 10),
            details=f"Delivery {days_late} days late",
        )


class SellerResponsiveness(Criterion):
    name = "seller_responsiveness"
    default_weight = 15

    async def evaluate(self, ctx: CriterionContext) -> CriterionVerdict:
        rate = await ctx.history.get_seller_response_rate(ctx.dispute.seller_id)
        return CriterionVerdict(
            satisfied=rate > 0.7,
            confidence=80,
            details=f"Seller response rate: {round(rate * 100)}%",
        )


class TransactionValue(Criterion):
    name = "transaction_value"
    default_weight = 10

    def __init__(self, weight: int | None = None, threshold: Decimal | float = 500):
        super().__init__(weight)
        self.threshold = Decimal(str(threshold))

    async def evaluate(self, ctx: CriterionContext) -> CriterionVerdict:
        high_value = ctx.order.total > self.threshold
        return CriterionVerdict(
            satisfied=not high_value,
            confidence=40 if high_value else 85,
            details=f"Order value: {ctx.order.total} {ctx.dispute.currency}",
        )


class BuyerCredibility(Criterion):
    name = "buyer_credibility"
    default_weight = 15

    async def evaluate(self, ctx: CriterionContext) -> CriterionVerdict:
        buyer_id = ctx.dispute.buyer_id
        disputes = await ctx.history.count_disputes_by_user(
            buyer_id, DisputeStatus.RESOLVED, PartyRole.BUYER
        )
        orders = await ctx.history.count_orders_by_user(buyer_id, PartyRole.BUYER)
        # A buyer with no order history gets no benefit of the doubt.
        rate = disputes / orders if orders > 0 else 1.0
        return CriterionVerdict(
            satisfied=rate < 0.10,
            confidence=90 if rate < 0.05 else 60,
            details=f"Buyer dispute rate: {round(rate * 100)}%",
        )


class SellerCredibility(Criterion):
    name = "seller_credibility"
    default_weight = 15

    async def evaluate(self, ctx: CriterionContext) -> CriterionVerdict:
        seller_id = ctx.dispute.seller_id
        disputes = await ctx.history.count_disputes_by_user(
            seller_id, DisputeStatus.RESOLVED, PartyRole.SELLER
        )
        orders = await ctx.history.count_orders_by_user(seller_id, PartyRole.SELLER)
        rate = disputes / orders if orders > 0 else 0.0
        return CriterionVerdict(
            satisfied=rate < 0.05,
            confidence=95 if rate < 0.02 else 70,
            details=f"Seller dispute rate: {round(rate * 100)}%",
        )


DEFAULT_CRITERIA: tuple[type[Criterion], ...] = (
    DeliveryConfirmation,
    DeliveryTimeline,
    SellerResponsiveness,
    TransactionValue,
    BuyerCredibility,
    SellerCredibility,
)


def validate_criteria(
    criteria: Iterable[Criterion], expected_total: int | None = CRITERIA_TOTAL_WEIGHT
) -> tuple[Criterion, ...]:
    table = tuple(criteria)
    names = [c.name for c in table]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate criterion names in {names}")
    for criterion in table:
        if not criterion.name:
            raise ValueError(f"{criterion!r} has no name")
        if criterion.weight <= 0:
            raise ValueError(f"Criterion '{criterion.name}' must have a positive weight")
    total = sum(c.weight for c in table)
    if expected_total is not None and total != expected_total:
        raise ValueError(f"Criterion weights sum to {total}, expected {expected_total}")
    return table


def build_criteria(
    weights: Mapping[str, int] | None = None,
    high_value_threshold: float = 500,
) -> tuple[Criterion, ...]:
    """Instantiate the default criterion table, applying weight overrides."""
    weights = dict(weights or {})
    unknown = set(weights) - {cls.name for cls in DEFAULT_CRITERIA}
    if unknown:
        raise ValueError(f"Unknown criteria in weight overrides: {sorted(unknown)}")

    table: list[Criterion] = []
    for cls in DEFAULT_CRITERIA:
        weight = weights.get(cls.name)
        if cls is TransactionValue:
            table.append(TransactionValue(weight, threshold=high_value_threshold))
        else:
            table.append(cls(weight))
    return validate_criteria(table)
