from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from disputeflow.common.enums import DisputeCategory, PartyRole
from disputeflow.core.disputes.criteria import (
    BuyerCredibility,
    CriterionContext,
    DeliveryConfirmation,
    DeliveryTimeline,
    SellerCredibility,
    SellerResponsiveness,
    TransactionValue,
    build_criteria,
    validate_criteria,
)
from disputeflow.core.disputes.schemas import DisputeSnapshot, OrderSnapshot
from disputeflow.tests.fakes import BUYER_ID, SELLER_ID, StaticHistory

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _ctx(history=None, **order_fields):
    order = OrderSnapshot(
        order_id="order-1",
        status=order_fields.pop("status", "delivered"),
        buyer_id=BUYER_ID,
        seller_id=SELLER_ID,
        total=Decimal(order_fields.pop("total", "100")),
        **order_fields,
    )
    dispute = DisputeSnapshot(
        dispute_id="d-1",
        order_id="order-1",
        buyer_id=BUYER_ID,
        seller_id=SELLER_ID,
        category=DisputeCategory.ITEM_DAMAGED,
        disputed_amount=Decimal("100"),
        currency="USD",
    )
    return CriterionContext(dispute=dispute, order=order, history=history or StaticHistory(), now=NOW)


@pytest.mark.asyncio
async def test_delivery_confirmation_requires_tracking_and_delivered():
    verdict = await DeliveryConfirmation().evaluate(_ctx(tracking_number="TRK1"))
    assert verdict.satisfied is True
    assert verdict.confidence == 90

    shipped = await DeliveryConfirmation().evaluate(_ctx(tracking_number="TRK1", status="shipped"))
    assert shipped.satisfied is False
    assert shipped.confidence == 90

    untracked = await DeliveryConfirmation().evaluate(_ctx())
    assert untracked.satisfied is False
    assert untracked.confidence == 20


@pytest.mark.asyncio
async def test_delivery_timeline_bands():
    no_estimate = await DeliveryTimeline().evaluate(_ctx())
    assert (no_estimate.satisfied, no_estimate.confidence) == (False, 50)

    on_time = await DeliveryTimeline().evaluate(_ctx(estimated_delivery=NOW + timedelta(days=1)))
    assert (on_time.satisfied, on_time.confidence) == (True, 95)

    three_late = await DeliveryTimeline().evaluate(_ctx(estimated_delivery=NOW - timedelta(days=3)))
    assert (three_late.satisfied, three_late.confidence) == (True, 60)

    very_late = await DeliveryTimeline().evaluate(_ctx(estimated_delivery=NOW - timedelta(days=10)))
    assert (very_late.satisfied, very_late.confidence) == (False, 30)


@pytest.mark.asyncio
async def test_delivery_timeline_accepts_naive_estimate():
    naive = (NOW - timedelta(days=2)).replace(tzinfo=None)
    verdict = await DeliveryTimeline().evaluate(_ctx(estimated_delivery=naive))
    assert verdict.satisfied is True
    assert verdict.confidence == 70


@pytest.mark.asyncio
async def test_seller_responsiveness_threshold():
    good = await SellerResponsiveness().evaluate(_ctx(StaticHistory(response_rate=0.71)))
    bad = await SellerResponsiveness().evaluate(_ctx(StaticHistory(response_rate=0.7)))
    assert good.satisfied is True
    assert bad.satisfied is False
    assert good.confidence == bad.confidence == 80


@pytest.mark.asyncio
async def test_transaction_value_uses_threshold():
    low = await TransactionValue(threshold=500).evaluate(_ctx(total="500"))
    high = await TransactionValue(threshold=500).evaluate(_ctx(total="500.01"))
    assert (low.satisfied, low.confidence) == (True, 85)
    assert (high.satisfied, high.confidence) == (False, 40)


@pytest.mark.asyncio
async def test_buyer_without_orders_is_not_credible():
    verdict = await BuyerCredibility().evaluate(_ctx())
    assert verdict.satisfied is False
    assert verdict.confidence == 60


@pytest.mark.asyncio
async def test_buyer_credibility_rates():
    history = StaticHistory(
        disputes={(BUYER_ID, PartyRole.BUYER): 1},
        orders={(BUYER_ID, PartyRole.BUYER): 50},
    )
    verdict = await BuyerCredibility().evaluate(_ctx(history))
    assert (verdict.satisfied, verdict.confidence) == (True, 90)

    history.disputes[(BUYER_ID, PartyRole.BUYER)] = 4
    verdict = await BuyerCredibility().evaluate(_ctx(history))
    assert (verdict.satisfied, verdict.confidence) == (True, 60)


@pytest.mark.asyncio
async def test_seller_without_orders_gets_benefit_of_doubt():
    verdict = await SellerCredibility().evaluate(_ctx())
    assert (verdict.satisfied, verdict.confidence) == (True, 95)

    history = StaticHistory(
        disputes={(SELLER_ID, PartyRole.SELLER): 3},
        orders={(SELLER_ID, PartyRole.SELLER): 100},
    )
    verdict = await SellerCredibility().evaluate(_ctx(history))
    assert (verdict.satisfied, verdict.confidence) == (True, 70)


def test_default_table_weights_sum_to_100():
    criteria = build_criteria()
    assert sum(c.weight for c in criteria) == 100
    assert [c.name for c in criteria] == [
        "delivery_confirmation",
        "delivery_timeline",
        "seller_responsiveness",
        "transaction_value",
        "buyer_credibility",
        "seller_credibility",
    ]


def test_weight_overrides_must_keep_total():
    with pytest.raises(ValueError, match="sum to"):
        build_criteria({"delivery_confirmation": 30})

    criteria = build_criteria({"delivery_confirmation": 30, "transaction_value": 5})
    assert sum(c.weight for c in criteria) == 100


def test_unknown_override_rejected():
    with pytest.raises(ValueError, match="Unknown criteria"):
        build_criteria({"vibes": 10})


def test_duplicate_and_non_positive_criteria_rejected():
    with pytest.raises(ValueError, match="Duplicate"):
        validate_criteria([DeliveryConfirmation(50), DeliveryConfirmation(50)])
    with pytest.raises(ValueError, match="positive"):
        validate_criteria([DeliveryConfirmation(0)], expected_total=None)
