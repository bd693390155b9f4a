from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from disputeflow.common.enums import (
    DisputeCategory,
    DisputePriority,
    DisputeStatus,
    RecommendedAction,
    ResolutionDecision,
    ResolutionMethod,
    TimelineAction,
)
from disputeflow.common.exceptions import ConflictError, InvalidTransitionError, ValidationError
from disputeflow.core.disputes import workflow
from disputeflow.core.disputes.schemas import AssessmentResult, ResolutionRequest
from disputeflow.tests.fakes import ADMIN_ID, BUYER_ID, SELLER_ID

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _dispute(category=DisputeCategory.ITEM_DAMAGED, total="100", status=None, now=NOW):
    dispute = workflow.new_dispute(
        order_id="order-1",
        buyer_id=BUYER_ID,
        seller_id=SELLER_ID,
        initiated_by=BUYER_ID,
        category=category,
        description="Broken on arrival",
        disputed_amount=Decimal("100"),
        escrow_amount=Decimal("100"),
        currency="USD",
        order_total=Decimal(total),
        now=now,
    )
    if status is not None:
        dispute.status = status.value
    return dispute


def _resolution(decision=ResolutionDecision.BUYER_WINS):
    return ResolutionRequest(
        decision=decision, refund_amount=Decimal("100"), resolution_reason="Item never shipped"
    )


def _assessment(score=60, action=RecommendedAction.ESCALATE_TO_ADMIN):
    return AssessmentResult(
        criteria_checked=[],
        confidence_score=score,
        recommended_action=action,
        reasoning="test",
        assessed_at=NOW,
    )


def test_new_dispute_defaults():
    dispute = _dispute()
    assert dispute.status == DisputeStatus.OPEN.value
    assert dispute.reference.startswith("DSP-20260301120000-")
    assert dispute.initiator_role == "buyer"
    assert dispute.response_deadline == NOW + timedelta(days=7)
    assert dispute.escalation_deadline == NOW + timedelta(days=14)
    assert dispute.auto_close_at == NOW + timedelta(days=30)
    assert dispute.resolution is None

    timeline = workflow.get_timeline(dispute)
    assert [e.action for e in timeline] == [TimelineAction.DISPUTE_CREATED.value]
    assert timeline[0].performed_by == BUYER_ID


@pytest.mark.parametrize(
    "category,total,expected",
    [
        (DisputeCategory.ITEM_DAMAGED, "1000.01", DisputePriority.HIGH),
        (DisputeCategory.ITEM_NOT_RECEIVED, "50", DisputePriority.HIGH),
        (DisputeCategory.PAYMENT_ISSUE, "50", DisputePriority.URGENT),
        # Order total is checked first.
        (DisputeCategory.PAYMENT_ISSUE, "5000", DisputePriority.HIGH),
        (DisputeCategory.QUALITY_ISSUE, "1000", DisputePriority.MEDIUM),
    ],
)
def test_priority_at_creation(category, total, expected):
    assert workflow.calculate_priority(category, Decimal(total)) is expected


def test_disputed_amount_cannot_change():
    dispute = _dispute()
    with pytest.raises(ValidationError):
        dispute.disputed_amount = Decimal("5")
    with pytest.raises(ValidationError):
        dispute.seller_id = "someone-else"


@pytest.mark.parametrize(
    "current,target",
    [
        (DisputeStatus.OPEN, DisputeStatus.RESOLVED),
        (DisputeStatus.OPEN, DisputeStatus.PENDING_EVIDENCE),
        (DisputeStatus.PENDING_EVIDENCE, DisputeStatus.RESOLVED),
        (DisputeStatus.RESOLVED, DisputeStatus.OPEN),
        (DisputeStatus.APPEALED, DisputeStatus.RESOLVED),
        (DisputeStatus.CLOSED, DisputeStatus.ADMIN_REVIEW),
    ],
)
def test_illegal_transitions_rejected_without_side_effects(current, target):
    dispute = _dispute(status=current)
    before = list(dispute.timeline)

    with pytest.raises(InvalidTransitionError) as exc:
        workflow.transition(dispute, target, ADMIN_ID, "nope", admin_assign=True)

    assert exc.value.current == current.value
    assert exc.value.target == target.value
    assert exc.value.status_code == 409
    assert dispute.status == current.value
    assert dispute.timeline == before


def test_closed_is_terminal():
    assert workflow.TRANSITIONS[DisputeStatus.CLOSED] == frozenset()
    for status in DisputeStatus:
        assert not workflow.can_transition(DisputeStatus.CLOSED, status)


def test_admin_review_needs_manual_review_or_assignment():
    dispute = _dispute()
    with pytest.raises(InvalidTransitionError, match="manual review"):
        workflow.transition(dispute, DisputeStatus.ADMIN_REVIEW, None, "escalate")

    workflow.transition(dispute, DisputeStatus.ADMIN_REVIEW, ADMIN_ID, "take it", admin_assign=True)
    assert dispute.status == DisputeStatus.ADMIN_REVIEW.value


def test_resolved_requires_resolution():
    dispute = _dispute(status=DisputeStatus.UNDER_REVIEW)
    with pytest.raises(InvalidTransitionError, match="no resolution"):
        workflow.transition(dispute, DisputeStatus.RESOLVED, ADMIN_ID, "done")


def test_each_transition_adds_one_entry_with_non_decreasing_timestamps():
    dispute = _dispute()
    workflow.transition(dispute, DisputeStatus.AUTO_ASSESSMENT, None, "assessing", automated=True)
    workflow.request_evidence(dispute, "need photos")
    workflow.transition(dispute, DisputeStatus.UNDER_REVIEW, BUYER_ID, "uploaded")
    workflow.escalate_to_admin(dispute, "complex")
    workflow.set_resolution(dispute, _resolution(), ADMIN_ID, ResolutionMethod.ADMIN_MANUAL)

    timeline = workflow.get_timeline(dispute)
    assert len(timeline) == 6
    stamps = [e.timestamp for e in timeline]
    assert stamps == sorted(stamps)
    assert [e.metadata.get("to") for e in timeline[1:]] == [
        "auto_assessment",
        "pending_evidence",
        "under_review",
        "admin_review",
        "resolved",
    ]


def test_timestamps_never_go_backwards():
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    dispute = _dispute(now=future)
    entry = workflow.transition(dispute, DisputeStatus.AUTO_ASSESSMENT, None, "assessing", automated=True)
    assert entry.timestamp >= future


def test_escalate_sets_manual_review():
    dispute = _dispute(status=DisputeStatus.AUTO_ASSESSMENT)
    workflow.escalate_to_admin(dispute, "Low confidence score requires human review")
    assert dispute.status == DisputeStatus.ADMIN_REVIEW.value
    assert dispute.requires_manual_review is True
    assert workflow.get_timeline(dispute)[-1].action == TimelineAction.ESCALATED_TO_ADMIN.value


def test_request_evidence_resets_response_deadline():
    dispute = _dispute(status=DisputeStatus.AUTO_ASSESSMENT)
    entry = workflow.request_evidence(dispute, "more please")
    assert dispute.status == DisputeStatus.PENDING_EVIDENCE.value
    assert dispute.response_deadline == entry.timestamp + timedelta(days=7)


def test_assign_admin_moves_into_admin_review():
    dispute = _dispute(status=DisputeStatus.UNDER_REVIEW)
    workflow.assign_admin(dispute, ADMIN_ID)
    assert dispute.status == DisputeStatus.ADMIN_REVIEW.value
    assert dispute.assigned_admin == ADMIN_ID
    assert workflow.get_timeline(dispute)[-1].action == TimelineAction.ADMIN_REVIEW_STARTED.value

    workflow.assign_admin(dispute, "admin-2")
    assert dispute.assigned_admin == "admin-2"
    assert workflow.get_timeline(dispute)[-1].action == TimelineAction.ADMIN_ASSIGNED.value


def test_resolution_can_only_be_set_once():
    dispute = _dispute(status=DisputeStatus.ADMIN_REVIEW)
    first = workflow.set_resolution(dispute, _resolution(), ADMIN_ID, ResolutionMethod.ADMIN_MANUAL)
    assert dispute.status == DisputeStatus.RESOLVED.value
    assert dispute.closed_at is not None

    with pytest.raises(ConflictError):
        workflow.set_resolution(
            dispute, _resolution(ResolutionDecision.SELLER_WINS), ADMIN_ID, ResolutionMethod.ADMIN_MANUAL
        )
    assert workflow.get_resolution(dispute) == first


def test_set_resolution_from_illegal_state_leaves_dispute_untouched():
    dispute = _dispute(status=DisputeStatus.PENDING_EVIDENCE)
    with pytest.raises(InvalidTransitionError):
        workflow.set_resolution(dispute, _resolution(), ADMIN_ID, ResolutionMethod.ADMIN_MANUAL)
    assert dispute.resolution is None


def test_assessment_written_once_unless_overwritten():
    dispute = _dispute(status=DisputeStatus.AUTO_ASSESSMENT)
    workflow.record_assessment(dispute, _assessment())
    with pytest.raises(ConflictError):
        workflow.record_assessment(dispute, _assessment(90))

    workflow.record_assessment(dispute, _assessment(90), overwrite=True)
    assert workflow.get_assessment(dispute).confidence_score == 90


def test_evidence_deadline_escalates():
    dispute = _dispute(status=DisputeStatus.PENDING_EVIDENCE)
    assert workflow.check_deadline(dispute, NOW + timedelta(days=6)) is None

    rule = workflow.check_deadline(dispute, NOW + timedelta(days=7))
    assert rule.name == "evidence_window_expired"

    workflow.apply_deadline_rule(dispute, rule)
    assert dispute.status == DisputeStatus.ADMIN_REVIEW.value
    assert dispute.requires_manual_review is True


def test_stalled_assessment_escalates():
    dispute = _dispute(status=DisputeStatus.AUTO_ASSESSMENT)
    assert workflow.check_deadline(dispute, NOW + timedelta(minutes=10)) is None
    rule = workflow.check_deadline(dispute, NOW + timedelta(minutes=31))
    assert rule.name == "assessment_stalled"


def test_escalation_deadline_moves_stuck_review_to_admin():
    dispute = _dispute(status=DisputeStatus.UNDER_REVIEW)
    assert workflow.check_deadline(dispute, NOW + timedelta(days=13)) is None

    rule = workflow.check_deadline(dispute, NOW + timedelta(days=14))
    assert rule.name == "escalation_deadline_passed"

    workflow.apply_deadline_rule(dispute, rule)
    assert dispute.status == DisputeStatus.ADMIN_REVIEW.value
    assert dispute.requires_manual_review is True
    assert workflow.get_timeline(dispute)[-1].metadata["rule"] == "escalation_deadline_passed"


def test_resolution_is_pending_reconciliation_until_executed():
    dispute = _dispute(status=DisputeStatus.ADMIN_REVIEW)
    assert not dispute.requires_reconciliation

    workflow.set_resolution(dispute, _resolution(), ADMIN_ID, ResolutionMethod.ADMIN_MANUAL)

    assert dispute.requires_reconciliation is True


def test_resolved_dispute_auto_closes():
    dispute = _dispute(status=DisputeStatus.ADMIN_REVIEW)
    workflow.set_resolution(dispute, _resolution(), ADMIN_ID, ResolutionMethod.ADMIN_MANUAL)

    rule = workflow.check_deadline(dispute, NOW + timedelta(days=31))
    assert rule.name == "auto_close"
    workflow.apply_deadline_rule(dispute, rule)
    assert dispute.status == DisputeStatus.CLOSED.value
    # The decision survives closing.
    assert workflow.get_resolution(dispute).decision is ResolutionDecision.BUYER_WINS


def test_admin_review_has_no_deadline_rule():
    dispute = _dispute(status=DisputeStatus.ADMIN_REVIEW)
    assert workflow.check_deadline(dispute, NOW + timedelta(days=90)) is None
