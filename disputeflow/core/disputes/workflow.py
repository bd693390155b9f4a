"""Dispute lifecycle: legal transitions, guards, timeline and deadlines.

All functions here mutate a loaded :class:`Dispute` in memory. Persisting
the change (and serializing concurrent writers) is the caller's job.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from disputeflow.common.enums import (
    DisputeCategory,
    DisputePriority,
    DisputeStatus,
    PartyRole,
    ResolutionMethod,
    TimelineAction,
)
from disputeflow.common.exceptions import ConflictError, InvalidTransitionError
from disputeflow.common.logging import get_logger
from disputeflow.config import settings
from disputeflow.core.disputes.schemas import (
    AssessmentResult,
    DeadlineRule,
    DisputeSnapshot,
    Resolution,
    ResolutionRequest,
    TimelineEntry,
)
from disputeflow.db.models.dispute import Dispute

logger = get_logger("disputes.workflow")

TRANSITIONS: dict[DisputeStatus, frozenset[DisputeStatus]] = {
    DisputeStatus.OPEN: frozenset({DisputeStatus.AUTO_ASSESSMENT, DisputeStatus.ADMIN_REVIEW}),
    DisputeStatus.AUTO_ASSESSMENT: frozenset(
        {DisputeStatus.PENDING_EVIDENCE, DisputeStatus.ADMIN_REVIEW, DisputeStatus.RESOLVED}
    ),
    DisputeStatus.PENDING_EVIDENCE: frozenset(
        {DisputeStatus.UNDER_REVIEW, DisputeStatus.ADMIN_REVIEW}
    ),
    DisputeStatus.UNDER_REVIEW: frozenset(
        {DisputeStatus.PENDING_EVIDENCE, DisputeStatus.ADMIN_REVIEW, DisputeStatus.RESOLVED}
    ),
    DisputeStatus.ADMIN_REVIEW: frozenset(
        {DisputeStatus.PENDING_EVIDENCE, DisputeStatus.UNDER_REVIEW, DisputeStatus.RESOLVED}
    ),
    DisputeStatus.RESOLVED: frozenset({DisputeStatus.APPEALED, DisputeStatus.CLOSED}),
    DisputeStatus.APPEALED: frozenset({DisputeStatus.CLOSED}),
    DisputeStatus.CLOSED: frozenset(),
}

# States in which the resolution record exists.
DECIDED_STATUSES = frozenset(
    {DisputeStatus.RESOLVED, DisputeStatus.APPEALED, DisputeStatus.CLOSED}
)
FINISHED_STATUSES = frozenset({DisputeStatus.RESOLVED, DisputeStatus.CLOSED})

_TRANSITION_ACTIONS = {
    DisputeStatus.AUTO_ASSESSMENT: TimelineAction.AUTO_ASSESSMENT_STARTED,
    DisputeStatus.PENDING_EVIDENCE: TimelineAction.ADDITIONAL_INFO_REQUESTED,
    DisputeStatus.UNDER_REVIEW: TimelineAction.REVIEW_STARTED,
    DisputeStatus.ADMIN_REVIEW: TimelineAction.ESCALATED_TO_ADMIN,
    DisputeStatus.RESOLVED: TimelineAction.DECISION_MADE,
    DisputeStatus.APPEALED: TimelineAction.RESOLUTION_APPEALED,
    DisputeStatus.CLOSED: TimelineAction.DISPUTE_CLOSED,
}

DEADLINE_RULES = [
    DeadlineRule(
        name="evidence_window_expired",
        from_statuses=[DisputeStatus.PENDING_EVIDENCE.value],
        to_status=DisputeStatus.ADMIN_REVIEW.value,
        deadline_field="response_deadline",
        description="Evidence was not provided before the response deadline. Escalating to admin review.",
    ),
    DeadlineRule(
        name="assessment_stalled",
        from_statuses=[DisputeStatus.OPEN.value, DisputeStatus.AUTO_ASSESSMENT.value],
        to_status=DisputeStatus.ADMIN_REVIEW.value,
        max_age_minutes=settings.STALE_ASSESSMENT_MINUTES,
        description="Automated assessment did not complete. Escalating to admin review.",
    ),
    DeadlineRule(
        name="escalation_deadline_passed",
        from_statuses=[
            DisputeStatus.OPEN.value,
            DisputeStatus.AUTO_ASSESSMENT.value,
            DisputeStatus.PENDING_EVIDENCE.value,
            DisputeStatus.UNDER_REVIEW.value,
        ],
        to_status=DisputeStatus.ADMIN_REVIEW.value,
        deadline_field="escalation_deadline",
        description="Dispute unresolved past its escalation deadline. Escalating to admin review.",
    ),
    DeadlineRule(
        name="auto_close",
        from_statuses=[DisputeStatus.RESOLVED.value],
        to_status=DisputeStatus.CLOSED.value,
        deadline_field="auto_close_at",
        description="Dispute closed automatically after the resolution period.",
        escalate=False,
    ),
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------- Read helpers ----------


def get_timeline(dispute: Dispute) -> list[TimelineEntry]:
    return [TimelineEntry.model_validate(e) for e in dispute.timeline or []]


def get_resolution(dispute: Dispute) -> Resolution | None:
    if not dispute.resolution:
        return None
    return Resolution.model_validate(dispute.resolution)


def get_assessment(dispute: Dispute) -> AssessmentResult | None:
    if not dispute.auto_assessment:
        return None
    return AssessmentResult.model_validate(dispute.auto_assessment)


def snapshot(dispute: Dispute) -> DisputeSnapshot:
    return DisputeSnapshot(
        dispute_id=str(dispute.id),
        order_id=dispute.order_id,
        buyer_id=dispute.buyer_id,
        seller_id=dispute.seller_id,
        category=dispute.category,
        disputed_amount=dispute.disputed_amount,
        currency=dispute.currency,
        created_at=as_utc(dispute.created_at),
    )


def is_party(dispute: Dispute, user_id: str) -> bool:
    return user_id in (dispute.buyer_id, dispute.seller_id)


# ---------- Creation ----------


def calculate_priority(category: DisputeCategory, order_total: Decimal) -> DisputePriority:
    if order_total > Decimal(str(settings.HIGH_PRIORITY_ORDER_TOTAL)):
        return DisputePriority.HIGH
    if category is DisputeCategory.ITEM_NOT_RECEIVED:
        return DisputePriority.HIGH
    if category is DisputeCategory.PAYMENT_ISSUE:
        return DisputePriority.URGENT
    return DisputePriority.MEDIUM


def generate_reference(now: datetime) -> str:
    return f"DSP-{now:%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


def new_dispute(
    *,
    order_id: str,
    buyer_id: str,
    seller_id: str,
    initiated_by: str,
    category: DisputeCategory,
    description: str,
    disputed_amount: Decimal,
    escrow_amount: Decimal,
    currency: str,
    order_total: Decimal,
    subcategory: str | None = None,
    transaction_id: str | None = None,
    now: datetime | None = None,
) -> Dispute:
    now = now or utcnow()
    initiator_role = PartyRole.BUYER if initiated_by == buyer_id else PartyRole.SELLER

    dispute = Dispute(
        reference=generate_reference(now),
        order_id=order_id,
        transaction_id=transaction_id,
        buyer_id=buyer_id,
        seller_id=seller_id,
        initiated_by=initiated_by,
        initiator_role=initiator_role.value,
        category=category.value,
        subcategory=subcategory,
        description=description,
        disputed_amount=disputed_amount,
        escrow_amount=escrow_amount,
        currency=currency,
        status=DisputeStatus.OPEN.value,
        priority=calculate_priority(category, order_total).value,
        evidence=[],
        messages=[],
        timeline=[],
        tags=[],
        effects={},
        requires_manual_review=False,
        requires_reconciliation=False,
        assessment_in_flight=False,
        blockchain_locked=False,
        created_at=now,
        updated_at=now,
        response_deadline=now + timedelta(days=settings.RESPONSE_DEADLINE_DAYS),
        escalation_deadline=now + timedelta(days=settings.ESCALATION_DEADLINE_DAYS),
        auto_close_at=now + timedelta(days=settings.AUTO_CLOSE_DAYS),
    )

    if disputed_amount > escrow_amount:
        logger.warning(
            "Dispute %s on order %s claims %s %s but only %s is held in escrow",
            dispute.reference,
            order_id,
            disputed_amount,
            currency,
            escrow_amount,
        )

    append_timeline(
        dispute,
        TimelineAction.DISPUTE_CREATED,
        f"Dispute created by {initiator_role.value}",
        performed_by=initiated_by,
        at=now,
    )
    return dispute


# ---------- Timeline ----------


def _next_timestamp(dispute: Dispute, at: datetime | None = None) -> datetime:
    ts = at or utcnow()
    if dispute.timeline:
        last = as_utc(datetime.fromisoformat(dispute.timeline[-1]["timestamp"]))
        if last > ts:
            ts = last
    return ts


def append_timeline(
    dispute: Dispute,
    action: TimelineAction | str,
    description: str,
    performed_by: str | None = None,
    automated: bool = False,
    metadata: dict[str, Any] | None = None,
    at: datetime | None = None,
) -> TimelineEntry:
    entry = TimelineEntry(
        action=action.value if isinstance(action, TimelineAction) else action,
        description=description,
        performed_by=performed_by,
        automated=automated,
        metadata=metadata or {},
        timestamp=_next_timestamp(dispute, at),
    )
    # Reassign so the ORM sees the JSON column change.
    dispute.timeline = [*(dispute.timeline or []), entry.model_dump(mode="json")]
    return entry


# ---------- Transitions ----------


def can_transition(current: DisputeStatus | str, target: DisputeStatus | str) -> bool:
    return DisputeStatus(target) in TRANSITIONS[DisputeStatus(current)]


def transition(
    dispute: Dispute,
    new_status: DisputeStatus,
    performed_by: str | None,
    description: str,
    automated: bool = False,
    *,
    action: TimelineAction | None = None,
    admin_assign: bool = False,
    metadata: dict[str, Any] | None = None,
) -> TimelineEntry:
    current = DisputeStatus(dispute.status)
    target = DisputeStatus(new_status)

    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    if (
        target is DisputeStatus.ADMIN_REVIEW
        and not dispute.requires_manual_review
        and not admin_assign
    ):
        raise InvalidTransitionError(
            current.value, target.value, "manual review was not requested"
        )
    if target is DisputeStatus.RESOLVED and not dispute.resolution:
        raise InvalidTransitionError(current.value, target.value, "no resolution recorded")

    entry = append_timeline(
        dispute,
        action or _TRANSITION_ACTIONS[target],
        description or f"Status updated to {target.value}",
        performed_by=performed_by,
        automated=automated,
        metadata={"from": current.value, "to": target.value, **(metadata or {})},
    )
    dispute.status = target.value
    dispute.updated_at = entry.timestamp
    if target in FINISHED_STATUSES:
        dispute.closed_at = entry.timestamp

    logger.info(
        "Dispute %s: %s -> %s (%s)",
        dispute.id,
        current.value,
        target.value,
        "automated" if automated else performed_by or "system",
    )
    return entry


def escalate_to_admin(
    dispute: Dispute,
    reason: str,
    performed_by: str | None = None,
    automated: bool = True,
    metadata: dict[str, Any] | None = None,
) -> TimelineEntry:
    if not can_transition(dispute.status, DisputeStatus.ADMIN_REVIEW):
        raise InvalidTransitionError(dispute.status, DisputeStatus.ADMIN_REVIEW.value)
    dispute.requires_manual_review = True
    return transition(
        dispute, DisputeStatus.ADMIN_REVIEW, performed_by, reason, automated, metadata=metadata
    )


def request_evidence(
    dispute: Dispute,
    reason: str,
    performed_by: str | None = None,
    automated: bool = True,
) -> TimelineEntry:
    entry = transition(dispute, DisputeStatus.PENDING_EVIDENCE, performed_by, reason, automated)
    dispute.response_deadline = entry.timestamp + timedelta(days=settings.RESPONSE_DEADLINE_DAYS)
    return entry


def assign_admin(dispute: Dispute, admin_id: str) -> TimelineEntry:
    dispute.assigned_admin = admin_id
    if dispute.status == DisputeStatus.ADMIN_REVIEW.value:
        entry = append_timeline(
            dispute,
            TimelineAction.ADMIN_ASSIGNED,
            "Dispute assigned to admin for manual review",
            performed_by=admin_id,
        )
        dispute.updated_at = entry.timestamp
        return entry
    return transition(
        dispute,
        DisputeStatus.ADMIN_REVIEW,
        admin_id,
        "Dispute assigned to admin for manual review",
        action=TimelineAction.ADMIN_REVIEW_STARTED,
        admin_assign=True,
    )


def set_resolution(
    dispute: Dispute,
    request: ResolutionRequest,
    resolved_by: str | None,
    method: ResolutionMethod,
) -> Resolution:
    """Record the decision and enter ``resolved`` as one step."""
    if dispute.resolution:
        raise ConflictError(f"Dispute {dispute.id} already has a resolution")
    if not can_transition(dispute.status, DisputeStatus.RESOLVED):
        raise InvalidTransitionError(dispute.status, DisputeStatus.RESOLVED.value)

    resolution = Resolution(
        **request.model_dump(),
        resolved_by=resolved_by,
        resolved_at=_next_timestamp(dispute),
        resolution_method=method,
    )
    dispute.resolution = resolution.model_dump(mode="json")
    # Pending until the executor reports every effect applied.
    dispute.requires_reconciliation = True
    transition(
        dispute,
        DisputeStatus.RESOLVED,
        resolved_by,
        f"Dispute resolved: {resolution.decision.value}",
        automated=method is ResolutionMethod.AUTOMATED,
        metadata={"decision": resolution.decision.value, "method": method.value},
    )
    return resolution


def record_assessment(
    dispute: Dispute, result: AssessmentResult, *, overwrite: bool = False
) -> TimelineEntry:
    if dispute.auto_assessment and not overwrite:
        raise ConflictError(f"Dispute {dispute.id} has already been assessed")
    dispute.auto_assessment = result.model_dump(mode="json")
    entry = append_timeline(
        dispute,
        TimelineAction.AUTO_ASSESSMENT_COMPLETED,
        f"Automated assessment completed with {result.confidence_score}% confidence",
        automated=True,
        metadata={
            "confidence_score": result.confidence_score,
            "recommended_action": result.recommended_action.value,
            "reassessment": overwrite,
        },
    )
    dispute.updated_at = entry.timestamp
    return entry


# ---------- Deadlines ----------


def check_deadline(dispute: Dispute, now: datetime | None = None) -> DeadlineRule | None:
    """Return the first deadline rule the dispute has breached, if any."""
    now = now or utcnow()

    for rule in DEADLINE_RULES:
        if dispute.status not in rule.from_statuses:
            continue
        if rule.deadline_field:
            deadline = as_utc(getattr(dispute, rule.deadline_field))
            if deadline is not None and now >= deadline:
                return rule
        elif rule.max_age_minutes is not None and dispute.created_at is not None:
            if now >= as_utc(dispute.created_at) + timedelta(minutes=rule.max_age_minutes):
                return rule

    return None


def apply_deadline_rule(dispute: Dispute, rule: DeadlineRule) -> TimelineEntry:
    target = DisputeStatus(rule.to_status)
    if rule.escalate:
        return escalate_to_admin(
            dispute, rule.description, automated=True, metadata={"rule": rule.name}
        )
    return transition(
        dispute, target, None, rule.description, automated=True, metadata={"rule": rule.name}
    )
