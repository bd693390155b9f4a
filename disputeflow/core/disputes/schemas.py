from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from disputeflow.common.enums import (
    ActorRole,
    AdditionalActionType,
    AppealStatus,
    DisputeCategory,
    EffectStatus,
    EvidenceType,
    RecommendedAction,
    ResolutionDecision,
    ResolutionEffect,
    ResolutionMethod,
)


class TimelineEntry(BaseModel):
    action: str
    description: str
    performed_by: str | None = None
    automated: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class EvidenceCreate(BaseModel):
    type: EvidenceType
    url: str = Field(min_length=1, max_length=2048)
    description: str | None = Field(default=None, max_length=500)


class EvidenceItem(EvidenceCreate):
    uploaded_by: str
    uploaded_at: datetime


class DisputeMessage(BaseModel):
    sender: str
    message: str = Field(min_length=1, max_length=1000)
    is_admin: bool = False
    sent_at: datetime


class DisputeCreate(BaseModel):
    order_id: str = Field(min_length=1, max_length=64)
    category: DisputeCategory
    subcategory: str | None = Field(default=None, max_length=100)
    description: str = Field(min_length=1, max_length=2000)
    disputed_amount: Decimal | None = Field(default=None, ge=0)


# ---------- Collaborator views ----------


class OrderSnapshot(BaseModel):
    """Order as returned by the marketplace lookup."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    status: str
    buyer_id: str
    seller_id: str
    total: Decimal
    tracking_number: str | None = None
    estimated_delivery: datetime | None = None
    items: tuple[dict[str, Any], ...] = ()


class EscrowTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_id: str
    amount: Decimal
    currency: str
    type: str = "standard"
    contract_address: str | None = None


class DisputeSnapshot(BaseModel):
    """Read-only view of a dispute handed to assessment criteria."""

    model_config = ConfigDict(frozen=True)

    dispute_id: str
    order_id: str
    buyer_id: str
    seller_id: str
    category: DisputeCategory
    disputed_amount: Decimal
    currency: str
    created_at: datetime | None = None


# ---------- Assessment ----------


class CriterionVerdict(BaseModel):
    satisfied: bool
    confidence: int = Field(ge=0, le=100)
    details: str


class CriterionResult(CriterionVerdict):
    criterion: str
    weight: int


class AssessmentResult(BaseModel):
    criteria_checked: list[CriterionResult]
    confidence_score: int = Field(ge=0, le=100)
    recommended_action: RecommendedAction
    reasoning: str
    assessed_at: datetime
    assessment_version: str = "1.0"

    def criterion(self, name: str) -> CriterionResult | None:
        return next((c for c in self.criteria_checked if c.criterion == name), None)


class AssessmentThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    high_confidence: int = 85
    medium_confidence: int = 70


# ---------- Resolution ----------


class AdditionalAction(BaseModel):
    action: AdditionalActionType
    target_user: str
    details: str | None = None


class ResolutionRequest(BaseModel):
    decision: ResolutionDecision
    refund_amount: Decimal = Field(default=Decimal("0"), ge=0)
    refund_percentage: float = Field(default=0, ge=0, le=100)
    seller_compensation: Decimal = Field(default=Decimal("0"), ge=0)
    resolution_reason: str = Field(min_length=1, max_length=1000)
    additional_actions: list[AdditionalAction] = Field(default_factory=list)


class Resolution(ResolutionRequest):
    resolved_by: str | None = None
    resolved_at: datetime
    resolution_method: ResolutionMethod


class EffectRecord(BaseModel):
    status: EffectStatus = EffectStatus.PENDING
    attempts: int = 0
    reference: str | None = None
    last_error: str | None = None
    updated_at: datetime | None = None


class ExecutionReport(BaseModel):
    dispute_id: str
    succeeded: list[ResolutionEffect] = Field(default_factory=list)
    skipped: list[ResolutionEffect] = Field(default_factory=list)
    failed: dict[ResolutionEffect, str] = Field(default_factory=dict)

    @property
    def needs_reconciliation(self) -> bool:
        return bool(self.failed)


# ---------- Appeals ----------


class AppealInfo(BaseModel):
    appealed_by: str
    appeal_reason: str = Field(min_length=1, max_length=1000)
    appealed_at: datetime
    appeal_status: AppealStatus = AppealStatus.PENDING
    decided_by: str | None = None
    decision_notes: str | None = None
    decided_at: datetime | None = None


# ---------- Deadlines & reporting ----------


class DeadlineRule(BaseModel):
    name: str
    from_statuses: list[str]
    to_status: str
    deadline_field: str | None = None
    max_age_minutes: int | None = None
    description: str
    escalate: bool = True


class DisputeStatistics(BaseModel):
    timeframe_days: int
    total_disputes: int
    resolved_disputes: int
    auto_resolved: int
    avg_resolution_hours: float | None
    by_category: dict[str, int]


class Actor(BaseModel):
    """Caller identity as asserted by the upstream gateway."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: ActorRole = ActorRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.ADMIN
