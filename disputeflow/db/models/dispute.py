from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, validates

from disputeflow.common.enums import DisputePriority, DisputeStatus
from disputeflow.common.exceptions import ValidationError
from disputeflow.db.base import BaseModel

# Fixed at creation; later writes with a different value are rejected.
IMMUTABLE_FIELDS = ("disputed_amount", "escrow_amount", "currency", "order_id", "buyer_id", "seller_id")


class Dispute(BaseModel):
    __tablename__ = "disputes"

    reference: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # Parties
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    initiated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    initiator_role: Mapped[str] = mapped_column(String(10), nullable=False)

    # Classification
    category: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    subcategory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Money
    disputed_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    escrow_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")

    # Lifecycle
    status: Mapped[DisputeStatus] = mapped_column(
        String(30), nullable=False, default=DisputeStatus.OPEN, index=True
    )
    priority: Mapped[DisputePriority] = mapped_column(
        String(10), nullable=False, default=DisputePriority.MEDIUM, index=True
    )
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Append-only documents
    evidence: Mapped[list | None] = mapped_column(JSONB, nullable=True, default=list)
    messages: Mapped[list | None] = mapped_column(JSONB, nullable=True, default=list)
    timeline: Mapped[list | None] = mapped_column(JSONB, nullable=True, default=list)
    tags: Mapped[list | None] = mapped_column(JSONB, nullable=True, default=list)

    # Assessment
    auto_assessment: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    assessment_in_flight: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assessment_scheduled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    requires_manual_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Admin handling
    assigned_admin: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Resolution
    resolution: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    effects: Mapped[dict | None] = mapped_column(JSONB, nullable=True, default=dict)
    requires_reconciliation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    appeal_info: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    # Escrow contract linkage
    blockchain_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    smart_contract_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    resolution_tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Deadlines
    response_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    escalation_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_close_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    @validates(*IMMUTABLE_FIELDS)
    def _guard_immutable(self, key, value):
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValidationError(f"Dispute field '{key}' cannot change once set")
        return value
