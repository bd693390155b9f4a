import uuid
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from disputeflow.api.deps import get_current_actor, get_db, get_dispute_service, require_admin
from disputeflow.common.enums import DisputeCategory, DisputePriority, DisputeStatus
from disputeflow.common.pagination import PaginatedResponse, PaginationParams
from disputeflow.core.disputes.schemas import (
    Actor,
    AssessmentResult,
    DisputeCreate,
    DisputeStatistics,
    EvidenceCreate,
    ExecutionReport,
    ResolutionRequest,
)
from disputeflow.core.disputes.service import DisputeService

router = APIRouter(prefix="/disputes", tags=["Disputes"])


# ---------- Schemas ----------


class MessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=1000)


class ReasonRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class CloseRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class AssignRequest(BaseModel):
    admin_id: str | None = None


class PriorityRequest(BaseModel):
    priority: DisputePriority


class AppealDecisionRequest(BaseModel):
    approve: bool
    notes: str | None = Field(default=None, max_length=1000)


class DisputeSummary(BaseModel):
    id: uuid.UUID
    reference: str
    order_id: str
    category: str
    status: str
    priority: str
    disputed_amount: Decimal
    currency: str
    requires_manual_review: bool
    assigned_admin: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DisputeResponse(DisputeSummary):
    transaction_id: str | None
    buyer_id: str
    seller_id: str
    initiated_by: str
    initiator_role: str
    subcategory: str | None
    description: str
    escrow_amount: Decimal
    evidence: list | None
    messages: list | None
    timeline: list | None
    tags: list | None
    auto_assessment: dict | None
    resolution: dict | None
    effects: dict | None
    appeal_info: dict | None
    requires_reconciliation: bool
    blockchain_locked: bool
    resolution_tx_hash: str | None
    response_deadline: datetime | None
    escalation_deadline: datetime | None
    auto_close_at: datetime | None
    closed_at: datetime | None


class ResolveResponse(BaseModel):
    dispute: DisputeResponse
    execution: ExecutionReport


# ---------- Endpoints ----------


@router.post("", response_model=DisputeResponse, status_code=201)
async def create_dispute(
    body: DisputeCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    dispute = await service.create_dispute(body, actor, db)
    return DisputeResponse.model_validate(dispute)


@router.get("", response_model=PaginatedResponse[DisputeSummary])
async def list_my_disputes(
    status: DisputeStatus | None = Query(None),
    category: DisputeCategory | None = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    items, total = await service.list_user_disputes(
        actor.id, pagination, db, status=status, category=category
    )
    return PaginatedResponse.build(
        [DisputeSummary.model_validate(d) for d in items], total, pagination
    )


@router.get("/admin/queue", response_model=PaginatedResponse[DisputeSummary])
async def admin_queue(
    status: DisputeStatus | None = Query(None),
    priority: DisputePriority | None = Query(None),
    assigned_admin: str | None = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    items, total = await service.list_admin_disputes(
        pagination, db, status=status, priority=priority, assigned_admin=assigned_admin
    )
    return PaginatedResponse.build(
        [DisputeSummary.model_validate(d) for d in items], total, pagination
    )


@router.get("/admin/statistics", response_model=DisputeStatistics)
async def dispute_statistics(
    timeframe_days: int = Query(30, ge=1, le=365),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    return await service.get_statistics(db, timeframe_days)


@router.get("/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(
    dispute_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    dispute = await service.view_dispute(dispute_id, actor, db)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/evidence", response_model=DisputeResponse, status_code=201)
async def add_evidence(
    dispute_id: str,
    body: EvidenceCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    dispute = await service.add_evidence(dispute_id, body, actor, db)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/messages", response_model=DisputeResponse, status_code=201)
async def add_message(
    dispute_id: str,
    body: MessageRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    dispute = await service.add_message(dispute_id, body.message, actor, db)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/assign", response_model=DisputeResponse)
async def assign_admin(
    dispute_id: str,
    body: AssignRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    dispute = await service.assign_admin(dispute_id, body.admin_id or actor.id, actor, db)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/request-evidence", response_model=DisputeResponse)
async def request_evidence(
    dispute_id: str,
    body: ReasonRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    dispute = await service.request_evidence(dispute_id, body.reason, actor, db)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/resolve", response_model=ResolveResponse)
async def resolve_dispute(
    dispute_id: str,
    body: ResolutionRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    await service.admin_resolve(dispute_id, body, actor, db)
    # The decision is durable before any money moves.
    await db.commit()

    report = await service.execute_resolution(dispute_id, db)
    dispute = await service.get_dispute(dispute_id, db)
    return ResolveResponse(dispute=DisputeResponse.model_validate(dispute), execution=report)


@router.post("/{dispute_id}/retry-effects", response_model=ExecutionReport)
async def retry_effects(
    dispute_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    return await service.execute_resolution(dispute_id, db, retry=True)


@router.post("/{dispute_id}/reassess", response_model=AssessmentResult)
async def reassess(
    dispute_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    return await service.reassess(dispute_id, actor, db)


@router.post("/{dispute_id}/appeal", response_model=DisputeResponse)
async def appeal_resolution(
    dispute_id: str,
    body: ReasonRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    dispute = await service.appeal(dispute_id, body.reason, actor, db)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/appeal/decision", response_model=DisputeResponse)
async def decide_appeal(
    dispute_id: str,
    body: AppealDecisionRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    dispute = await service.decide_appeal(dispute_id, body.approve, body.notes, actor, db)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/close", response_model=DisputeResponse)
async def close_dispute(
    dispute_id: str,
    body: CloseRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    dispute = await service.close_dispute(dispute_id, body.reason, actor, db)
    return DisputeResponse.model_validate(dispute)


@router.patch("/{dispute_id}/priority", response_model=DisputeResponse)
async def update_priority(
    dispute_id: str,
    body: PriorityRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DisputeService = Depends(get_dispute_service),
):
    dispute = await service.update_priority(dispute_id, body.priority, actor, db)
    return DisputeResponse.model_validate(dispute)
