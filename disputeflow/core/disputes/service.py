import uuid
from datetime import datetime, timedelta

from sqlalchemy import case, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from disputeflow.common.enums import (
    AppealStatus,
    Currency,
    DisputeCategory,
    DisputePriority,
    DisputeStatus,
    RecommendedAction,
    ResolutionDecision,
    ResolutionMethod,
    TimelineAction,
)
from disputeflow.common.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from disputeflow.common.logging import get_logger
from disputeflow.common.pagination import PaginationParams, paginate
from disputeflow.config import settings
from disputeflow.core.disputes import workflow
from disputeflow.core.disputes.assessment import AssessmentAggregator, default_aggregator
from disputeflow.core.disputes.history import DisputeHistory
from disputeflow.core.disputes.resolution import ResolutionExecutor
from disputeflow.core.disputes.scheduler import AssessmentScheduler
from disputeflow.core.disputes.schemas import (
    Actor,
    AppealInfo,
    AssessmentResult,
    DisputeCreate,
    DisputeMessage,
    DisputeSnapshot,
    DisputeStatistics,
    EvidenceCreate,
    EvidenceItem,
    ExecutionReport,
    OrderSnapshot,
    ResolutionRequest,
)
from disputeflow.core.notifications.service import send_dispute_notifications
from disputeflow.db.models.dispute import Dispute
from disputeflow.integrations.marketplace import MarketplaceClient
from disputeflow.integrations.notifications import NotificationClient

logger = get_logger("disputes.service")

# Statuses an automated fail-safe may still pull into admin review.
ESCALATABLE_STATUSES = frozenset(
    {
        DisputeStatus.OPEN,
        DisputeStatus.AUTO_ASSESSMENT,
        DisputeStatus.PENDING_EVIDENCE,
        DisputeStatus.UNDER_REVIEW,
    }
)

_PRIORITY_RANK = case(
    {
        DisputePriority.URGENT.value: 0,
        DisputePriority.HIGH.value: 1,
        DisputePriority.MEDIUM.value: 2,
        DisputePriority.LOW.value: 3,
    },
    value=Dispute.priority,
    else_=4,
)


class DisputeService:
    def __init__(
        self,
        marketplace: MarketplaceClient | None = None,
        notifier: NotificationClient | None = None,
        executor: ResolutionExecutor | None = None,
        aggregator: AssessmentAggregator | None = None,
        scheduler: AssessmentScheduler | None = None,
    ):
        self.marketplace = marketplace or MarketplaceClient()
        self.notifier = notifier or NotificationClient()
        self.executor = executor or ResolutionExecutor(marketplace=self.marketplace)
        self.aggregator = aggregator or default_aggregator()
        self.scheduler = scheduler or AssessmentScheduler()

    # ------------------------------------------------------------------
    # Loading / saving
    # ------------------------------------------------------------------

    async def get_dispute(
        self, dispute_id: str | uuid.UUID, db: AsyncSession, *, for_update: bool = False
    ) -> Dispute:
        try:
            key = dispute_id if isinstance(dispute_id, uuid.UUID) else uuid.UUID(str(dispute_id))
        except ValueError:
            raise NotFoundError("Dispute", str(dispute_id))

        query = select(Dispute).where(Dispute.id == key).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        dispute = (await db.execute(query)).scalar_one_or_none()
        if not dispute:
            raise NotFoundError("Dispute", str(dispute_id))
        return dispute

    async def view_dispute(self, dispute_id: str, actor: Actor, db: AsyncSession) -> Dispute:
        dispute = await self.get_dispute(dispute_id, db)
        if not actor.is_admin and not workflow.is_party(dispute, actor.id):
            raise PermissionDeniedError("Unauthorized to view this dispute")
        return dispute

    async def _save(self, dispute: Dispute, db: AsyncSession) -> None:
        try:
            await db.flush()
        except StaleDataError as e:
            raise ConcurrentModificationError("Dispute", str(dispute.id)) from e

    async def _notify(self, dispute: Dispute, event: str) -> None:
        await send_dispute_notifications(dispute, event, self.notifier)

    async def load_order(self, order_id: str) -> OrderSnapshot:
        order = await self.marketplace.get_order(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_dispute(self, data: DisputeCreate, actor: Actor, db: AsyncSession) -> Dispute:
        order = await self.load_order(data.order_id)

        existing = await db.execute(select(Dispute.id).where(Dispute.order_id == data.order_id))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"Dispute already exists for order '{data.order_id}'")

        if actor.id not in (order.buyer_id, order.seller_id):
            raise PermissionDeniedError("Only the buyer or the seller of an order can open a dispute")

        transaction = await self.marketplace.get_transaction(data.order_id)
        currency = transaction.currency if transaction else settings.DEFAULT_CURRENCY
        if currency not in {c.value for c in Currency}:
            raise ValidationError(f"Unsupported currency: {currency}")

        dispute = workflow.new_dispute(
            order_id=order.order_id,
            buyer_id=order.buyer_id,
            seller_id=order.seller_id,
            initiated_by=actor.id,
            category=data.category,
            subcategory=data.subcategory,
            description=data.description,
            disputed_amount=order.total if data.disputed_amount is None else data.disputed_amount,
            escrow_amount=transaction.amount if transaction else order.total,
            currency=currency,
            order_total=order.total,
            transaction_id=transaction.transaction_id if transaction else None,
        )
        if transaction and transaction.type == "escrow" and transaction.contract_address:
            dispute.blockchain_locked = True
            dispute.smart_contract_address = transaction.contract_address

        db.add(dispute)
        try:
            await db.flush()
        except IntegrityError as e:
            raise ConflictError(f"Dispute already exists for order '{data.order_id}'") from e

        self.scheduler.arm(dispute)
        await self._save(dispute, db)

        logger.info(
            "Created dispute %s (%s) on order %s: category=%s priority=%s",
            dispute.id,
            dispute.reference,
            dispute.order_id,
            dispute.category,
            dispute.priority,
        )
        await self._notify(dispute, "created")
        return dispute

    # ------------------------------------------------------------------
    # Automated assessment
    # ------------------------------------------------------------------

    async def begin_assessment(self, dispute_id: str, db: AsyncSession) -> DisputeSnapshot | None:
        """Claim an open dispute for assessment. Returns None when there is
        nothing to do (already assessed, resolved manually, or in flight)."""
        dispute = await self.get_dispute(dispute_id, db, for_update=True)

        if dispute.status != DisputeStatus.OPEN.value:
            logger.info(
                "Skipping assessment of dispute %s: status is %s", dispute_id, dispute.status
            )
            if dispute.status != DisputeStatus.AUTO_ASSESSMENT.value and dispute.assessment_in_flight:
                dispute.assessment_in_flight = False
                await self._save(dispute, db)
            return None

        workflow.transition(
            dispute,
            DisputeStatus.AUTO_ASSESSMENT,
            None,
            "Starting automated assessment",
            automated=True,
        )
        dispute.assessment_in_flight = True
        await self._save(dispute, db)
        return workflow.snapshot(dispute)

    async def run_assessment(
        self, dispute: DisputeSnapshot, db: AsyncSession
    ) -> AssessmentResult:
        order = await self.load_order(dispute.order_id)
        history = DisputeHistory(db, self.marketplace)
        return await self.aggregator.assess(dispute, order, history)

    async def complete_assessment(
        self, dispute_id: str, result: AssessmentResult, db: AsyncSession
    ) -> Dispute | None:
        dispute = await self.get_dispute(dispute_id, db, for_update=True)

        if dispute.status != DisputeStatus.AUTO_ASSESSMENT.value or dispute.auto_assessment:
            logger.warning(
                "Discarding assessment for dispute %s: status moved to %s meanwhile",
                dispute_id,
                dispute.status,
            )
            dispute.assessment_in_flight = False
            await self._save(dispute, db)
            return None

        workflow.record_assessment(dispute, result)
        event = self._apply_recommendation(dispute, result)
        dispute.assessment_in_flight = False
        await self._save(dispute, db)
        await self._notify(dispute, event)
        return dispute

    def _apply_recommendation(self, dispute: Dispute, result: AssessmentResult) -> str:
        action = result.recommended_action

        if action is RecommendedAction.AUTO_RESOLVE_BUYER:
            workflow.set_resolution(
                dispute,
                ResolutionRequest(
                    decision=ResolutionDecision.BUYER_WINS,
                    refund_amount=dispute.disputed_amount,
                    refund_percentage=100,
                    resolution_reason=result.reasoning,
                ),
                None,
                ResolutionMethod.AUTOMATED,
            )
            return "auto_resolved_buyer"

        if action is RecommendedAction.AUTO_RESOLVE_SELLER:
            workflow.set_resolution(
                dispute,
                ResolutionRequest(
                    decision=ResolutionDecision.SELLER_WINS,
                    seller_compensation=dispute.disputed_amount,
                    resolution_reason=result.reasoning,
                ),
                None,
                ResolutionMethod.AUTOMATED,
            )
            return "auto_resolved_seller"

        if action is RecommendedAction.REQUEST_MORE_INFO:
            workflow.request_evidence(dispute, result.reasoning)
            return "evidence_requested"

        workflow.escalate_to_admin(dispute, result.reasoning)
        return "escalated_to_admin"

    async def fail_safe_escalate(self, dispute_id: str, reason: str, db: AsyncSession) -> bool:
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        dispute.assessment_in_flight = False

        if DisputeStatus(dispute.status) not in ESCALATABLE_STATUSES:
            await self._save(dispute, db)
            return False

        workflow.escalate_to_admin(dispute, reason, automated=True)
        await self._save(dispute, db)
        logger.warning("Dispute %s escalated to admin review: %s", dispute_id, reason)
        await self._notify(dispute, "escalated_to_admin")
        return True

    async def reassess(self, dispute_id: str, actor: Actor, db: AsyncSession) -> AssessmentResult:
        self._require_admin(actor)
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        if dispute.status not in (
            DisputeStatus.UNDER_REVIEW.value,
            DisputeStatus.ADMIN_REVIEW.value,
        ):
            raise ConflictError("Re-assessment is only possible while a dispute is under review")

        result = await self.run_assessment(workflow.snapshot(dispute), db)
        workflow.record_assessment(dispute, result, overwrite=True)
        await self._save(dispute, db)
        return result

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def admin_resolve(
        self, dispute_id: str, request: ResolutionRequest, actor: Actor, db: AsyncSession
    ) -> Dispute:
        self._require_admin(actor)
        dispute = await self.get_dispute(dispute_id, db, for_update=True)

        method = (
            ResolutionMethod.ESCALATED_ADMIN
            if dispute.requires_manual_review
            else ResolutionMethod.ADMIN_MANUAL
        )
        workflow.set_resolution(dispute, request, actor.id, method)
        await self._save(dispute, db)
        return dispute

    async def execute_resolution(
        self, dispute_id: str, db: AsyncSession, *, retry: bool = False
    ) -> ExecutionReport:
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        report = await self.executor.execute(dispute, retry=retry)
        await self._save(dispute, db)

        if not retry:
            resolution = workflow.get_resolution(dispute)
            if resolution.resolution_method is not ResolutionMethod.AUTOMATED:
                await self._notify(dispute, "admin_resolved")
        return report

    async def flag_for_reconciliation(self, dispute_id: str, reason: str, db: AsyncSession) -> None:
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        dispute.requires_reconciliation = True
        workflow.append_timeline(
            dispute,
            TimelineAction.RECONCILIATION_REQUIRED,
            reason,
            automated=True,
        )
        await self._save(dispute, db)
        logger.error("ALERT: dispute %s flagged for manual reconciliation: %s", dispute_id, reason)

    async def pending_reconciliations(self, db: AsyncSession) -> list[str]:
        result = await db.execute(
            select(Dispute.id).where(Dispute.requires_reconciliation.is_(True))
        )
        return [str(i) for i in result.scalars().all()]

    # ------------------------------------------------------------------
    # Parties and admins
    # ------------------------------------------------------------------

    async def add_evidence(
        self, dispute_id: str, evidence: EvidenceCreate, actor: Actor, db: AsyncSession
    ) -> Dispute:
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        if not workflow.is_party(dispute, actor.id) and dispute.assigned_admin != actor.id:
            raise PermissionDeniedError("Unauthorized to add evidence to this dispute")
        if DisputeStatus(dispute.status) in workflow.DECIDED_STATUSES:
            raise ConflictError("Evidence cannot be added once a dispute is resolved")

        item = EvidenceItem(
            **evidence.model_dump(),
            uploaded_by=actor.id,
            uploaded_at=workflow.utcnow(),
        )
        dispute.evidence = [*(dispute.evidence or []), item.model_dump(mode="json")]
        entry = workflow.append_timeline(
            dispute,
            TimelineAction.EVIDENCE_SUBMITTED,
            f"New evidence submitted: {evidence.type.value}",
            performed_by=actor.id,
        )
        dispute.updated_at = entry.timestamp

        if dispute.status == DisputeStatus.PENDING_EVIDENCE.value:
            workflow.transition(
                dispute,
                DisputeStatus.UNDER_REVIEW,
                actor.id,
                "Evidence submitted - reviewing",
            )

        await self._save(dispute, db)
        await self._notify(dispute, "evidence_added")
        return dispute

    async def add_message(
        self, dispute_id: str, message: str, actor: Actor, db: AsyncSession
    ) -> Dispute:
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        if not workflow.is_party(dispute, actor.id) and not actor.is_admin:
            raise PermissionDeniedError("Unauthorized to message on this dispute")

        entry = DisputeMessage(
            sender=actor.id,
            message=message,
            is_admin=actor.is_admin,
            sent_at=workflow.utcnow(),
        )
        dispute.messages = [*(dispute.messages or []), entry.model_dump(mode="json")]
        dispute.updated_at = entry.sent_at
        await self._save(dispute, db)
        await self._notify(dispute, "message_added")
        return dispute

    async def assign_admin(
        self, dispute_id: str, admin_id: str, actor: Actor, db: AsyncSession
    ) -> Dispute:
        self._require_admin(actor)
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        workflow.assign_admin(dispute, admin_id)
        await self._save(dispute, db)
        await self._notify(dispute, "admin_assigned")
        return dispute

    async def request_evidence(
        self, dispute_id: str, reason: str, actor: Actor, db: AsyncSession
    ) -> Dispute:
        self._require_admin(actor)
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        workflow.request_evidence(dispute, reason, performed_by=actor.id, automated=False)
        await self._save(dispute, db)
        await self._notify(dispute, "evidence_requested")
        return dispute

    async def update_priority(
        self, dispute_id: str, priority: DisputePriority, actor: Actor, db: AsyncSession
    ) -> Dispute:
        self._require_admin(actor)
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        if dispute.priority == priority.value:
            return dispute
        old = dispute.priority
        dispute.priority = priority.value
        entry = workflow.append_timeline(
            dispute,
            TimelineAction.PRIORITY_CHANGED,
            f"Priority changed from {old} to {priority.value}",
            performed_by=actor.id,
            metadata={"from": old, "to": priority.value},
        )
        dispute.updated_at = entry.timestamp
        await self._save(dispute, db)
        return dispute

    async def appeal(self, dispute_id: str, reason: str, actor: Actor, db: AsyncSession) -> Dispute:
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        if not workflow.is_party(dispute, actor.id):
            raise PermissionDeniedError("Only a party to the dispute can appeal its resolution")

        info = AppealInfo(appealed_by=actor.id, appeal_reason=reason, appealed_at=workflow.utcnow())
        workflow.transition(
            dispute,
            DisputeStatus.APPEALED,
            actor.id,
            "Resolution appealed",
            metadata={"reason": reason},
        )
        dispute.appeal_info = info.model_dump(mode="json")
        await self._save(dispute, db)
        await self._notify(dispute, "appealed")
        return dispute

    async def decide_appeal(
        self, dispute_id: str, approve: bool, notes: str | None, actor: Actor, db: AsyncSession
    ) -> Dispute:
        self._require_admin(actor)
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        if dispute.status != DisputeStatus.APPEALED.value or not dispute.appeal_info:
            raise InvalidTransitionError(dispute.status, DisputeStatus.CLOSED.value, "no pending appeal")

        info = AppealInfo.model_validate(dispute.appeal_info)
        outcome = AppealStatus.APPROVED if approve else AppealStatus.DENIED
        entry = workflow.transition(
            dispute,
            DisputeStatus.CLOSED,
            actor.id,
            f"Appeal {outcome.value}" + (f": {notes}" if notes else ""),
            metadata={"appeal_status": outcome.value},
        )
        info.appeal_status = outcome
        info.decided_by = actor.id
        info.decision_notes = notes
        info.decided_at = entry.timestamp
        dispute.appeal_info = info.model_dump(mode="json")
        if approve:
            # The recorded decision is final; remedies happen off-engine.
            dispute.requires_manual_review = True
            dispute.tags = [*(dispute.tags or []), "appeal_approved"]

        await self._save(dispute, db)
        await self._notify(dispute, "closed")
        return dispute

    async def close_dispute(
        self, dispute_id: str, reason: str | None, actor: Actor, db: AsyncSession
    ) -> Dispute:
        self._require_admin(actor)
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        if dispute.status == DisputeStatus.APPEALED.value:
            raise ConflictError("An appealed dispute is closed by deciding the appeal")
        workflow.transition(
            dispute, DisputeStatus.CLOSED, actor.id, reason or "Dispute closed by admin"
        )
        await self._save(dispute, db)
        await self._notify(dispute, "closed")
        return dispute

    # ------------------------------------------------------------------
    # Deadlines
    # ------------------------------------------------------------------

    async def check_deadlines(self, db: AsyncSession, now: datetime | None = None) -> list[str]:
        """Apply deadline rules to every watched dispute.

        Each dispute is committed on its own. One that changed concurrently
        is skipped and picked up again by the next sweep.
        """
        now = now or workflow.utcnow()
        watched = sorted({s for rule in workflow.DEADLINE_RULES for s in rule.from_statuses})

        result = await db.execute(select(Dispute).where(Dispute.status.in_(watched)))
        due = [d.id for d in result.scalars().all() if workflow.check_deadline(d, now)]

        changed = []
        for dispute_id in due:
            try:
                outcome = await self._apply_deadline(dispute_id, now, db)
                await db.commit()
            except ConcurrentModificationError:
                await db.rollback()
                logger.warning(
                    "Dispute %s changed during the deadline sweep, leaving it for the next run",
                    dispute_id,
                )
                continue
            if outcome is None:
                continue

            dispute, rule = outcome
            changed.append(str(dispute.id))
            await self._notify(dispute, "escalated_to_admin" if rule.escalate else "closed")

        return changed

    async def _apply_deadline(self, dispute_id: uuid.UUID, now: datetime, db: AsyncSession):
        dispute = await self.get_dispute(dispute_id, db, for_update=True)
        rule = workflow.check_deadline(dispute, now)
        if not rule:
            return None

        old_status = dispute.status
        workflow.apply_deadline_rule(dispute, rule)
        dispute.assessment_in_flight = False
        await self._save(dispute, db)
        logger.info(
            "Deadline rule %s applied to dispute %s: %s -> %s",
            rule.name,
            dispute.id,
            old_status,
            dispute.status,
        )
        return dispute, rule

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_user_disputes(
        self,
        user_id: str,
        params: PaginationParams,
        db: AsyncSession,
        status: DisputeStatus | None = None,
        category: DisputeCategory | None = None,
    ) -> tuple[list[Dispute], int]:
        query = select(Dispute).where(
            or_(Dispute.buyer_id == user_id, Dispute.seller_id == user_id)
        )
        if status:
            query = query.where(Dispute.status == status.value)
        if category:
            query = query.where(Dispute.category == category.value)
        return await paginate(db, query.order_by(Dispute.created_at.desc()), params)

    async def list_admin_disputes(
        self,
        params: PaginationParams,
        db: AsyncSession,
        status: DisputeStatus | None = None,
        priority: DisputePriority | None = None,
        assigned_admin: str | None = None,
    ) -> tuple[list[Dispute], int]:
        query = select(Dispute).where(
            or_(
                Dispute.status == DisputeStatus.ADMIN_REVIEW.value,
                Dispute.requires_manual_review.is_(True),
                Dispute.assigned_admin.is_not(None),
            )
        )
        if status:
            query = query.where(Dispute.status == status.value)
        if priority:
            query = query.where(Dispute.priority == priority.value)
        if assigned_admin:
            query = query.where(Dispute.assigned_admin == assigned_admin)
        query = query.order_by(_PRIORITY_RANK, Dispute.created_at.desc())
        return await paginate(db, query, params)

    async def get_statistics(self, db: AsyncSession, timeframe_days: int = 30) -> DisputeStatistics:
        since = workflow.utcnow() - timedelta(days=timeframe_days)
        result = await db.execute(select(Dispute).where(Dispute.created_at >= since))
        disputes = result.scalars().all()

        by_category: dict[str, int] = {}
        durations = []
        resolved = auto_resolved = 0
        for d in disputes:
            by_category[d.category] = by_category.get(d.category, 0) + 1
            res = workflow.get_resolution(d)
            if res:
                resolved += 1
            if res and res.resolution_method is ResolutionMethod.AUTOMATED:
                auto_resolved += 1
            if d.closed_at and d.created_at:
                delta = workflow.as_utc(d.closed_at) - workflow.as_utc(d.created_at)
                durations.append(delta.total_seconds() / 3600)

        return DisputeStatistics(
            timeframe_days=timeframe_days,
            total_disputes=len(disputes),
            resolved_disputes=resolved,
            auto_resolved=auto_resolved,
            avg_resolution_hours=round(sum(durations) / len(durations), 2) if durations else None,
            by_category=by_category,
        )

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if not actor.is_admin:
            raise PermissionDeniedError("Admin access required")
