import enum


class ActorRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class PartyRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    AUTO_ASSESSMENT = "auto_assessment"
    PENDING_EVIDENCE = "pending_evidence"
    UNDER_REVIEW = "under_review"
    ADMIN_REVIEW = "admin_review"
    RESOLVED = "resolved"
    APPEALED = "appealed"
    CLOSED = "closed"


class DisputeCategory(str, enum.Enum):
    ITEM_NOT_RECEIVED = "item_not_received"
    ITEM_NOT_AS_DESCRIBED = "item_not_as_described"
    ITEM_DAMAGED = "item_damaged"
    WRONG_ITEM_SENT = "wrong_item_sent"
    LATE_DELIVERY = "late_delivery"
    SELLER_COMMUNICATION = "seller_communication"
    PAYMENT_ISSUE = "payment_issue"
    REFUND_REQUEST = "refund_request"
    SHIPPING_ISSUE = "shipping_issue"
    QUALITY_ISSUE = "quality_issue"
    COUNTERFEIT_ITEM = "counterfeit_item"
    OTHER = "other"


class DisputePriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Currency(str, enum.Enum):
    USD = "USD"
    BTC = "BTC"
    ETH = "ETH"
    USDT = "USDT"
    MATIC = "MATIC"
    BNB = "BNB"


class EvidenceType(str, enum.Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    MESSAGE = "message"
    TRANSACTION_PROOF = "transaction_proof"
    DELIVERY_PROOF = "delivery_proof"


class TimelineAction(str, enum.Enum):
    DISPUTE_CREATED = "dispute_created"
    EVIDENCE_SUBMITTED = "evidence_submitted"
    AUTO_ASSESSMENT_STARTED = "auto_assessment_started"
    AUTO_ASSESSMENT_COMPLETED = "auto_assessment_completed"
    ESCALATED_TO_ADMIN = "escalated_to_admin"
    ADMIN_REVIEW_STARTED = "admin_review_started"
    ADMIN_ASSIGNED = "admin_assigned"
    ADDITIONAL_INFO_REQUESTED = "additional_info_requested"
    REVIEW_STARTED = "review_started"
    DECISION_MADE = "decision_made"
    RESOLUTION_EXECUTED = "resolution_executed"
    RECONCILIATION_REQUIRED = "reconciliation_required"
    RESOLUTION_APPEALED = "resolution_appealed"
    PRIORITY_CHANGED = "priority_changed"
    DISPUTE_CLOSED = "dispute_closed"


class RecommendedAction(str, enum.Enum):
    AUTO_RESOLVE_BUYER = "auto_resolve_buyer"
    AUTO_RESOLVE_SELLER = "auto_resolve_seller"
    REQUEST_MORE_INFO = "request_more_info"
    ESCALATE_TO_ADMIN = "escalate_to_admin"


class ResolutionDecision(str, enum.Enum):
    BUYER_WINS = "buyer_wins"
    SELLER_WINS = "seller_wins"
    PARTIAL_REFUND = "partial_refund"
    MUTUAL_AGREEMENT = "mutual_agreement"
    INCONCLUSIVE = "inconclusive"


class ResolutionMethod(str, enum.Enum):
    AUTOMATED = "automated"
    ADMIN_MANUAL = "admin_manual"
    ESCALATED_ADMIN = "escalated_admin"


class AdditionalActionType(str, enum.Enum):
    ACCOUNT_WARNING = "account_warning"
    ACCOUNT_SUSPENSION = "account_suspension"
    SELLER_RATING_IMPACT = "seller_rating_impact"
    DISPUTE_FEE = "dispute_fee"


class ResolutionEffect(str, enum.Enum):
    REFUND = "refund"
    RELEASE = "release"
    CHAIN_RESOLUTION = "chain_resolution"
    ADDITIONAL_ACTIONS = "additional_actions"
    ORDER_STATUS = "order_status"


class EffectStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class AppealStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class NotificationType(str, enum.Enum):
    DISPUTE_CREATED = "dispute_created"
    DISPUTE_RECEIVED = "dispute_received"
    DISPUTE_EVIDENCE_REQUESTED = "dispute_evidence_requested"
    DISPUTE_ESCALATED = "dispute_escalated"
    DISPUTE_ADMIN_ASSIGNED = "dispute_admin_assigned"
    DISPUTE_RESOLVED = "dispute_resolved"
    DISPUTE_EVIDENCE_ADDED = "dispute_evidence_added"
    DISPUTE_MESSAGE = "dispute_message"
    DISPUTE_APPEALED = "dispute_appealed"
    DISPUTE_CLOSED = "dispute_closed"
