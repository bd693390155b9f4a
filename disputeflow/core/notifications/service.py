"""Dispute notifications to buyers and sellers.

Delivery is best-effort: a failing notification service is logged and
never interrupts the dispute workflow.
"""

from __future__ import annotations

from disputeflow.common.enums import NotificationType
from disputeflow.common.logging import get_logger
from disputeflow.db.models.dispute import Dispute
from disputeflow.integrations.notifications import NotificationClient

logger = get_logger("notifications.service")

# event -> audience ("buyer" | "seller" | "both") -> (type, message)
DISPUTE_NOTIFICATIONS: dict[str, dict[str, tuple[NotificationType, str]]] = {
    "created": {
        "buyer": (NotificationType.DISPUTE_CREATED, "Your dispute has been created and is under review"),
        "seller": (NotificationType.DISPUTE_RECEIVED, "A dispute has been filed against your order"),
    },
    "evidence_requested": {
        "both": (NotificationType.DISPUTE_EVIDENCE_REQUESTED, "Additional evidence requested for your dispute"),
    },
    "escalated_to_admin": {
        "both": (NotificationType.DISPUTE_ESCALATED, "Your dispute has been escalated for admin review"),
    },
    "admin_assigned": {
        "both": (NotificationType.DISPUTE_ADMIN_ASSIGNED, "An admin has been assigned to review your dispute"),
    },
    "auto_resolved_buyer": {
        "buyer": (NotificationType.DISPUTE_RESOLVED, "Your dispute has been resolved in your favor"),
        "seller": (NotificationType.DISPUTE_RESOLVED, "Dispute resolved - refund issued to buyer"),
    },
    "auto_resolved_seller": {
        "buyer": (NotificationType.DISPUTE_RESOLVED, "Dispute resolved - claim not substantiated"),
        "seller": (NotificationType.DISPUTE_RESOLVED, "Your dispute has been resolved in your favor"),
    },
    "admin_resolved": {
        "both": (NotificationType.DISPUTE_RESOLVED, "Your dispute has been resolved by admin review"),
    },
    "evidence_added": {
        "both": (NotificationType.DISPUTE_EVIDENCE_ADDED, "New evidence was added to your dispute"),
    },
    "message_added": {
        "both": (NotificationType.DISPUTE_MESSAGE, "New message on your dispute"),
    },
    "appealed": {
        "both": (NotificationType.DISPUTE_APPEALED, "The dispute resolution has been appealed"),
    },
    "closed": {
        "both": (NotificationType.DISPUTE_CLOSED, "Your dispute has been closed"),
    },
}


async def send_dispute_notifications(
    dispute: Dispute, event: str, client: NotificationClient | None = None
) -> int:
    """Notify the parties of ``event``. Returns the number delivered."""
    audiences = DISPUTE_NOTIFICATIONS.get(event)
    if not audiences:
        return 0

    client = client or NotificationClient()
    recipients: list[tuple[str, NotificationType, str]] = []
    for audience, (ntype, message) in audiences.items():
        if audience in ("buyer", "both"):
            recipients.append((dispute.buyer_id, ntype, message))
        if audience in ("seller", "both"):
            recipients.append((dispute.seller_id, ntype, message))

    delivered = 0
    for user_id, ntype, message in recipients:
        try:
            await client.notify(
                user_id,
                ntype.value,
                {
                    "dispute_id": str(dispute.id),
                    "reference": dispute.reference,
                    "order_id": dispute.order_id,
                    "status": dispute.status,
                    "message": message,
                },
            )
            delivered += 1
        except Exception as e:
            logger.warning(
                "Notification %s for dispute %s to user %s failed (non-critical): %s",
                ntype.value,
                dispute.id,
                user_id,
                e,
            )
    return delivered
