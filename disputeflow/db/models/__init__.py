from disputeflow.db.models.dispute import Dispute

__all__ = [
    "Dispute",
]
