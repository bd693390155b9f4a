"""Read-only historical signals consumed by the assessment criteria."""

from __future__ import annotations

from abc import ABC, abstractmethod

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from disputeflow.common.enums import DisputeStatus, PartyRole
from disputeflow.db.models.dispute import Dispute
from disputeflow.integrations.marketplace import MarketplaceClient


class HistoryLookup(ABC):
    @abstractmethod
    async def count_disputes_by_user(
        self, user_id: str, status: DisputeStatus | None = None, role: PartyRole | None = None
    ) -> int: ...

    @abstractmethod
    async def count_orders_by_user(self, user_id: str, role: PartyRole = PartyRole.BUYER) -> int: ...

    @abstractmethod
    async def get_seller_response_rate(self, seller_id: str) -> float: ...


class DisputeHistory(HistoryLookup):
    """Dispute counts from our own table, order figures from the marketplace."""

    def __init__(self, db: AsyncSession, marketplace: MarketplaceClient):
        self.db = db
        self.marketplace = marketplace

    async def count_disputes_by_user(
        self, user_id: str, status: DisputeStatus | None = None, role: PartyRole | None = None
    ) -> int:
        if role is PartyRole.BUYER:
            party_filter = Dispute.buyer_id == user_id
        elif role is PartyRole.SELLER:
            party_filter = Dispute.seller_id == user_id
        else:
            party_filter = or_(Dispute.buyer_id == user_id, Dispute.seller_id == user_id)

        query = select(func.count()).select_from(Dispute).where(party_filter)
        if status is not None:
            query = query.where(Dispute.status == status.value)
        return (await self.db.execute(query)).scalar() or 0

    async def count_orders_by_user(self, user_id: str, role: PartyRole = PartyRole.BUYER) -> int:
        return await self.marketplace.count_orders_by_user(user_id, role.value)

    async def get_seller_response_rate(self, seller_id: str) -> float:
        return await self.marketplace.get_seller_response_rate(seller_id)
