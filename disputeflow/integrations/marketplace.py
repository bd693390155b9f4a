"""Marketplace integration client: orders, escrow transactions, seller stats.

Uses the marketplace internal API when a real key is configured, otherwise
serves orders from an in-process registry so the engine can run locally.
"""

from __future__ import annotations

from typing import Any, ClassVar

from disputeflow.config import settings
from disputeflow.core.disputes.schemas import EscrowTransaction, OrderSnapshot
from disputeflow.common.exceptions import ExternalServiceError
from disputeflow.integrations.base import BaseIntegration


class MarketplaceClient(BaseIntegration):
    BASE_URL = settings.MARKETPLACE_API_URL

    # Mock-mode registry, keyed by order id. Development and tests only:
    # shared by every instance, bounded to MOCK_REGISTRY_LIMIT orders with
    # the oldest evicted first.
    MOCK_REGISTRY_LIMIT: ClassVar[int] = 1000
    _orders: ClassVar[dict[str, OrderSnapshot]] = {}
    _transactions: ClassVar[dict[str, EscrowTransaction]] = {}

    def __init__(self, api_key: str | None = None) -> None:
        super().__init__("marketplace", api_key or settings.MARKETPLACE_API_KEY)

    @classmethod
    def seed_order(cls, order: OrderSnapshot, transaction: EscrowTransaction | None = None) -> None:
        cls._orders.pop(order.order_id, None)
        cls._orders[order.order_id] = order
        if transaction is not None:
            cls._transactions[order.order_id] = transaction

        while len(cls._orders) > cls.MOCK_REGISTRY_LIMIT:
            evicted = next(iter(cls._orders))
            del cls._orders[evicted]
            cls._transactions.pop(evicted, None)

    @classmethod
    def reset_mock_registry(cls) -> None:
        cls._orders.clear()
        cls._transactions.clear()

    async def get_order(self, order_id: str) -> OrderSnapshot | None:
        if self.is_mock:
            return self._orders.get(order_id)
        try:
            data = await self._request("GET", f"/orders/{order_id}")
        except ExternalServiceError as e:
            if e.upstream_status == 404:
                return None
            raise
        return OrderSnapshot.model_validate(data)

    async def get_transaction(self, order_id: str) -> EscrowTransaction | None:
        if self.is_mock:
            return self._transactions.get(order_id)
        data = await self._request("GET", f"/orders/{order_id}/transaction")
        return EscrowTransaction.model_validate(data) if data else None

    async def count_orders_by_user(self, user_id: str, role: str = "buyer") -> int:
        if self.is_mock:
            field = "buyer_id" if role == "buyer" else "seller_id"
            return sum(1 for o in self._orders.values() if getattr(o, field) == user_id)
        data = await self._request("GET", f"/users/{user_id}/order-count", params={"role": role})
        return int(data.get("count", 0))

    async def get_seller_response_rate(self, seller_id: str) -> float:
        if self.is_mock:
            return 0.0
        data = await self._request("GET", f"/sellers/{seller_id}/response-rate")
        return float(data.get("response_rate", 0.0))

    async def update_order_status(self, order_id: str, status: str) -> dict[str, Any]:
        if self.is_mock:
            order = self._orders.get(order_id)
            if order is not None:
                self._orders[order_id] = order.model_copy(update={"status": status})
            self.logger.info("Mock order status update | order=%s | status=%s", order_id, status)
            return {"order_id": order_id, "status": status}
        return await self._request("PATCH", f"/orders/{order_id}", json={"status": status})
