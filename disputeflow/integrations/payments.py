"""Escrow payment integration client.

Uses the payments API when a valid key is configured, otherwise falls back
to mock responses for development. Every money movement carries an
idempotency key so a retried call never moves funds twice.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from disputeflow.config import settings
from disputeflow.integrations.base import BaseIntegration


class PaymentClient(BaseIntegration):
    """Refunds to buyers and releases to sellers out of escrow."""

    BASE_URL = settings.PAYMENTS_API_URL

    def __init__(self, api_key: str | None = None) -> None:
        super().__init__("payments", api_key or settings.PAYMENTS_API_KEY)

    async def refund(
        self, buyer_id: str, amount: Decimal, currency: str, idempotency_key: str
    ) -> dict[str, Any]:
        return await self._move("refunds", "re", buyer_id, amount, currency, idempotency_key)

    async def release(
        self, seller_id: str, amount: Decimal, currency: str, idempotency_key: str
    ) -> dict[str, Any]:
        return await self._move("releases", "rl", seller_id, amount, currency, idempotency_key)

    async def _move(
        self,
        kind: str,
        prefix: str,
        user_id: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
    ) -> dict[str, Any]:
        if not self.is_mock:
            data = await self._request(
                "POST",
                f"/escrow/{kind}",
                json={"user_id": user_id, "amount": str(amount), "currency": currency},
                headers={"Idempotency-Key": idempotency_key},
            )
            self.logger.info("Escrow %s %s: %s %s -> %s", kind, data.get("id"), amount, currency, user_id)
            return data

        payment_id = f"{prefix}_{uuid.uuid4().hex[:14]}"
        self.logger.info(
            "Mock escrow %s %s | %s %s -> %s | key=%s",
            kind,
            payment_id,
            amount,
            currency,
            user_id,
            idempotency_key,
        )
        return {
            "id": payment_id,
            "status": "succeeded",
            "user_id": user_id,
            "amount": str(amount),
            "currency": currency,
            "idempotency_key": idempotency_key,
            "created": datetime.now(timezone.utc).isoformat(),
        }
