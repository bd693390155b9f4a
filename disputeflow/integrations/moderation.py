"""User moderation client: warnings, suspensions, rating impacts and fees."""

from __future__ import annotations

from typing import Any

from disputeflow.config import settings
from disputeflow.integrations.base import BaseIntegration


class ModerationClient(BaseIntegration):
    BASE_URL = settings.MODERATION_API_URL

    def __init__(self, api_key: str | None = None) -> None:
        super().__init__("moderation", api_key or settings.MODERATION_API_KEY)

    async def apply_action(
        self,
        action: str,
        target_user_id: str,
        details: dict[str, Any],
        idempotency_key: str,
    ) -> dict[str, Any]:
        if not self.is_mock:
            return await self._request(
                "POST",
                f"/users/{target_user_id}/actions",
                json={"action": action, "details": details},
                headers={"Idempotency-Key": idempotency_key},
            )

        self.logger.info("Mock moderation | %s -> user %s | %s", action, target_user_id, details)
        return {"status": "applied", "action": action, "user_id": target_user_id}
