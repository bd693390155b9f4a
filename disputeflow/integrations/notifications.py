"""Notification service client.

Uses the notification API when a valid key is configured, otherwise
falls back to logging-only mock mode.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from disputeflow.config import settings
from disputeflow.integrations.base import BaseIntegration


class NotificationClient(BaseIntegration):
    BASE_URL = settings.NOTIFICATIONS_API_URL

    def __init__(self, api_key: str | None = None) -> None:
        super().__init__("notifications", api_key or settings.NOTIFICATIONS_API_KEY)

    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.is_mock:
            return await self._request(
                "POST",
                "/notifications",
                json={"user_id": user_id, "type": event_type, "data": payload},
                timeout=10,
            )

        notification_id = str(uuid.uuid4())
        self.logger.info("Mock notification | to=%s | type=%s", user_id, event_type)
        return {
            "id": notification_id,
            "status": "queued",
            "user_id": user_id,
            "type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
