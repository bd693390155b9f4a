"""disputeflow collaborator clients.

All clients extend ``BaseIntegration`` and switch to a logging-only mock
mode when their API key starts with ``mock_``.
"""

from disputeflow.integrations.base import BaseIntegration
from disputeflow.integrations.chain import ChainGatewayClient
from disputeflow.integrations.marketplace import MarketplaceClient
from disputeflow.integrations.moderation import ModerationClient
from disputeflow.integrations.notifications import NotificationClient
from disputeflow.integrations.payments import PaymentClient

__all__ = [
    "BaseIntegration",
    "ChainGatewayClient",
    "MarketplaceClient",
    "ModerationClient",
    "NotificationClient",
    "PaymentClient",
]
