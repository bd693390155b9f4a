"""Escrow smart-contract gateway client.

The gateway owns wallets and RPC access; we only ask it to settle a
locked escrow contract and get back the transaction hash.
"""

from __future__ import annotations

import secrets

from disputeflow.config import settings
from disputeflow.integrations.base import BaseIntegration


class ChainGatewayClient(BaseIntegration):
    BASE_URL = settings.CHAIN_GATEWAY_URL

    def __init__(self, api_key: str | None = None) -> None:
        super().__init__("chain_gateway", api_key or settings.CHAIN_GATEWAY_KEY)

    async def resolve_on_chain(
        self, contract_address: str, decision: str, idempotency_key: str
    ) -> str:
        if not self.is_mock:
            data = await self._request(
                "POST",
                f"/contracts/{contract_address}/resolve",
                json={"decision": decision},
                headers={"Idempotency-Key": idempotency_key},
                timeout=60,
            )
            return data["tx_hash"]

        tx_hash = "0x" + secrets.token_hex(32)
        self.logger.info(
            "Mock on-chain resolution | contract=%s | decision=%s | tx=%s",
            contract_address,
            decision,
            tx_hash,
        )
        return tx_hash
