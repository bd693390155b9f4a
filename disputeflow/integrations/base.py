import httpx

from disputeflow.common.exceptions import ExternalServiceError
from disputeflow.common.logging import get_logger


class BaseIntegration:
    """Base class for all external collaborator clients.

    Provides common logging, a shared JSON request helper and a required
    health_check interface so the application can verify connectivity at
    startup or on-demand.
    """

    BASE_URL = ""

    def __init__(self, name: str, api_key: str = ""):
        self.name = name
        self.api_key = api_key
        self.logger = get_logger(f"integrations.{name}")

    @property
    def is_mock(self) -> bool:
        return self.api_key.startswith("mock_")

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", **(extra or {})}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
    ) -> dict:
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.request(
                    method,
                    f"{self.BASE_URL}{path}",
                    json=json,
                    params=params,
                    headers=self._headers(headers),
                )
                resp.raise_for_status()
                return resp.json() if resp.content else {}
        except httpx.HTTPStatusError as e:
            self.logger.error("%s %s returned %s", method, path, e.response.status_code)
            raise ExternalServiceError(
                self.name, str(e), upstream_status=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            self.logger.error("%s %s failed: %s", method, path, e)
            raise ExternalServiceError(self.name, str(e)) from e

    async def health_check(self) -> bool:
        """Return True when the integration is reachable and functional."""
        if self.is_mock:
            self.logger.info("%s health check: OK (mock)", self.name)
            return True
        try:
            await self._request("GET", "/health", timeout=10)
            return True
        except ExternalServiceError:
            return False
