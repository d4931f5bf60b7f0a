from typing import Any, Dict, Optional

import httpx


class MigrationApiClient:
    """Async client for the migration API of the target shop."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "migration-runner",
        }
        if token:
            headers["Authorization"] = f"Bearer {token.strip()}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "MigrationApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """Perform a GET request to the given API endpoint."""
        response = await self._client.get(endpoint, params=params)
        response.raise_for_status()
        return response

    async def post(self, endpoint: str, json_data: Optional[Dict[str, Any]] = None) -> httpx.Response:
        response = await self._client.post(endpoint, json=json_data or {})
        response.raise_for_status()
        return response

    async def patch(self, endpoint: str, json_data: Optional[Dict[str, Any]] = None) -> httpx.Response:
        response = await self._client.patch(endpoint, json=json_data or {})
        response.raise_for_status()
        return response
