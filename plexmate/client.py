import httpx

from plexmate.core.exceptions import NotConfiguredError, UpstreamError
from plexmate.core.logging import get_logger

logger = get_logger("client")


class ServiceClient:
    """Base for the HTTP APIs we talk to (TMDB, Overseerr, Sonarr, Radarr)."""

    service = "service"
    timeout = 10.0

    def __init__(self, base_url: str, api_key: str, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def _headers(self) -> dict:
        return {}

    def _params(self, params: dict) -> dict:
        return params

    async def _request(
        self,
        endpoint: str,
        params: dict | None = None,
        method: str = "GET",
        json: dict | None = None,
    ):
        """Make a request and return the decoded JSON body."""
        if not self.configured:
            raise NotConfiguredError(self.service)

        params = self._params(dict(params or {}))
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(),
                    timeout=self.timeout
                )
                response.raise_for_status()
                if not response.content:
                    return None
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("%s %s %s returned %s", self.service, method, endpoint, e.response.status_code)
            raise UpstreamError(self.service, f"HTTP {e.response.status_code} for {endpoint}") from e
        except httpx.HTTPError as e:
            logger.warning("%s %s %s failed: %s", self.service, method, endpoint, e)
            raise UpstreamError(self.service, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise UpstreamError(self.service, f"invalid JSON from {endpoint}") from e
