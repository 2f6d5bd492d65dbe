"""Bridge Client - Authenticated HTTP access to the cloud bridge API

Wraps an httpx.AsyncClient with the connector's API key, bounded timeouts and
retry with backoff. Responses are mapped onto the connector error taxonomy:

- 401/403            → Unauthorized (never retried)
- 400/404/409/422    → PayloadRejected (never retried)
- network error, 5xx → retried, then TransportFailure
- 2xx with a body that is not a JSON object → TransportFailure
"""

import logging
from typing import Any

import httpx

from vetbridge.config import ConnectorSettings
from vetbridge.connector.errors import PayloadRejected, TransportFailure, Unauthorized
from vetbridge.utils.retry import RetryConfig, retry_async

logger = logging.getLogger(__name__)


class _ServerError(Exception):
    """5xx response, retried like a transport error"""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}: {error_message(response)}")
        self.response = response


def error_message(response: httpx.Response) -> str:
    """Extract the bridge {"error": ...} message, falling back to the raw body"""
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return response.text[:500]


def json_object(response: httpx.Response) -> dict[str, Any]:
    """Decode a successful bridge response body

    Raises:
        TransportFailure: Body is not a JSON object (e.g. a proxy error page)
    """
    try:
        data = response.json()
    except ValueError as e:
        raise TransportFailure(
            f"{response.request.method} {response.request.url} returned a non-JSON body: {response.text[:200]!r}",
            status_code=response.status_code,
        ) from e
    if not isinstance(data, dict):
        raise TransportFailure(
            f"{response.request.method} {response.request.url} returned {type(data).__name__}, expected an object",
            status_code=response.status_code,
        )
    return data


def build_http_client(settings: ConnectorSettings) -> httpx.AsyncClient:
    """HTTP client with the connector's request timeout"""
    return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)


class BridgeClient:
    """Client for the /api/bridge endpoints"""

    def __init__(self, settings: ConnectorSettings, http: httpx.AsyncClient):
        """Initialize with base URL, API key and retry policy from settings"""
        self.base_url = settings.API_BASE_URL.rstrip("/")
        self.api_key = settings.API_KEY
        self.http = http
        self.retry = RetryConfig(
            max_attempts=settings.RETRY_ATTEMPTS,
            initial_delay_ms=settings.RETRY_INITIAL_DELAY_MS,
            max_delay_ms=settings.RETRY_MAX_DELAY_MS,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send an authenticated request, retrying transport and server errors

        Raises:
            Unauthorized: API key rejected
            PayloadRejected: Request refused as invalid
            TransportFailure: Network or server error persisted through all retries
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        request_headers = {"x-api-key": self.api_key, **(headers or {})}

        async def send() -> httpx.Response:
            response = await self.http.request(method, url, json=json, headers=request_headers)
            if response.status_code >= 500:
                raise _ServerError(response)
            return response

        try:
            response = await retry_async(
                send,
                self.retry,
                retry_on=(httpx.TransportError, _ServerError),
                operation_name=f"{method} {url}",
            )
        except httpx.TransportError as e:
            raise TransportFailure(f"{method} {url} failed: {e}") from e
        except _ServerError as e:
            raise TransportFailure(f"{method} {url} failed: {e}", status_code=e.response.status_code) from e

        if response.status_code in (401, 403):
            raise Unauthorized(f"Bridge rejected the API key ({method} {url})", status_code=response.status_code)
        if response.status_code >= 400:
            raise PayloadRejected(
                f"{method} {url} rejected: {error_message(response)}", status_code=response.status_code
            )
        return response
