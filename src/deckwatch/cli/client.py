"""HTTP client the operator CLI uses to talk to a running orchestrator."""

from __future__ import annotations

from typing import Any

import httpx

from deckwatch.lib.errors import DeckwatchError
from deckwatch.lib.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_ORCHESTRATOR_URL = "http://127.0.0.1:3012"
# Cloud start blocks on the preflight check, so reads may take minutes
DEFAULT_TIMEOUT = httpx.Timeout(10.0, read=300.0)


class OrchestratorAPIError(DeckwatchError):
    """Raised when the orchestrator rejects or fails a request.

    Attributes:
        code: Error code reported by the orchestrator
        status_code: HTTP status of the response
        reason: Conflict reason, when the orchestrator reported one
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        reason: str | None = None,
    ) -> None:
        """Create an API error from a decoded error body."""
        self.code = code
        self.status_code = status_code
        self.reason = reason
        super().__init__(message)


class OrchestratorConnectionError(DeckwatchError):
    """Raised when the orchestrator cannot be reached."""

    code = "ConnectionError"

    def __init__(self, url: str, original_error: Exception) -> None:
        """Create a connection error for the given base URL."""
        self.url = url
        self.original_error = original_error
        super().__init__(f"Cannot reach orchestrator at {url}: {original_error}")


class OrchestratorClient:
    """Thin synchronous wrapper over the orchestrator's control routes."""

    def __init__(
        self,
        base_url: str = DEFAULT_ORCHESTRATOR_URL,
        timeout: httpx.Timeout | float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Orchestrator address
            timeout: Request timeout
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    def __enter__(self) -> OrchestratorClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying connection pool."""
        self._client.close()

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def status(self) -> dict[str, Any]:
        return self._request("GET", "/status")

    def processes(self) -> dict[str, Any]:
        return self._request("GET", "/processes")

    def logs(self, channel: str, limit: int) -> dict[str, Any]:
        return self._request(
            "GET", f"/deployment/logs/{channel}", params={"limit": limit}
        )

    def test_endpoints(self, base_url: str | None = None) -> dict[str, Any]:
        body = {"baseUrl": base_url} if base_url else {}
        return self._request("POST", "/test-endpoints", json=body)

    def local_start(self, service: str = "all") -> dict[str, Any]:
        return self._request(
            "POST", "/deployment/local/start", json={"service": service}
        )

    def local_stop(self) -> dict[str, Any]:
        return self._request("POST", "/deployment/local/stop")

    def local_restart(self, service: str = "all") -> dict[str, Any]:
        return self._request(
            "POST", "/deployment/local/restart", json={"service": service}
        )

    def cloud_start(
        self, service: str = "all", environment: str | None = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"service": service}
        if environment:
            body["environment"] = environment
        return self._request("POST", "/deployment/cloud/start", json=body)

    def cloud_stop(self) -> dict[str, Any]:
        return self._request("POST", "/deployment/cloud/stop")

    def cloud_restart(
        self, service: str = "all", environment: str | None = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"service": service}
        if environment:
            body["environment"] = environment
        return self._request("POST", "/deployment/cloud/restart", json=body)

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        logger.debug(f"{method} {self.base_url}{path}")
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise OrchestratorConnectionError(self.base_url, exc) from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error:
            raise OrchestratorAPIError(
                code=data.get("error", "InternalError"),
                message=data.get("message", response.text or response.reason_phrase),
                status_code=response.status_code,
                reason=data.get("reason"),
            )
        return data
