"""Downstream service boundary for SERVICE_CALL steps.

An endpoint is written as ``<service-name>/<path>``, e.g.
``auth-service/user/42/approval``. The service name is looked up in
``SERVICE_BASE_URLS``; unknown names are treated as host names.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from core.exceptions import DispatchError

logger = logging.getLogger(__name__)


class ServiceCallPort(ABC):
    """Abstract downstream business service invoker."""

    @abstractmethod
    async def invoke(self, endpoint: str, input_data: dict[str, Any]) -> dict[str, Any]:
        """Call ``endpoint`` with ``input_data`` and return its output.

        Raises:
            DispatchError: On any transport or non-2xx failure (retryable)
        """
        ...


class HttpServiceCallClient(ServiceCallPort):
    """POSTs the step payload as JSON and returns the JSON response."""

    def __init__(
        self,
        base_urls: Optional[dict[str, str]] = None,
        timeout_seconds: float = 30.0,
        method: str = "POST",
    ):
        self.base_urls = {k: v.rstrip("/") for k, v in (base_urls or {}).items()}
        self.timeout_seconds = timeout_seconds
        self.method = method
        self._client: Optional[httpx.AsyncClient] = None

    def resolve_url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        service, _, path = endpoint.strip("/").partition("/")
        base = self.base_urls.get(service, f"http://{service}")
        return f"{base}/{path}" if path else base

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def invoke(self, endpoint: str, input_data: dict[str, Any]) -> dict[str, Any]:
        url = self.resolve_url(endpoint)
        client = await self._get_client()
        start = time.monotonic()
        try:
            response = await client.request(self.method, url, json=input_data)
        except httpx.TimeoutException:
            raise DispatchError(f"Timeout calling {endpoint} after {time.monotonic() - start:.1f}s")
        except httpx.HTTPError as e:
            raise DispatchError(f"Request to {endpoint} failed: {str(e)[:200]}")

        if not response.is_success:
            raise DispatchError(
                f"{endpoint} returned HTTP {response.status_code}: {response.text[:200]}"
            )

        logger.info(
            f"Service call {endpoint} -> {response.status_code} "
            f"in {(time.monotonic() - start) * 1000:.0f}ms"
        )
        return self._parse_response(response)

    @staticmethod
    def _parse_response(response: httpx.Response) -> dict[str, Any]:
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            body = response.json()
            return body if isinstance(body, dict) else {"result": body}
        return {"result": response.text} if response.text else {}
