"""HTTP gateway: one request in, one parsed payload or one JanvaniError out.

Every attempt is bounded by the gateway timeout. Failures are retried once
after a short backoff unless they look like an authentication failure, which
is surfaced immediately so the caller can sign out.
"""

import asyncio
import logging
from typing import Any, Mapping, Optional

import httpx

from . import config
from .errors import (
    AuthenticationError,
    JanvaniError,
    NetworkError,
    RequestTimeout,
    http_error_for,
    is_auth_failure,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 1
NO_CONTENT = {"success": True}


class Gateway:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, base_url: str = config.API_URL,
                 timeout: float = config.REQUEST_TIMEOUT, retry_backoff: float = config.RETRY_BACKOFF,
                 token: Optional[str] = None):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_backoff = retry_backoff
        self.token = token

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, endpoint: str, method: str = "GET", body: Any = None,
                   params: Optional[Mapping[str, Any]] = None) -> Any:
        """Send one logical request; at most ``MAX_RETRIES`` extra attempts."""
        method = method.upper()
        attempt = 0
        while True:
            attempt += 1
            logger.debug("%s %s -> sent (attempt %d)", method, endpoint, attempt)
            try:
                payload = await self._attempt(endpoint, method, body, params)
            except JanvaniError as e:
                if isinstance(e, AuthenticationError) or is_auth_failure(e.message):
                    logger.debug("%s %s -> failed (auth): %s", method, endpoint, e)
                    raise
                if attempt > MAX_RETRIES:
                    logger.debug("%s %s -> failed: %s", method, endpoint, e)
                    raise
                logger.warning("%s %s failed (%s), retrying in %.1fs", method, endpoint, e, self.retry_backoff)
                await asyncio.sleep(self.retry_backoff)
                continue
            logger.debug("%s %s -> succeeded", method, endpoint)
            return payload

    async def _attempt(self, endpoint: str, method: str, body: Any, params: Optional[Mapping[str, Any]]) -> Any:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            response = await asyncio.wait_for(
                self._client.request(method, f"{self.base_url}{endpoint}", json=body, params=params or None,
                                     headers=headers),
                self.timeout,
            )
        except asyncio.TimeoutError:
            raise RequestTimeout(f"{method} {endpoint} timed out after {self.timeout:g}s") from None
        except httpx.TimeoutException as e:
            raise RequestTimeout(f"{method} {endpoint} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(str(e) or e.__class__.__name__) from e

        if response.status_code == 204:
            return dict(NO_CONTENT)
        try:
            data = response.json()
        except ValueError:
            data = {"message": f"HTTP {response.status_code}"}
        if not response.is_success:
            raise http_error_for(response.status_code, _error_message(data, response.status_code))
        return data


def _error_message(data: Any, status_code: int) -> str:
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {status_code}"
