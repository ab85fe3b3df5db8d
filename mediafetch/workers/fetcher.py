"""Async HTTP fetcher used by every extraction strategy.

Wraps one long-lived ``httpx.AsyncClient``; the application lifespan owns
it and closes it on shutdown.  Connection failures are retried with
exponential backoff.  Timeouts are not retried: a timed-out strategy is a
failed strategy and the extraction chain moves on.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    wait_exponential,
)

from mediafetch.core.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"
)


class FetchError(Exception):
    """Raised when an upstream request fails or answers with an error status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class FetchTimeout(FetchError):
    """Raised when an upstream request exceeds its timeout."""


class Fetcher:
    """Thin async HTTP layer: GET/POST/HEAD with uniform error mapping."""

    def __init__(
        self, settings: Settings, client: httpx.AsyncClient | None = None
    ) -> None:
        self._settings = settings
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Return the shared AsyncClient.  Creates one if missing."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.http_timeout),
                follow_redirects=True,
                verify=self._settings.http_verify_ssl,
                headers={"User-Agent": DEFAULT_USER_AGENT},
            )
        return self._client

    async def close(self) -> None:
        """Close the AsyncClient gracefully."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("HTTP client closed.")

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def get_text(self, url: str, **kwargs: Any) -> str:
        response = await self.get(url, **kwargs)
        self._raise_for_status(response)
        return response.text

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.get(url, **kwargs)
        self._raise_for_status(response)
        return self._decode_json(response)

    async def post_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.post(url, **kwargs)
        self._raise_for_status(response)
        return self._decode_json(response)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        data: Any = None,
        timeout: float | None = None,
        follow_redirects: bool = True,
    ) -> httpx.Response:
        """Send one request, retrying connection failures.

        Raises :class:`FetchTimeout` on timeout and :class:`FetchError` on
        any other transport failure or when all retries are exhausted.
        Error statuses are returned, not raised; see ``get_text``.
        """
        try:
            return await self._send_with_retry(
                method,
                url,
                headers=headers,
                params=params,
                data=data,
                timeout=timeout,
                follow_redirects=follow_redirects,
            )
        except RetryError as exc:
            raise FetchError(
                f"Failed to fetch {url} after {self._settings.http_max_retries + 1} "
                f"attempts: {exc.last_attempt.exception()}"
            ) from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=lambda rs: rs.attempt_number >= rs.args[0]._settings.http_max_retries + 1,
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=False,
    )
    async def _send_with_retry(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Single attempt; tenacity retries on connection errors."""
        return await self._send(method, url, **kwargs)

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None,
        params: Mapping[str, Any] | None,
        data: Any,
        timeout: float | None,
        follow_redirects: bool,
    ) -> httpx.Response:
        request_timeout = httpx.Timeout(timeout or self._settings.http_timeout)
        try:
            response = await self.client.request(
                method,
                url,
                headers=dict(headers) if headers else None,
                params=params,
                data=data,
                timeout=request_timeout,
                follow_redirects=follow_redirects,
            )
        except httpx.InvalidURL as exc:
            raise FetchError(f"Invalid URL '{url}': {exc}") from exc
        except httpx.TimeoutException as exc:
            raise FetchTimeout(f"Timed out fetching {url}") from exc
        except httpx.ConnectError:
            raise  # propagate for retry logic
        except httpx.RequestError as exc:
            raise FetchError(f"Request error for '{url}': {exc}") from exc
        logger.debug("%s %s -> %s", method, url, response.status_code)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise FetchError(
                f"HTTP {response.status_code} from {response.request.url}",
                status_code=response.status_code,
            )

    @staticmethod
    def _decode_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(
                f"Invalid JSON from {response.request.url}",
                status_code=response.status_code,
            ) from exc
