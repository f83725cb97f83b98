"""Async HTTP transport used by the registry client.

Wraps an aiohttp session with a request timeout, optional proxy, retries with
exponential backoff and JSON decoding. Retryable failures (connection errors,
timeouts, 429 and 5xx responses) are retried; once the retry budget is spent
a NetworkError is raised for the caller to degrade on.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from constants import Constants
from common.errors import NetworkError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

_MAX_RETRY_AFTER_SEC = 10.0


def _retry_after_seconds(headers: Dict[str, str]) -> Optional[float]:
    """Parse a numeric Retry-After header, if present."""
    value = headers.get("Retry-After") or headers.get("retry-after")
    if not value:
        return None
    try:
        return min(float(value), _MAX_RETRY_AFTER_SEC)
    except ValueError:
        return None


class AsyncHttpClient:
    """Small aiohttp wrapper with retries and JSON decoding."""

    def __init__(
        self,
        *,
        timeout: float = Constants.REQUEST_TIMEOUT,
        retries: int = Constants.HTTP_RETRY_MAX,
        base_delay: float = Constants.HTTP_RETRY_BASE_DELAY_SEC,
        proxy: Optional[str] = None,
        strict_ssl: bool = True,
        session: Optional[Any] = None,
    ):
        """Initialize the transport.

        Args:
            timeout: Total per-request timeout in seconds.
            retries: Additional attempts after the first failed one.
            base_delay: First backoff delay; doubled on each retry.
            proxy: Optional proxy URL applied to every request.
            strict_ssl: Verify TLS certificates.
            session: Pre-built session (tests inject a stub here).
        """
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._retries = max(0, int(retries))
        self._base_delay = max(0.0, float(base_delay))
        self._proxy = proxy
        self._strict_ssl = strict_ssl
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        """Open the underlying session if needed."""
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=100, ssl=None if self._strict_ssl else False)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=connector,
                headers={"User-Agent": Constants.USER_AGENT},
                trust_env=self._proxy is None,
            )
            self._owns_session = True

    async def close(self) -> None:
        """Close the session if this transport created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "AsyncHttpClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get_once(self, url: str, headers: Optional[Dict[str, str]]) -> Tuple[int, Dict[str, str], str]:
        """Issue one GET; raise NetworkError for retryable outcomes."""
        if self._session is None:
            await self.start()
        try:
            async with self._session.get(url, headers=headers, proxy=self._proxy) as response:
                status = response.status
                response_headers = dict(response.headers)
                if status == 429 or status >= 500:
                    raise NetworkError(
                        f"HTTP {status} from registry",
                        status_code=status,
                        retry_after=_retry_after_seconds(response_headers),
                    )
                try:
                    text = await response.text()
                except UnicodeDecodeError:
                    logger.warning(
                        "Couldn't decode response body from %s",
                        safe_url(url),
                        extra=extra_context(
                            event="parse",
                            component="http_client",
                            action="get_json",
                            outcome="body_decode_error",
                            target=safe_url(url),
                        ),
                    )
                    text = ""
                return status, response_headers, text
        except asyncio.TimeoutError as exc:
            raise NetworkError("request timed out") from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(str(exc) or exc.__class__.__name__) from exc

    async def get_json(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Dict[str, str], Optional[Any]]:
        """GET ``url`` and decode a JSON body.

        Args:
            url: Target URL.
            headers: Optional request headers.

        Returns:
            Tuple of (status_code, headers_dict, parsed_json_or_none). Non-200
            responses and undecodable bodies yield None as the payload.

        Raises:
            NetworkError: After every attempt failed with a retryable error.
        """
        if self._session is None:
            await self.start()
        safe_target = safe_url(url)
        last_error: Optional[NetworkError] = None

        for attempt in range(self._retries + 1):
            with Timer() as t:
                try:
                    if is_debug_enabled(logger):
                        logger.debug(
                            "HTTP request",
                            extra=extra_context(
                                event="http_request",
                                component="http_client",
                                action="GET",
                                target=safe_target,
                                attempt=attempt + 1,
                            ),
                        )
                    status, response_headers, text = await self._get_once(url, headers)
                except NetworkError as exc:
                    last_error = exc
                    logger.debug(
                        "HTTP attempt failed: %s",
                        exc,
                        extra=extra_context(
                            event="http_exception",
                            component="http_client",
                            action="GET",
                            outcome="retryable",
                            status_code=exc.status_code,
                            attempt=attempt + 1,
                            target=safe_target,
                        ),
                    )
                    if attempt < self._retries:
                        delay = exc.retry_after if exc.retry_after is not None else self._base_delay * (2 ** attempt)
                        await asyncio.sleep(delay)
                    continue

            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP response",
                    extra=extra_context(
                        event="http_response",
                        component="http_client",
                        action="GET",
                        status_code=status,
                        duration_ms=t.duration_ms(),
                        target=safe_target,
                    ),
                )
            if status != 200 or not text:
                return status, response_headers, None
            try:
                return status, response_headers, json.loads(text)
            except json.JSONDecodeError:
                logger.warning(
                    "Couldn't decode JSON from %s",
                    safe_target,
                    extra=extra_context(
                        event="parse",
                        component="http_client",
                        action="get_json",
                        outcome="json_decode_error",
                        target=safe_target,
                    ),
                )
                return status, response_headers, None

        raise NetworkError(
            f"Request failed after {self._retries + 1} attempts: {last_error}",
            status_code=last_error.status_code if last_error else None,
        )
