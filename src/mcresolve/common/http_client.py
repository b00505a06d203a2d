"""Shared HTTP helpers used by the registry clients.

Encapsulates retry, backoff and error classification so registry modules
only deal with status codes and decoded payloads. Transient failures are
retried here and never reach the resolver unless every attempt fails.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from ..constants import Constants
from ..errors import RegistryUnavailable
from .logging_utils import Timer, extra_context, is_debug_enabled, safe_url

logger = logging.getLogger(__name__)

# Status codes worth another attempt.
RETRYABLE_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})


class HttpClient:
    """Async JSON client over a shared aiohttp session."""

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        retry_max: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        user_agent: Optional[str] = None,
    ):
        """Initialize the client.

        Args:
            timeout: Per-request timeout in seconds.
            retry_max: Attempts before a transient failure escalates.
            retry_base_delay: First backoff delay; doubles on each retry.
            user_agent: User-Agent header sent with every request.
        """
        self._timeout = aiohttp.ClientTimeout(
            total=timeout if timeout is not None else Constants.REQUEST_TIMEOUT
        )
        self._retry_max = max(1, retry_max if retry_max is not None else Constants.HTTP_RETRY_MAX)
        self._retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else Constants.HTTP_RETRY_BASE_DELAY_SEC
        )
        self._user_agent = user_agent or Constants.USER_AGENT
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "HttpClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (zero-based)."""
        return self._retry_base_delay * (2 ** attempt)

    async def get_json(
        self,
        url: str,
        *,
        context: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Dict[str, str], Optional[Any]]:
        """Perform a GET request and decode the JSON body.

        Args:
            url: Target URL.
            context: Human-readable source tag for logs (e.g., "modrinth").
            params: Optional query parameters.

        Returns:
            Tuple of (status_code, headers_dict, parsed_json_or_none). The
            payload is None when the body is empty or is not valid JSON.

        Raises:
            RegistryUnavailable: every attempt failed with a transport error,
                a timeout or a retryable status code.
        """
        if self._session is None:
            await self.start()
        assert self._session is not None
        target = safe_url(url)
        last_failure = ""

        for attempt in range(self._retry_max):
            if attempt:
                await asyncio.sleep(self.backoff_delay(attempt - 1))
            with Timer() as timer:
                try:
                    if is_debug_enabled(logger):
                        logger.debug(
                            "HTTP request",
                            extra=extra_context(
                                event="http_request",
                                component="http_client",
                                action="GET",
                                target=target,
                                context=context,
                                attempt=attempt + 1,
                            ),
                        )
                    async with self._session.get(url, params=params) as response:
                        status = response.status
                        headers = dict(response.headers)
                        text = await response.text()
                except asyncio.TimeoutError:
                    last_failure = f"timed out after {self._timeout.total} seconds"
                    logger.debug(
                        "HTTP timeout",
                        extra=extra_context(
                            event="http_exception",
                            component="http_client",
                            outcome="timeout",
                            attempt=attempt + 1,
                            target=target,
                        ),
                    )
                    continue
                except aiohttp.ClientError as exc:
                    last_failure = str(exc) or exc.__class__.__name__
                    logger.debug(
                        "HTTP request exception",
                        extra=extra_context(
                            event="http_exception",
                            component="http_client",
                            outcome="request_exception",
                            attempt=attempt + 1,
                            target=target,
                        ),
                    )
                    continue

            if status in RETRYABLE_STATUS:
                last_failure = f"HTTP {status}"
                logger.debug(
                    "HTTP retryable status",
                    extra=extra_context(
                        event="http_response",
                        component="http_client",
                        outcome="retryable_status",
                        status_code=status,
                        attempt=attempt + 1,
                        target=target,
                    ),
                )
                continue

            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP response",
                    extra=extra_context(
                        event="http_response",
                        component="http_client",
                        action="GET",
                        status_code=status,
                        duration_ms=timer.duration_ms(),
                        target=target,
                        context=context,
                    ),
                )
            return status, headers, _decode(text, target)

        logger.warning(
            "%s request failed after %s attempts: %s", context, self._retry_max, last_failure
        )
        raise RegistryUnavailable(
            f"{context} request to {target} failed after {self._retry_max} attempts: {last_failure}",
            registry=context,
        )


def _decode(text: str, target: str) -> Optional[Any]:
    """Parse a JSON body; None for empty or undecodable text."""
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.debug(
            "JSON decode error",
            extra=extra_context(
                event="parse",
                component="http_client",
                action="get_json",
                outcome="json_decode_error",
                target=target,
            ),
        )
        return None
