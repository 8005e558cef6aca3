"""Async resilient HTTP fetcher.

Every upstream GET in the package (CDX index queries and archived
documents) goes through :func:`fetch`.

Uses httpx.AsyncClient which is meant to be long-lived and reused.
A single shared client is managed by the module; see ``get_http_client``
and ``close_http_client`` for lifecycle hooks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Optional, Sequence

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from wayback_meta.core.config import settings

logger = logging.getLogger(__name__)

#: Characters of the response body kept on an HTTP status error.
BODY_SNIPPET_LENGTH = 200

# Module-level shared client
_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    """Return the shared AsyncClient.  Creates one if missing."""
    global _http_client  # noqa: PLW0603
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout),
            follow_redirects=True,
            verify=settings.http_verify_ssl,
            headers={"User-Agent": settings.user_agent},
        )
    return _http_client


async def close_http_client() -> None:
    """Close the shared AsyncClient gracefully."""
    global _http_client  # noqa: PLW0603
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
        _http_client = None
        logger.info("HTTP client closed.")


class UpstreamStatusError(Exception):
    """Non-2xx answer from upstream.  429 and 5xx are retryable."""

    def __init__(self, url: str, status_code: int, body: str = "") -> None:
        self.url = url
        self.status_code = status_code
        self.body = body[:BODY_SNIPPET_LENGTH]
        super().__init__(f"HTTP {status_code} for {url}\n{self.body}".rstrip())

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


class FetchError(Exception):
    """Raised when a URL cannot be fetched, after retries where applicable."""

    def __init__(self, url: str, last_cause: BaseException | str) -> None:
        self.url = url
        self.last_cause = last_cause
        super().__init__(f"Failed to fetch {url}: {last_cause}")


_TRANSPORT_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, UpstreamStatusError):
        return exc.retryable
    return isinstance(exc, _TRANSPORT_ERRORS)


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _retrying(max_retries: int, backoff_base: float) -> AsyncRetrying:
    """Retry policy: ``max_retries`` extra attempts, waits of base * 2**n."""
    return AsyncRetrying(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=backoff_base, exp_base=2, min=0),
        sleep=_sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=False,
    )


async def fetch(
    url: str,
    *,
    params: Sequence[tuple[str, str]] | Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
    timeout: float | None = None,
    max_retries: int | None = None,
    backoff_base: float | None = None,
) -> httpx.Response:
    """GET *url* and return the successful response.

    Transport failures, 429 and 5xx answers are retried with exponential
    backoff; any other non-2xx status fails on the first attempt.  Raises
    :class:`FetchError` carrying the last cause when the request cannot
    succeed.

    Retry bounds default to ``settings`` values read per call, not at import
    time, so patches in tests work as expected.
    """
    retries = settings.http_max_retries if max_retries is None else max_retries
    base = settings.http_backoff_base if backoff_base is None else backoff_base
    try:
        return await _retrying(retries, base)(
            _do_fetch, url, params, headers, timeout
        )
    except RetryError as exc:
        cause = exc.last_attempt.exception()
        raise FetchError(url, cause) from cause
    except (UpstreamStatusError, httpx.HTTPError) as exc:
        raise FetchError(url, exc) from exc


async def _do_fetch(
    url: str,
    params: Sequence[tuple[str, str]] | Mapping[str, str] | None,
    headers: Mapping[str, str] | None,
    timeout: float | None,
) -> httpx.Response:
    """Perform a single HTTP GET; raise on anything but a 2xx answer."""
    client = get_http_client()
    request_timeout = timeout if timeout is not None else settings.http_timeout

    try:
        response = await client.get(
            url, params=params, headers=headers, timeout=request_timeout
        )
    except httpx.InvalidURL as exc:
        raise FetchError(url, f"invalid URL: {exc}") from exc

    if not response.is_success:
        raise UpstreamStatusError(url, response.status_code, response.text)
    return response
