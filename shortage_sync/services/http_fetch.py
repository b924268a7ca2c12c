"""
HTTP Fetch Client
Timeouts, linear retry backoff and JSON decoding shared by both upstream providers,
plus bounded fan-out for detail fetches.
"""

import asyncio
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterable, Iterator, List, Optional, TypeVar, Union

import httpx
import pybreaker
import structlog

from shortage_sync.errors import AuthenticationError, FetchError, UpstreamUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

AUTH_FAILURE_STATUSES = (401, 403)


@contextmanager
def _breaker_guard(breaker: Optional[pybreaker.CircuitBreaker], url: str) -> Iterator[None]:
    """
    Run the block as one breaker-protected call.

    While the circuit is open the block never runs. Once the reset timeout has
    elapsed the block itself is the half-open trial.

    Raises:
        UpstreamUnavailableError: the circuit is (or just became) open
    """
    if breaker is None:
        yield
        return
    try:
        with breaker.calling():
            yield
    except pybreaker.CircuitBreakerError as e:
        raise UpstreamUnavailableError(f"{breaker.name} circuit open: {e}", url=url) from e


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    retries: int = 3,
    backoff_seconds: float = 2.0,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    breaker: Optional[pybreaker.CircuitBreaker] = None,
    no_retry_statuses: Iterable[int] = (),
) -> Any:
    """
    GET a URL and decode its JSON body.

    The per-attempt timeout comes from the client. Timeouts, transport errors,
    non-2xx statuses and undecodable bodies are retried with a linearly
    increasing delay (attempt * backoff_seconds). Statuses listed in
    `no_retry_statuses` fail on the first response so the caller can react
    (e.g. rotate credentials on 429).

    Raises:
        AuthenticationError: 401/403, never retried
        UpstreamUnavailableError: the provider's circuit is open
        FetchError: all attempts failed (carries the last error)
    """
    with _breaker_guard(breaker, url):
        return await _fetch_with_retries(
            client,
            url,
            max(1, retries),
            backoff_seconds,
            params,
            headers,
            frozenset(no_retry_statuses),
        )


async def _fetch_with_retries(client, url, retries, backoff_seconds, params, headers, no_retry_statuses) -> Any:
    last_error: Optional[FetchError] = None

    for attempt in range(1, retries + 1):
        try:
            response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            last_error = FetchError(f"Timeout fetching {url}: {e}", url=url)
        except httpx.HTTPError as e:
            last_error = FetchError(f"Network error fetching {url}: {e}", url=url)
        else:
            if response.status_code in AUTH_FAILURE_STATUSES:
                raise AuthenticationError(
                    f"{url} rejected credentials: HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            if response.status_code in no_retry_statuses:
                logger.warning("fetch_rejected", url=url, status_code=response.status_code)
                raise FetchError(
                    f"HTTP {response.status_code} for {url}",
                    url=url,
                    status_code=response.status_code,
                )
            if not response.is_success:
                last_error = FetchError(
                    f"HTTP {response.status_code} for {url}",
                    url=url,
                    status_code=response.status_code,
                )
            else:
                try:
                    return response.json()
                except ValueError as e:
                    last_error = FetchError(f"JSON parse error for {url}: {e}", url=url)

        if attempt < retries:
            delay = attempt * backoff_seconds
            logger.warning(
                "fetch_retry",
                url=url,
                attempt=attempt,
                retries=retries,
                delay_seconds=delay,
                error=str(last_error),
            )
            await asyncio.sleep(delay)

    logger.error("fetch_failed", url=url, retries=retries, error=str(last_error))
    raise last_error


async def probe_content_length(client: httpx.AsyncClient, url: str) -> Optional[int]:
    """
    Metadata-only HEAD probe returning Content-Length, or None when unavailable.

    Compression must be disabled or the server omits Content-Length.
    """
    try:
        response = await client.head(url, headers={"Accept-Encoding": "identity"})
    except httpx.HTTPError as e:
        logger.warning("probe_failed", url=url, error=str(e))
        return None

    if not response.is_success:
        logger.warning("probe_failed", url=url, status_code=response.status_code)
        return None

    value = response.headers.get("content-length")
    try:
        length = int(value) if value is not None else 0
    except ValueError:
        length = 0
    return length or None


async def gather_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    width: int = 20,
) -> List[Union[R, BaseException]]:
    """
    Run worker(item) for every item with at most `width` in flight.

    Results keep input order; a failed item yields its exception instead of
    aborting the others.
    """
    semaphore = asyncio.Semaphore(max(1, width))

    async def _bounded(item: T) -> R:
        async with semaphore:
            return await worker(item)

    return await asyncio.gather(*(_bounded(item) for item in items), return_exceptions=True)


def build_async_client(timeout_seconds: float = 60.0, transport: Optional[httpx.AsyncBaseTransport] = None, **kwargs) -> httpx.AsyncClient:
    """AsyncClient with the per-attempt timeout applied to every request"""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        transport=transport,
        follow_redirects=True,
        **kwargs,
    )
