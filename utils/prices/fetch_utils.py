"""
Fan-out helpers shared by the upstream price clients.

`gather_settled` runs one coroutine per key with controlled concurrency and
reduces the results with settle-all semantics: a failing key becomes an
absent FetchOutcome while its siblings still resolve. It never raises for
individual failures.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

import httpx

from utils.prices.models import FetchOutcome
from utils.settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0",
    "Accept": "application/json, text/plain, */*",
}

# Errors an upstream fetch may raise that mean "absent", not "bug".
UPSTREAM_ERRORS = (httpx.HTTPError, ValueError, KeyError, TypeError, IndexError, AttributeError)


def dedupe(keys: Iterable[Optional[str]]) -> List[str]:
    """Drop empty keys and duplicates while keeping first-seen order."""
    seen = set()
    ordered = []
    for key in keys:
        if not key or key in seen:
            continue
        seen.add(key)
        ordered.append(key)
    return ordered


async def gather_settled(
    keys: Iterable[str],
    fetch: Callable[[str], Awaitable[Optional[T]]],
    max_concurrent: Optional[int] = None,
    source: str = "upstream",
) -> Dict[str, FetchOutcome[T]]:
    """
    Fetch every key concurrently and settle each one independently.

    Args:
        keys: Identifiers to fetch (duplicates and empty values are dropped)
        fetch: Coroutine function returning the parsed value or None
        max_concurrent: Concurrency cap (defaults to QUOTE_MAX_CONCURRENCY)
        source: Label used in log messages

    Returns:
        Mapping key -> FetchOutcome, containing every requested key
    """
    unique_keys = dedupe(keys)
    if not unique_keys:
        return {}

    semaphore = asyncio.Semaphore(max_concurrent or get_settings().quote_max_concurrency)

    async def fetch_one(key: str) -> Optional[T]:
        async with semaphore:
            return await fetch(key)

    tasks = [fetch_one(key) for key in unique_keys]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    outcomes: Dict[str, FetchOutcome[T]] = {}
    failed = 0
    for key, result in zip(unique_keys, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            failed += 1
            logger.warning(f"[{source}] fetch failed for {key}: {result!r}")
            outcomes[key] = FetchOutcome(key=key, error=str(result) or type(result).__name__)
        elif result is None:
            failed += 1
            outcomes[key] = FetchOutcome(key=key, error="no data")
        else:
            outcomes[key] = FetchOutcome(key=key, value=result)

    if failed:
        logger.info(f"[{source}] settled {len(unique_keys) - failed}/{len(unique_keys)} keys")
    return outcomes


def outcome_values(outcomes: Dict[str, FetchOutcome[T]]) -> Dict[str, Optional[T]]:
    """Collapse settled outcomes into the key -> value-or-None mapping callers consume."""
    return {key: (outcome.value if outcome.ok else None) for key, outcome in outcomes.items()}


def build_http_client(timeout: Optional[float] = None, **kwargs) -> httpx.AsyncClient:
    """Create the async HTTP client used for upstream quote sources."""
    return httpx.AsyncClient(
        timeout=timeout if timeout is not None else get_settings().quote_http_timeout_seconds,
        headers=BROWSER_HEADERS,
        follow_redirects=True,
        **kwargs,
    )
