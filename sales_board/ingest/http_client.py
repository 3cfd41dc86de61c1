"""Store HTTP client with status-aware error handling."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from sales_board.config import settings

logger = logging.getLogger(__name__)

# Retryable exceptions (transport errors)
RETRYABLE_EXC = (
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.PoolTimeout,
)


@dataclass(frozen=True)
class SitePolicy:
    """Per-host HTTP request policy configuration."""

    name: str
    max_attempts: int = 2
    timeout: httpx.Timeout = None  # Will be set to default if None
    retry_base_seconds: float = 0.5

    def __post_init__(self):
        """Set default timeout if not provided."""
        if self.timeout is None:
            object.__setattr__(
                self,
                'timeout',
                httpx.Timeout(settings.http_timeout_seconds),
            )


class UpstreamAuthError(RuntimeError):
    """Raised when the store denies access (401, 403, or an age/login gate)."""
    pass


class UpstreamFormatError(RuntimeError):
    """Raised when the store answers with an unexpected or malformed body."""
    pass


class TransientFetchError(RuntimeError):
    """Raised when a fetch fails after retries (5xx, timeouts, etc.)."""
    pass


class RateLimitedError(RuntimeError):
    """Raised when rate limited (429)."""

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__("Rate limited")
        self.retry_after = retry_after


def default_headers() -> dict[str, str]:
    """Get default browser-like headers."""
    return {
        "User-Agent": settings.store_user_agent,
        "Accept": "application/json, text/javascript, */*; q=0.01",
        "Accept-Language": "en-US,en;q=0.9",
    }


def build_store_client(
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the shared store client (cookie jar lives on the client)."""
    return httpx.AsyncClient(
        base_url=base_url or settings.store_base_url,
        headers=default_headers(),
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
        transport=transport,
    )


def _is_gate_redirect(resp: httpx.Response) -> bool:
    path = resp.url.path.lower()
    return "/agecheck" in path or "/login" in path


async def fetch_with_policy(
    client: httpx.AsyncClient,
    url: str,
    policy: SitePolicy,
    params: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> httpx.Response:
    """
    Fetch URL with policy and status-aware error handling.

    Args:
        client: httpx AsyncClient instance
        url: URL or path relative to the client's base URL
        policy: SitePolicy configuration
        params: Optional query parameters
        headers: Optional additional headers (merged over client defaults)

    Returns:
        httpx.Response on success

    Raises:
        UpstreamAuthError: If access is denied (401, 403 or a gate redirect)
        RateLimitedError: If rate limited (429) on the final attempt
        TransientFetchError: If fetch fails after retries
    """
    last_exc: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            resp = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=policy.timeout,
            )

            if _is_gate_redirect(resp):
                raise UpstreamAuthError(f"{policy.name}: gate redirect: {resp.url}")

            sc = resp.status_code

            if sc in (401, 403):
                raise UpstreamAuthError(f"{policy.name}: {sc} for {url}")

            if sc == 429:
                retry_after = resp.headers.get("Retry-After")
                retry_seconds = None
                if retry_after:
                    try:
                        retry_seconds = int(retry_after)
                    except (ValueError, TypeError):
                        pass
                raise RateLimitedError(retry_after=retry_seconds)

            if 200 <= sc < 300:
                return resp

            last_exc = TransientFetchError(f"{policy.name}: status {sc} for {url}")
            if attempt < policy.max_attempts:
                sleep_s = policy.retry_base_seconds * (2 ** (attempt - 1)) + random.random() * 0.25
                logger.warning(
                    f"{policy.name}: status {sc}, retrying in {sleep_s:.1f}s "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )
                await asyncio.sleep(sleep_s)
                continue
            raise TransientFetchError(
                f"{policy.name}: status {sc} for {url} after {policy.max_attempts} attempts"
            )

        except RateLimitedError as e:
            if attempt < policy.max_attempts:
                sleep_s = float(e.retry_after) if e.retry_after is not None else (
                    policy.retry_base_seconds * (2 ** attempt) + random.random()
                )
                logger.warning(
                    f"{policy.name}: rate limited (429), retrying in {sleep_s:.1f}s "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )
                await asyncio.sleep(sleep_s)
                last_exc = e
                continue
            raise

        except RETRYABLE_EXC as e:
            last_exc = e
            if attempt < policy.max_attempts:
                sleep_s = policy.retry_base_seconds * (2 ** (attempt - 1)) + random.random() * 0.25
                logger.warning(
                    f"{policy.name}: {type(e).__name__}, retrying in {sleep_s:.1f}s "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )
                await asyncio.sleep(sleep_s)
                continue
            raise TransientFetchError(
                f"{policy.name}: {type(e).__name__} for {url} after {policy.max_attempts} attempts"
            ) from e

    # Only reachable when max_attempts < 1
    raise TransientFetchError(f"{policy.name}: no attempts made for {url}") from last_exc
