import asyncio
import logging
from typing import Dict, Optional

import aiohttp

from src.domain.models import FetchResult
from src.infrastructure.rate_limiter import AsyncRateLimiter

logger = logging.getLogger(__name__)

USER_AGENT = "model-enrichment-pipeline"
DEFAULT_MAX_CALLS = 5
DEFAULT_PERIOD_SECONDS = 1.0


class RateLimitedFetchClient:
    """
    Issues GET requests against one named upstream API and returns a FetchResult.

    Non-2xx responses and transport errors are returned as data. The client
    never retries and enforces no overall timeout of its own; callers that need
    bounded latency wrap `fetch_json` with a deadline.
    """

    def __init__(
        self,
        service_name: str,
        token: Optional[str] = None,
        rate_limiter: Optional[AsyncRateLimiter] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ):
        self.service_name = service_name
        self.headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if extra_headers:
            self.headers.update(extra_headers)
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.rate_limiter = rate_limiter or AsyncRateLimiter(
            max_calls=DEFAULT_MAX_CALLS,
            period_seconds=DEFAULT_PERIOD_SECONDS,
        )

    async def fetch_json(self, session: aiohttp.ClientSession, url: str) -> FetchResult:
        """
        Fetches a JSON document.

        Args:
            session (aiohttp.ClientSession): Session shared across one enrichment batch.
            url (str): Absolute URL of the resource.

        Returns:
            FetchResult: `ok` with the decoded body on 2xx, `not_found` on 404,
            otherwise a failed result carrying the status and message.
        """
        await self.rate_limiter.acquire()

        try:
            async with session.get(url, headers=self.headers) as response:
                if response.status == 404:
                    logger.debug(f"[{self.service_name}] {url} not found.")
                    return FetchResult(url=url, status_code=404, error="Not found")

                if not 200 <= response.status < 300:
                    message = f"{self.service_name} API error: {response.status} {response.reason or ''}".strip()
                    logger.warning(f"[{self.service_name}] {message} ({url})")
                    return FetchResult(url=url, status_code=response.status, error=message)

                data = await response.json(content_type=None)
                return FetchResult(url=url, status_code=response.status, data=data)

        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            message = f"{self.service_name} request failed: {str(e) or type(e).__name__}"
            logger.warning(f"[{self.service_name}] {message} ({url})")
            return FetchResult(url=url, error=message)
