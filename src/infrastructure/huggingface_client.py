import logging
import re
from datetime import datetime, timezone
from typing import Callable, Optional

import aiohttp

from src.domain.models import CommunityStats, SubFetchResult
from src.infrastructure.acl import HubTranslator
from src.infrastructure.http_client import RateLimitedFetchClient

logger = logging.getLogger(__name__)

API_URL = "https://huggingface.co/api/models"

_HUB_URL_PATTERN = re.compile(r"huggingface\.co/([^\s?#]+)")
_MODEL_ID_PATTERN = re.compile(r"^[\w.\-]+(?:/[\w.\-]+)?$")
# Path segments that follow the model id on hub web pages.
_RESERVED_SEGMENTS = {"tree", "blob", "resolve", "raw", "discussions", "commits", "spaces"}


def parse_model_id(identifier_url: str) -> Optional[str]:
    """
    Extracts a path-style hub model id (`org/name` or `name`) from a hub URL
    or a bare id. Returns None when nothing usable is found.
    """
    if not identifier_url:
        return None
    candidate = identifier_url.strip()

    match = _HUB_URL_PATTERN.search(candidate)
    if match is not None:
        segments = [s for s in match.group(1).split("/") if s]
        while segments and segments[0] in ("api", "models"):
            segments = segments[1:]
        if len(segments) > 1 and segments[1] in _RESERVED_SEGMENTS:
            segments = segments[:1]
        candidate = "/".join(segments[:2])
    elif "://" in candidate:
        return None

    if not candidate or not _MODEL_ID_PATTERN.match(candidate):
        return None
    return candidate


class HuggingFaceClient:
    """
    Fetches community statistics for a model from the hub API.

    There is no cache here: the hub is queried once per entity per pass.
    """

    def __init__(
        self,
        fetch_client: RateLimitedFetchClient,
        api_url: str = API_URL,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.fetch_client = fetch_client
        self.api_url = api_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def create(cls) -> "HuggingFaceClient":
        return cls(fetch_client=RateLimitedFetchClient(service_name="HuggingFace"))

    async def fetch_community_stats(
        self,
        session: aiohttp.ClientSession,
        identifier_url: str,
    ) -> SubFetchResult[CommunityStats]:
        model_id = parse_model_id(identifier_url)
        if model_id is None:
            return SubFetchResult.invalid(f"Invalid HuggingFace URL: {identifier_url}")

        result = await self.fetch_client.fetch_json(session, f"{self.api_url}/{model_id}")
        if result.not_found:
            logger.info(f"[HuggingFace] Model {model_id} not found")
            return SubFetchResult.missing()
        if not result.ok:
            return SubFetchResult.failure(f"Failed to fetch community stats for {model_id}: {result.error}")

        try:
            stats = HubTranslator.to_domain(result.data, fetched_at=self._clock())
        except ValueError as e:
            return SubFetchResult.failure(f"Malformed HuggingFace response for {model_id}: {e}")

        logger.info(f"[HuggingFace] Fetched community stats for {model_id}: downloads={stats.downloads}, likes={stats.likes}")
        return SubFetchResult.success(stats)
