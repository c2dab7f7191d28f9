import logging
import re
from typing import List, Optional

import aiohttp

from src.domain.models import Release, RepositoryStats, SubFetchResult
from src.infrastructure.acl import GitHubTranslator, MAX_RELEASES
from src.infrastructure.cache import TTLCache
from src.infrastructure.http_client import RateLimitedFetchClient

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"

# https://github.com/owner/repo[/...], with or without scheme.
_FULL_URL_PATTERN = re.compile(r"github\.com/([^/\s]+)/([^/\s?#]+)(?:[/?#]|$)")
_OWNER_REPO_PATTERN = re.compile(r"^([^/\s]+)/([^/\s]+)$")


def parse_repository_key(identifier_url: str) -> Optional[str]:
    """
    Normalizes a GitHub URL or bare `owner/repo` string to `owner/repo`.

    Returns None for any other shape.
    """
    if not identifier_url:
        return None
    candidate = identifier_url.strip()

    match = _FULL_URL_PATTERN.search(candidate)
    if match is None:
        if "://" in candidate or "github.com" in candidate:
            return None
        match = _OWNER_REPO_PATTERN.match(candidate)
    if match is None:
        return None

    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[:-4]
    if not owner or not repo:
        return None
    return f"{owner}/{repo}"


class GitHubClient:
    """
    Fetches repository statistics from the GitHub REST API.

    Composite results are cached per `owner/repo` key in the injected TTLCache,
    so repeated lookups inside the TTL cost no network calls.
    """

    def __init__(
        self,
        fetch_client: RateLimitedFetchClient,
        cache: Optional[TTLCache[RepositoryStats]] = None,
        api_url: str = API_URL,
    ):
        self.fetch_client = fetch_client
        self.cache: TTLCache[RepositoryStats] = cache if cache is not None else TTLCache()
        self.api_url = api_url.rstrip("/")

    @classmethod
    def create(cls, token: Optional[str] = None, cache: Optional[TTLCache[RepositoryStats]] = None) -> "GitHubClient":
        fetch_client = RateLimitedFetchClient(
            service_name="GitHub",
            token=token,
            extra_headers={"X-GitHub-Api-Version": "2022-11-28"},
        )
        return cls(fetch_client=fetch_client, cache=cache)

    async def fetch_repo_stats(
        self,
        session: aiohttp.ClientSession,
        identifier_url: str,
    ) -> SubFetchResult[RepositoryStats]:
        """
        Resolves the repository, consults the cache and on a miss fetches metadata
        followed by a best-effort releases listing.

        Returns:
            SubFetchResult[RepositoryStats]: OK with the stats, NOT_FOUND when the
            repository does not exist, INVALID_IDENTIFIER for an unparseable URL,
            FAILED for any other upstream error.
        """
        key = parse_repository_key(identifier_url)
        if key is None:
            logger.info(f"[GitHub] Invalid GitHub URL format: {identifier_url}")
            return SubFetchResult.invalid(f"Invalid GitHub URL: {identifier_url}")

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"[GitHub] Using cached stats for {key}")
            return SubFetchResult.success(cached)

        logger.info(f"[GitHub] Fetching stats for {key}")
        repo_result = await self.fetch_client.fetch_json(session, f"{self.api_url}/repos/{key}")

        if repo_result.not_found:
            logger.info(f"[GitHub] Repository {key} not found")
            return SubFetchResult.missing()
        if not repo_result.ok:
            return SubFetchResult.failure(f"Failed to fetch GitHub stats for {key}: {repo_result.error}")

        raw_releases = await self._fetch_raw_releases(session, key, MAX_RELEASES)

        try:
            stats = GitHubTranslator.to_domain(repo_result.data, raw_releases)
        except ValueError as e:
            return SubFetchResult.failure(f"Malformed GitHub response for {key}: {e}")

        self.cache.put(key, stats)
        logger.info(
            f"[GitHub] Fetched stats for {key}: stars={stats.stars}, forks={stats.forks}, "
            f"issues={stats.open_issues}, releases={len(stats.releases)}"
        )
        return SubFetchResult.success(stats)

    async def fetch_releases(
        self,
        session: aiohttp.ClientSession,
        identifier_url: str,
        limit: int = MAX_RELEASES,
    ) -> List[Release]:
        """Returns published releases only; any failure yields an empty list."""
        key = parse_repository_key(identifier_url)
        if key is None:
            return []
        raw_releases = await self._fetch_raw_releases(session, key, limit)
        return GitHubTranslator.filter_releases(raw_releases, limit=limit)

    async def get_latest_release_tag(
        self,
        session: aiohttp.ClientSession,
        identifier_url: str,
    ) -> Optional[str]:
        result = await self.fetch_repo_stats(session, identifier_url)
        if not result.ok or result.value.latest_release is None:
            return None
        return result.value.latest_release.tag or None

    async def _fetch_raw_releases(self, session: aiohttp.ClientSession, key: str, limit: int):
        # Release history is secondary; the repository is still reported without it.
        per_page = max(1, min(limit, 100))
        result = await self.fetch_client.fetch_json(
            session, f"{self.api_url}/repos/{key}/releases?per_page={per_page}"
        )
        if not result.ok:
            logger.info(f"[GitHub] Could not fetch releases for {key}: {result.error}")
            return []
        return result.data
