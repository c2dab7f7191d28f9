from datetime import datetime
from typing import Any, Dict, List, Optional
from src.domain.models import CommunityStats, Release, RepositoryStats

MAX_RELEASES = 10


def _parse_timestamp(raw_date: Any) -> Optional[datetime]:
    if not isinstance(raw_date, str) or not raw_date:
        return None
    try:
        return datetime.fromisoformat(raw_date.replace("Z", "+00:00"))
    except ValueError:
        return None


def _count(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


class GitHubTranslator:
    """
    Anti-corruption layer that translates raw GitHub REST responses into RepositoryStats instances.
    """

    @staticmethod
    def to_release(raw_release: Dict[str, Any]) -> Release:
        return Release(
            tag=raw_release.get('tag_name') or '',
            display_name=raw_release.get('name') or '',
            published_at=_parse_timestamp(raw_release.get('published_at')),
            notes=raw_release.get('body') or '',
            is_prerelease=bool(raw_release.get('prerelease')),
            is_draft=bool(raw_release.get('draft')),
        )

    @staticmethod
    def filter_releases(raw_releases: Any, limit: int = MAX_RELEASES) -> List[Release]:
        """
        Drops drafts and prereleases and keeps at most `limit` entries in API order
        (most recent first).
        """
        if not isinstance(raw_releases, list):
            return []

        published = [
            GitHubTranslator.to_release(raw)
            for raw in raw_releases
            if isinstance(raw, dict) and not raw.get('draft') and not raw.get('prerelease')
        ]
        return published[:limit]

    @staticmethod
    def to_domain(raw_repo: Dict[str, Any], raw_releases: Any = None) -> RepositoryStats:
        """
        Transforms a repository payload and its releases listing into RepositoryStats.

        Args:
            raw_repo (Dict[str, Any]): JSON body of `GET /repos/{owner}/{repo}`.
            raw_releases (Any): JSON body of `GET /repos/{owner}/{repo}/releases`, if any.

        Returns:
            RepositoryStats: The domain snapshot of the repository.
        """
        if not isinstance(raw_repo, dict):
            raise ValueError("Repository payload must be a JSON object.")

        return RepositoryStats(
            stars=_count(raw_repo.get('stargazers_count')),
            forks=_count(raw_repo.get('forks_count')),
            open_issues=_count(raw_repo.get('open_issues_count')),
            primary_language=raw_repo.get('language') or 'Unknown',
            last_updated_at=_parse_timestamp(raw_repo.get('updated_at')),
            last_pushed_at=_parse_timestamp(raw_repo.get('pushed_at')),
            releases=GitHubTranslator.filter_releases(raw_releases),
        )


class HubTranslator:
    """
    Translates a model hub `GET /api/models/{id}` payload into CommunityStats.
    """

    @staticmethod
    def to_domain(raw_model: Dict[str, Any], fetched_at: datetime) -> CommunityStats:
        if not isinstance(raw_model, dict):
            raise ValueError("Model payload must be a JSON object.")

        tags = raw_model.get('tags') or []
        return CommunityStats(
            downloads=_count(raw_model.get('downloads')),
            likes=_count(raw_model.get('likes')),
            library_name=raw_model.get('library_name'),
            pipeline_tag=raw_model.get('pipeline_tag'),
            tags=frozenset(tag for tag in tags if isinstance(tag, str)),
            last_updated_at=_parse_timestamp(raw_model.get('lastModified') or raw_model.get('last_modified')),
            fetched_at=fetched_at,
        )
