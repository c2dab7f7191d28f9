from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Generic, List, Optional, TypeVar
from pydantic import BaseModel, Field, ConfigDict

T = TypeVar("T")

REPOSITORY_STATS_FIELD = "repository_stats"
COMMUNITY_STATS_FIELD = "community_stats"


class Release(BaseModel):
    """A single published release of a hosted repository."""
    model_config = ConfigDict(frozen=True)

    tag: str = Field(..., description="Git tag the release points to")
    display_name: str = Field("", description="Human readable release title")
    published_at: Optional[datetime] = Field(None, description="Publication timestamp")
    notes: str = Field("", description="Release notes body")
    is_prerelease: bool = False
    is_draft: bool = False


class RepositoryStats(BaseModel):
    """
    Immutable snapshot of a hosted repository's metadata and release history.
    A refresh replaces the whole value.
    """
    model_config = ConfigDict(frozen=True)

    stars: int = Field(0, ge=0)
    forks: int = Field(0, ge=0)
    open_issues: int = Field(0, ge=0)
    primary_language: str = Field("Unknown", description="Primary language reported by the host")
    last_updated_at: Optional[datetime] = None
    last_pushed_at: Optional[datetime] = None
    releases: List[Release] = Field(default_factory=list, max_length=10)

    @property
    def latest_release(self) -> Optional[Release]:
        return self.releases[0] if self.releases else None


class CommunityStats(BaseModel):
    """Popularity data for a model published on the model hub."""
    model_config = ConfigDict(frozen=True)

    downloads: int = Field(0, ge=0)
    likes: int = Field(0, ge=0)
    library_name: Optional[str] = None
    pipeline_tag: Optional[str] = None
    tags: FrozenSet[str] = Field(default_factory=frozenset)
    last_updated_at: Optional[datetime] = Field(None, description="Upstream last modification time")
    fetched_at: datetime = Field(..., description="When this record was computed")


class CatalogEntity(BaseModel):
    """The subset of a catalog record the enrichment pipeline reads."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    github_url: Optional[str] = None
    model_hub_url: Optional[str] = None


class FetchStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_IDENTIFIER = "invalid_identifier"
    FAILED = "failed"


class FetchResult(BaseModel):
    """
    Outcome of a single HTTP GET against an upstream API.
    Remote 4xx/5xx responses and transport errors are represented here, not raised.
    """
    model_config = ConfigDict(frozen=True)

    url: str
    status_code: Optional[int] = Field(None, description="HTTP status, None when no response was received")
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class SubFetchResult(BaseModel, Generic[T]):
    """Result of one sub-fetch (repository or community stats) for an entity."""
    model_config = ConfigDict(frozen=True)

    status: FetchStatus
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "SubFetchResult[T]":
        return cls(status=FetchStatus.OK, value=value)

    @classmethod
    def missing(cls) -> "SubFetchResult[T]":
        return cls(status=FetchStatus.NOT_FOUND)

    @classmethod
    def invalid(cls, error: str) -> "SubFetchResult[T]":
        return cls(status=FetchStatus.INVALID_IDENTIFIER, error=error)

    @classmethod
    def failure(cls, error: str) -> "SubFetchResult[T]":
        return cls(status=FetchStatus.FAILED, error=error)

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.OK


class EnrichmentOutcome(BaseModel):
    """
    Per-entity run report produced by one orchestrator pass. Never persisted.
    """
    entity_id: str
    success: bool = True
    updated_fields: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    repository_stats: Optional[RepositoryStats] = None
    community_stats: Optional[CommunityStats] = None


class EnrichmentSummary(BaseModel):
    """Aggregate counts for a bulk enrichment run."""
    model_config = ConfigDict(frozen=True)

    total: int = Field(0, ge=0)
    successful: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)


class HeuristicProfile(BaseModel):
    """Text-derived enrichment for a catalog entity."""
    model_config = ConfigDict(frozen=True)

    ideal_hardware: str = ""
    risk_score: int = Field(50, ge=0, le=100)
    use_cases: List[str] = Field(default_factory=list)
    comparison_notes: str = ""
    tutorial_links: List[Dict[str, str]] = Field(default_factory=list)
    community_links: List[Dict[str, str]] = Field(default_factory=list)
    suggested_tags: List[str] = Field(default_factory=list)
