import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

import aiohttp

from src.domain.exceptions import DatabaseException, EntityNotFoundException
from src.domain.models import (
    COMMUNITY_STATS_FIELD,
    REPOSITORY_STATS_FIELD,
    CatalogEntity,
    CommunityStats,
    EnrichmentOutcome,
    EnrichmentSummary,
    FetchStatus,
    RepositoryStats,
    SubFetchResult,
)
from src.infrastructure.github_client import GitHubClient
from src.infrastructure.huggingface_client import HuggingFaceClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Courtesy pause between entities to stay under upstream rate limits
INTER_ENTITY_DELAY = 0.5
# Deadline applied around each sub-fetch; a timeout counts as a transient failure
FETCH_TIMEOUT = 30.0
DEFAULT_MAX_AGE_HOURS = 24.0
DEFAULT_BATCH_LIMIT = 50
# Limit concurrent connections to the upstream hosts
CONNECTOR_LIMIT = 10


def _default_session() -> aiohttp.ClientSession:
    return aiohttp.ClientSession(connector=aiohttp.TCPConnector(limit=CONNECTOR_LIMIT))


class CatalogStore(Protocol):
    async def get_entity(self, entity_id: str) -> Optional[CatalogEntity]: ...

    async def list_stale_entities(self, max_age_hours: float, limit: int) -> List[str]: ...

    async def list_published_entities(self) -> List[str]: ...

    async def persist_repository_stats(self, entity_id: str, stats: RepositoryStats) -> None: ...

    async def persist_community_stats(self, entity_id: str, stats: CommunityStats) -> None: ...

    async def mark_enrichment_checked(self, entity_id: str) -> None: ...


class EnrichmentService:
    """
    Service responsible for augmenting catalog entities with GitHub and model hub data.

    Every sub-fetch and persistence failure is recorded on the entity's
    EnrichmentOutcome; only a missing entity marks the outcome unsuccessful,
    and a batch always yields one outcome per requested id.
    """

    def __init__(
            self,
            github_client: GitHubClient,
            hub_client: HuggingFaceClient,
            catalog: CatalogStore,
            inter_entity_delay: float = INTER_ENTITY_DELAY,
            fetch_timeout: Optional[float] = FETCH_TIMEOUT,
            session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.github_client = github_client
        self.hub_client = hub_client
        self.catalog = catalog
        self.inter_entity_delay = inter_entity_delay
        self.fetch_timeout = fetch_timeout
        self._session_factory = session_factory or _default_session

    def _open_session(self) -> aiohttp.ClientSession:
        return self._session_factory()

    async def enrich_one(self, entity_id: str) -> EnrichmentOutcome:
        """On-demand refresh of a single entity, e.g. after its URLs were edited."""
        async with self._open_session() as session:
            return await self._safe_enrich(session, entity_id)

    async def enrich_many(self, entity_ids: Sequence[str]) -> Dict[str, EnrichmentOutcome]:
        """
        Enriches entities sequentially in the given order with a fixed delay between them.

        Args:
            entity_ids (Sequence[str]): Catalog ids to enrich.

        Returns:
            Dict[str, EnrichmentOutcome]: One outcome per requested id.
        """
        results: Dict[str, EnrichmentOutcome] = {}
        if not entity_ids:
            return results

        evicted = self.github_client.cache.evict_expired()
        if evicted:
            logger.info(f"[Enrichment] Evicted {evicted} expired GitHub cache entries.")

        async with self._open_session() as session:
            for index, entity_id in enumerate(entity_ids):
                results[entity_id] = await self._safe_enrich(session, entity_id)

                if index < len(entity_ids) - 1 and self.inter_entity_delay > 0:
                    await asyncio.sleep(self.inter_entity_delay)

        return results

    async def enrich_stale(
        self,
        max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
    ) -> int:
        """
        Enriches entities whose enrichment is missing or older than `max_age_hours`,
        oldest first, at most `batch_limit` of them.

        Returns:
            int: Number of entities processed. Zero is a normal result.
        """
        entity_ids = await self.catalog.list_stale_entities(max_age_hours, batch_limit)
        entity_ids = entity_ids[:max(batch_limit, 0)]
        if not entity_ids:
            logger.info("[Enrichment] No stale entities found.")
            return 0

        logger.info(f"[Enrichment] Found {len(entity_ids)} stale entities to enrich.")
        await self.enrich_many(entity_ids)
        return len(entity_ids)

    async def enrich_all_published(self) -> EnrichmentSummary:
        entity_ids = await self.catalog.list_published_entities()
        results = await self.enrich_many(entity_ids)

        successful = sum(1 for outcome in results.values() if outcome.success)
        summary = EnrichmentSummary(
            total=len(entity_ids),
            successful=successful,
            failed=len(results) - successful,
        )
        logger.info(
            f"[Enrichment] Published run finished. Total: {summary.total}, "
            f"successful: {summary.successful}, failed: {summary.failed}."
        )
        return summary

    async def _safe_enrich(self, session: aiohttp.ClientSession, entity_id: str) -> EnrichmentOutcome:
        try:
            return await self._enrich_entity(session, entity_id)
        except Exception as e:
            logger.exception(f"[Enrichment] Unexpected error enriching {entity_id}: {e}")
            return EnrichmentOutcome(entity_id=entity_id, success=False, errors=[str(e) or type(e).__name__])

    async def _enrich_entity(self, session: aiohttp.ClientSession, entity_id: str) -> EnrichmentOutcome:
        outcome = EnrichmentOutcome(entity_id=entity_id)

        try:
            entity = await self._load_entity(entity_id)
        except (EntityNotFoundException, DatabaseException) as e:
            outcome.success = False
            outcome.errors.append(str(e))
            logger.error(f"[Enrichment] Cannot enrich {entity_id}: {e}")
            return outcome

        logger.info(f"[Enrichment] Enriching {entity.name} ({entity.id})")

        if entity.github_url:
            result = await self._guarded(
                self.github_client.fetch_repo_stats(session, entity.github_url), "GitHub stats"
            )
            if self._record_fetch(outcome, result):
                await self._persist(
                    outcome,
                    REPOSITORY_STATS_FIELD,
                    self.catalog.persist_repository_stats(entity.id, result.value),
                )
                if REPOSITORY_STATS_FIELD in outcome.updated_fields:
                    outcome.repository_stats = result.value

        if entity.model_hub_url:
            result = await self._guarded(
                self.hub_client.fetch_community_stats(session, entity.model_hub_url), "community stats"
            )
            if self._record_fetch(outcome, result):
                await self._persist(
                    outcome,
                    COMMUNITY_STATS_FIELD,
                    self.catalog.persist_community_stats(entity.id, result.value),
                )
                if COMMUNITY_STATS_FIELD in outcome.updated_fields:
                    outcome.community_stats = result.value

        # Nothing written: stamp the check so dead or missing links do not hold the head of the stale queue
        if not outcome.updated_fields:
            await self._persist(outcome, None, self.catalog.mark_enrichment_checked(entity.id))

        logger.info(
            f"[Enrichment] Completed {entity.name}. Updated: {outcome.updated_fields or 'nothing'}, "
            f"errors: {len(outcome.errors)}."
        )
        return outcome

    async def _load_entity(self, entity_id: str) -> CatalogEntity:
        entity = await self.catalog.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundException(entity_id)
        return entity

    async def _guarded(self, fetch: Awaitable[SubFetchResult[T]], label: str) -> SubFetchResult[T]:
        try:
            if self.fetch_timeout is None:
                return await fetch
            return await asyncio.wait_for(fetch, timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            return SubFetchResult.failure(f"Failed to fetch {label}: timed out after {self.fetch_timeout}s")
        except Exception as e:
            logger.exception(f"[Enrichment] Unexpected error fetching {label}: {e}")
            return SubFetchResult.failure(f"Failed to fetch {label}: {str(e) or type(e).__name__}")

    @staticmethod
    def _record_fetch(outcome: EnrichmentOutcome, result: SubFetchResult) -> bool:
        """Returns True when there is a value to persist; records failures on the outcome."""
        if result.ok and result.value is not None:
            return True
        if result.status in (FetchStatus.FAILED, FetchStatus.INVALID_IDENTIFIER):
            outcome.errors.append(result.error or "Unknown fetch error")
            logger.warning(f"[Enrichment] {outcome.entity_id}: {result.error}")
        return False

    @staticmethod
    async def _persist(outcome: EnrichmentOutcome, field: Optional[str], write: Awaitable[None]) -> None:
        try:
            await write
        except Exception as e:
            outcome.errors.append(str(e) or type(e).__name__)
            logger.error(f"[Enrichment] {outcome.entity_id}: {e}")
            return
        if field is not None:
            outcome.updated_fields.append(field)
