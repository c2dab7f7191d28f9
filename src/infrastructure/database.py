from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import Table, Column, String, DateTime, MetaData, select, update, text

from src.domain.exceptions import DatabaseException
from src.domain.models import CatalogEntity, CommunityStats, RepositoryStats

PUBLISHED_STATUS = "published"

# SQLAlchemy core Table definition for the catalog columns the pipeline touches
metadata = MetaData()
models_table = Table(
    'ai_models', metadata,
    Column('id', String, primary_key=True),
    Column('name', String, nullable=False),
    Column('slug', String),
    Column('status', String, nullable=False, server_default=text("'draft'")),
    Column('github_url', String),
    Column('huggingface_url', String),
    Column('github_stats', JSONB),
    Column('community_stats', JSONB),
    Column('enriched_at', DateTime(timezone=True)),
    Column('updated_at', DateTime(timezone=True), server_default=text('NOW()')),
)


class PostgresCatalogStore:
    """
    Catalog store backed by PostgreSQL.
    Reads entity URLs, selects stale entities and writes enrichment snapshots.
    """

    def __init__(self, db_url: str, clock: Optional[Callable[[], datetime]] = None):
        self.engine = create_async_engine(db_url, echo=False)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_entity(self, entity_id: str) -> Optional[CatalogEntity]:
        stmt = select(
            models_table.c.id,
            models_table.c.name,
            models_table.c.github_url,
            models_table.c.huggingface_url,
        ).where(models_table.c.id == entity_id)

        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(stmt)).first()
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to load entity {entity_id}: {e}") from e

        if row is None:
            return None
        return CatalogEntity(
            id=str(row.id),
            name=row.name,
            github_url=row.github_url or None,
            model_hub_url=row.huggingface_url or None,
        )

    async def list_stale_entities(self, max_age_hours: float, limit: int) -> List[str]:
        """
        Returns ids of published entities never enriched or enriched before the cutoff,
        never-enriched first, then oldest first.

        Args:
            max_age_hours (float): Maximum acceptable enrichment age.
            limit (int): Upper bound on the number of ids returned.
        """
        if limit <= 0:
            return []

        cutoff = self._clock() - timedelta(hours=max_age_hours)
        stmt = (
            select(models_table.c.id)
            .where(models_table.c.status == PUBLISHED_STATUS)
            .where(models_table.c.enriched_at.is_(None) | (models_table.c.enriched_at < cutoff))
            .order_by(models_table.c.enriched_at.asc().nulls_first(), models_table.c.id)
            .limit(limit)
        )
        return await self._fetch_ids(stmt, "stale entities")

    async def list_published_entities(self) -> List[str]:
        stmt = (
            select(models_table.c.id)
            .where(models_table.c.status == PUBLISHED_STATUS)
            .order_by(models_table.c.id)
        )
        return await self._fetch_ids(stmt, "published entities")

    async def persist_repository_stats(self, entity_id: str, stats: RepositoryStats) -> None:
        await self._write_snapshot(entity_id, 'github_stats', self._to_json(stats, include_latest=True))

    async def persist_community_stats(self, entity_id: str, stats: CommunityStats) -> None:
        await self._write_snapshot(entity_id, 'community_stats', self._to_json(stats))

    async def mark_enrichment_checked(self, entity_id: str) -> None:
        """Stamps `enriched_at` for an entity whose check produced no snapshot to persist."""
        stmt = (
            update(models_table)
            .where(models_table.c.id == entity_id)
            .values(enriched_at=self._clock())
        )
        try:
            async with self.engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to mark {entity_id} as checked: {e}") from e

    async def _fetch_ids(self, stmt, label: str) -> List[str]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return [str(row.id) for row in result]
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to list {label}: {e}") from e

    async def _write_snapshot(self, entity_id: str, column: str, payload: dict) -> None:
        now = self._clock()
        stmt = (
            update(models_table)
            .where(models_table.c.id == entity_id)
            .values({column: payload, 'enriched_at': now, 'updated_at': now})
        )
        try:
            async with self.engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to persist {column} for {entity_id}: {e}") from e

    @staticmethod
    def _to_json(stats, include_latest: bool = False) -> dict:
        payload = stats.model_dump(mode="json")
        if include_latest:
            latest = stats.latest_release
            payload['latest_release'] = latest.model_dump(mode="json") if latest else None
        return payload
