import asyncio
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, call, patch

from src.application.enrichment_service import EnrichmentService
from src.domain.exceptions import DatabaseException
from src.domain.models import CatalogEntity, FetchResult
from src.infrastructure.cache import TTLCache
from src.infrastructure.github_client import GitHubClient
from src.infrastructure.huggingface_client import HuggingFaceClient

GITHUB_API = "https://api.github.com/repos"
HUB_API = "https://huggingface.co/api/models"


class _FakeFetchClient:
    """Serves canned bodies by URL; unknown URLs are 404s."""

    def __init__(self, responses=None) -> None:
        self.responses = responses or {}
        self.calls = []

    async def fetch_json(self, session, url):
        self.calls.append(url)
        body = self.responses.get(url)
        if isinstance(body, FetchResult):
            return body
        if body is None:
            return FetchResult(url=url, status_code=404, error="Not found")
        return FetchResult(url=url, status_code=200, data=body)


class _FakeCatalog:
    def __init__(self, entities=None, stale=None) -> None:
        self.entities = {e.id: e for e in (entities or [])}
        self.stale = stale or []
        self.repository_stats = {}
        self.community_stats = {}
        self.checked = []
        self.stale_requests = []
        self.fail_repository_writes = False

    async def get_entity(self, entity_id):
        return self.entities.get(entity_id)

    async def list_stale_entities(self, max_age_hours, limit):
        self.stale_requests.append((max_age_hours, limit))
        return list(self.stale)

    async def list_published_entities(self):
        return list(self.entities)

    async def persist_repository_stats(self, entity_id, stats):
        if self.fail_repository_writes:
            raise DatabaseException(f"Failed to persist github_stats for {entity_id}: disk full")
        self.repository_stats[entity_id] = stats

    async def persist_community_stats(self, entity_id, stats):
        self.community_stats[entity_id] = stats

    async def mark_enrichment_checked(self, entity_id):
        self.checked.append(entity_id)


class _DummySession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _widget_responses():
    return {
        f"{GITHUB_API}/acme/widget": {"stargazers_count": 200, "forks_count": 3, "language": "Python"},
        f"{GITHUB_API}/acme/widget/releases?per_page=10": [
            {"tag_name": "v2", "draft": True},
            {"tag_name": "v1", "draft": False, "prerelease": False},
        ],
    }


def _service(catalog, github_responses=None, hub_responses=None, **kwargs) -> EnrichmentService:
    github_client = GitHubClient(fetch_client=_FakeFetchClient(github_responses), cache=TTLCache())
    hub_client = HuggingFaceClient(fetch_client=_FakeFetchClient(hub_responses))
    kwargs.setdefault("inter_entity_delay", 0)
    kwargs.setdefault("session_factory", _DummySession)
    return EnrichmentService(github_client=github_client, hub_client=hub_client, catalog=catalog, **kwargs)


class TestEnrichOne(unittest.IsolatedAsyncioTestCase):
    async def test_repository_only_entity_is_fully_enriched(self) -> None:
        catalog = _FakeCatalog([CatalogEntity(id="E1", name="Widget", github_url="github.com/acme/widget")])
        service = _service(catalog, github_responses=_widget_responses())

        outcome = await service.enrich_one("E1")

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.updated_fields, ["repository_stats"])
        self.assertEqual(outcome.errors, [])
        self.assertEqual(outcome.repository_stats.stars, 200)
        self.assertEqual(len(outcome.repository_stats.releases), 1)
        self.assertEqual(catalog.repository_stats["E1"].stars, 200)
        self.assertEqual(catalog.community_stats, {})
        self.assertEqual(catalog.checked, [])

    async def test_missing_entity_is_the_only_fatal_outcome(self) -> None:
        service = _service(_FakeCatalog())

        outcome = await service.enrich_one("E2")

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.updated_fields, [])
        self.assertEqual(len(outcome.errors), 1)
        self.assertIn("entity not found", outcome.errors[0].lower())

    async def test_unreachable_hub_does_not_affect_repository_stats(self) -> None:
        entity = CatalogEntity(
            id="E3",
            name="Widget",
            github_url="https://github.com/acme/widget",
            model_hub_url="https://huggingface.co/acme/widget",
        )
        hub_failure = FetchResult(url=f"{HUB_API}/acme/widget", error="HuggingFace request failed: connection refused")
        service = _service(
            _FakeCatalog([entity]),
            github_responses=_widget_responses(),
            hub_responses={f"{HUB_API}/acme/widget": hub_failure},
        )

        outcome = await service.enrich_one("E3")

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.updated_fields, ["repository_stats"])
        self.assertEqual(len(outcome.errors), 1)
        self.assertIn("connection refused", outcome.errors[0])

    async def test_both_sources_are_persisted(self) -> None:
        entity = CatalogEntity(
            id="E4", name="Widget", github_url="acme/widget", model_hub_url="https://huggingface.co/acme/widget"
        )
        catalog = _FakeCatalog([entity])
        service = _service(
            catalog,
            github_responses=_widget_responses(),
            hub_responses={f"{HUB_API}/acme/widget": {"downloads": 10, "likes": 2}},
        )

        outcome = await service.enrich_one("E4")

        self.assertEqual(outcome.updated_fields, ["repository_stats", "community_stats"])
        self.assertEqual(catalog.community_stats["E4"].downloads, 10)
        self.assertEqual(outcome.community_stats.likes, 2)

    async def test_nonexistent_repository_is_not_an_error(self) -> None:
        catalog = _FakeCatalog([CatalogEntity(id="E5", name="Ghost", github_url="acme/ghost")])
        service = _service(catalog)

        outcome = await service.enrich_one("E5")

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.updated_fields, [])
        self.assertEqual(outcome.errors, [])
        self.assertEqual(catalog.checked, ["E5"])

    async def test_persistence_failure_does_not_block_other_write(self) -> None:
        entity = CatalogEntity(
            id="E6", name="Widget", github_url="acme/widget", model_hub_url="acme/widget"
        )
        catalog = _FakeCatalog([entity])
        catalog.fail_repository_writes = True
        service = _service(
            catalog,
            github_responses=_widget_responses(),
            hub_responses={f"{HUB_API}/acme/widget": {"downloads": 1}},
        )

        outcome = await service.enrich_one("E6")

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.updated_fields, ["community_stats"])
        self.assertEqual(len(outcome.errors), 1)
        self.assertIn("disk full", outcome.errors[0])
        self.assertIsNone(outcome.repository_stats)

    async def test_invalid_url_is_recorded_without_network_call(self) -> None:
        catalog = _FakeCatalog([CatalogEntity(id="E7", name="Odd", github_url="not a url")])
        service = _service(catalog)

        outcome = await service.enrich_one("E7")

        self.assertTrue(outcome.success)
        self.assertEqual(len(outcome.errors), 1)
        self.assertEqual(service.github_client.fetch_client.calls, [])
        self.assertEqual(catalog.checked, ["E7"])

    async def test_timeout_is_treated_as_transient_failure(self) -> None:
        catalog = _FakeCatalog([CatalogEntity(id="E8", name="Slow", github_url="acme/widget")])
        service = _service(catalog, fetch_timeout=0.01)

        async def _hang(session, url):
            await asyncio.sleep(1)

        service.github_client.fetch_client.fetch_json = _hang

        outcome = await service.enrich_one("E8")

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.updated_fields, [])
        self.assertEqual(len(outcome.errors), 1)
        self.assertIn("timed out", outcome.errors[0])

    async def test_failed_fetch_is_marked_checked(self) -> None:
        catalog = _FakeCatalog([CatalogEntity(id="E10", name="Flaky", github_url="acme/widget")])
        failure = FetchResult(url=f"{GITHUB_API}/acme/widget", status_code=502, error="GitHub API error: 502 Bad Gateway")
        service = _service(catalog, github_responses={f"{GITHUB_API}/acme/widget": failure})

        outcome = await service.enrich_one("E10")

        self.assertEqual(outcome.updated_fields, [])
        self.assertEqual(len(outcome.errors), 1)
        self.assertEqual(catalog.checked, ["E10"])

    async def test_entity_without_urls_is_marked_checked(self) -> None:
        catalog = _FakeCatalog([CatalogEntity(id="E9", name="Bare")])
        service = _service(catalog)

        outcome = await service.enrich_one("E9")

        self.assertTrue(outcome.success)
        self.assertEqual(catalog.checked, ["E9"])


class TestEnrichMany(unittest.IsolatedAsyncioTestCase):
    async def test_returns_one_outcome_per_entity_even_when_one_crashes(self) -> None:
        entities = [CatalogEntity(id=f"M{i}", name=f"Model {i}", github_url="acme/widget") for i in range(3)]
        catalog = _FakeCatalog(entities)
        service = _service(catalog, github_responses=_widget_responses())

        original = catalog.get_entity

        async def _flaky(entity_id):
            if entity_id == "M1":
                raise RuntimeError("unexpected driver error")
            return await original(entity_id)

        catalog.get_entity = _flaky

        results = await service.enrich_many(["M0", "M1", "M2", "missing"])

        self.assertEqual(list(results), ["M0", "M1", "M2", "missing"])
        self.assertTrue(results["M0"].success)
        self.assertFalse(results["M1"].success)
        self.assertIn("unexpected driver error", results["M1"].errors[0])
        self.assertTrue(results["M2"].success)
        self.assertFalse(results["missing"].success)

    async def test_shared_cache_means_one_round_trip_per_repository(self) -> None:
        entities = [CatalogEntity(id=f"M{i}", name=f"Model {i}", github_url="acme/widget") for i in range(3)]
        service = _service(_FakeCatalog(entities), github_responses=_widget_responses())

        await service.enrich_many(["M0", "M1", "M2"])

        self.assertEqual(len(service.github_client.fetch_client.calls), 2)

    async def test_sleeps_between_entities(self) -> None:
        entities = [CatalogEntity(id=f"M{i}", name=f"Model {i}") for i in range(3)]
        service = _service(_FakeCatalog(entities), inter_entity_delay=0.5)

        with patch("src.application.enrichment_service.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await service.enrich_many(["M0", "M1", "M2"])

        self.assertEqual(mock_sleep.await_args_list, [call(0.5), call(0.5)])

    async def test_empty_batch_returns_empty_mapping(self) -> None:
        service = _service(_FakeCatalog())
        self.assertEqual(await service.enrich_many([]), {})

    async def test_expired_cache_entries_are_evicted_before_batch(self) -> None:
        service = _service(_FakeCatalog([CatalogEntity(id="M0", name="Model")]))
        clock = _Clock(100.0)
        service.github_client.cache = TTLCache(ttl_seconds=1, time_fn=clock)
        service.github_client.cache.put("acme/old", object())
        clock.now = 200.0

        await service.enrich_many(["M0"])

        self.assertEqual(len(service.github_client.cache), 0)


class TestEnrichStale(unittest.IsolatedAsyncioTestCase):
    async def test_processes_at_most_batch_limit_oldest_first(self) -> None:
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        enriched_at = {f"S{i:03d}": base + timedelta(hours=i) for i in range(500)}
        ordered = sorted(enriched_at, key=enriched_at.get)
        entities = [CatalogEntity(id=entity_id, name=entity_id) for entity_id in ordered]
        catalog = _FakeCatalog(entities, stale=ordered)
        service = _service(catalog)
        processed_order = []
        original = catalog.get_entity

        async def _tracking(entity_id):
            processed_order.append(entity_id)
            return await original(entity_id)

        catalog.get_entity = _tracking

        count = await service.enrich_stale(24, 10)

        self.assertEqual(count, 10)
        self.assertEqual(processed_order, ordered[:10])
        self.assertEqual(catalog.stale_requests, [(24, 10)])

    async def test_no_stale_entities_returns_zero(self) -> None:
        service = _service(_FakeCatalog())
        self.assertEqual(await service.enrich_stale(24, 10), 0)


class TestEnrichAllPublished(unittest.IsolatedAsyncioTestCase):
    async def test_summary_counts(self) -> None:
        entities = [CatalogEntity(id="P1", name="One"), CatalogEntity(id="P2", name="Two")]
        catalog = _FakeCatalog(entities)
        service = _service(catalog)

        summary = await service.enrich_all_published()

        self.assertEqual(summary.total, 2)
        self.assertEqual(summary.successful, 2)
        self.assertEqual(summary.failed, 0)
