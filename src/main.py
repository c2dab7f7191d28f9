import argparse
import asyncio
import json
import sys
import logging

from src.config import Settings, load_settings
from src.domain.exceptions import ConfigurationException, DatabaseException
from src.infrastructure.cache import TTLCache
from src.infrastructure.github_client import GitHubClient
from src.infrastructure.huggingface_client import HuggingFaceClient
from src.infrastructure.database import PostgresCatalogStore
from src.application.enrichment_service import EnrichmentService
from src.application.heuristics import HeuristicEnricher

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Enrich catalog models with GitHub and model hub data.")
    commands = parser.add_subparsers(dest="command", required=True)

    one = commands.add_parser("one", help="Enrich a single entity")
    one.add_argument("entity_id")

    many = commands.add_parser("many", help="Enrich the given entities in order")
    many.add_argument("entity_ids", nargs="+")

    stale = commands.add_parser("stale", help="Enrich entities with missing or old enrichment")
    stale.add_argument("--max-age-hours", type=float, default=None)
    stale.add_argument("--limit", type=int, default=None)

    commands.add_parser("all", help="Enrich every published entity")

    profile = commands.add_parser("profile", help="Print the text-derived profile of a model (no I/O)")
    profile.add_argument("name")
    profile.add_argument("--description", default="")
    profile.add_argument("--model-type", default=None)
    profile.add_argument("--parameters", default=None)
    profile.add_argument("--capability", action="append", default=[])
    return parser


def build_service(settings: Settings, catalog: PostgresCatalogStore) -> EnrichmentService:
    # One cache per process, owned by the service's GitHub client
    github_client = GitHubClient.create(token=settings.github_token, cache=TTLCache())
    return EnrichmentService(
        github_client=github_client,
        hub_client=HuggingFaceClient.create(),
        catalog=catalog,
        inter_entity_delay=settings.inter_entity_delay,
        fetch_timeout=settings.fetch_timeout,
    )


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run(args: argparse.Namespace, settings: Settings) -> int:
    catalog = PostgresCatalogStore(db_url=settings.database_url)
    service = build_service(settings, catalog)
    try:
        if args.command == "one":
            outcome = await service.enrich_one(args.entity_id)
            _print_json(outcome.model_dump(mode="json"))
            return 0 if outcome.success else 2

        if args.command == "many":
            outcomes = await service.enrich_many(args.entity_ids)
            _print_json({entity_id: o.model_dump(mode="json") for entity_id, o in outcomes.items()})
            return 0

        if args.command == "stale":
            max_age = args.max_age_hours if args.max_age_hours is not None else settings.max_age_hours
            limit = args.limit if args.limit is not None else settings.batch_limit
            processed = await service.enrich_stale(max_age, limit)
            _print_json({"processed": processed})
            return 0

        summary = await service.enrich_all_published()
        _print_json(summary.model_dump(mode="json"))
        return 0
    finally:
        await catalog.engine.dispose()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "profile":
        profile = HeuristicEnricher().enrich(
            name=args.name,
            description=args.description,
            model_type=args.model_type,
            parameters=args.parameters,
            capabilities=args.capability,
        )
        _print_json(profile.model_dump(mode="json"))
        return 0

    try:
        settings = load_settings()
    except ConfigurationException as e:
        configure_logging()
        logger.error(str(e))
        return 1

    configure_logging(settings.log_level)

    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        logger.info("Enrichment interrupted by user. Exiting gracefully.")
        return 130
    except DatabaseException as e:
        logger.error(f"Catalog store error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"An unexpected error occurred: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
