import sys
import argparse
import logging
import threading
from typing import Any, Dict, List, Optional

from methodrag.input_layer.github_repository import GitHubRepository
from methodrag.models import Methodology, MethodologySearchResult, SyncResult
from methodrag.processing_layer.embedding_generator import create_embedding_client
from methodrag.processing_layer.search_indexer import SearchIndexer
from methodrag.retrieval_layer.methodology_retrieval import MethodologyRetrieval
from methodrag.retrieval_layer.vector_store import VectorSearchClient
from methodrag.storage_layer.catalog_store import CatalogStore
from methodrag.sync_layer.sync_engine import SyncEngine
from methodrag.utils.config_handler import DEFAULT_CONFIG_PATH, config
from methodrag.utils.error_handler import (
    ConfigurationError,
    MethodologyError,
    ProviderError,
    log_errors,
)
from methodrag.utils.formatter import ResultFormatter, format_results
from methodrag.utils.logger import setup_logger

REQUIRED_CONFIG_KEYS = ["catalog.directory", "sync.repo"]

class MethodologyService:
    """Catalog search and sync behind one object, wired from configuration."""

    def __init__(
        self,
        config_path: Optional[str] = DEFAULT_CONFIG_PATH,
        repository=None,
        embedding_client=None,
        vector_client=None,
        start_auto_sync: Optional[bool] = None,
        setup_logging: bool = True
    ):
        """Initialize the methodology service."""
        if config_path is not None:
            config.load_config(config_path)
            if setup_logging:
                setup_logger()
        self.logger = logging.getLogger(__name__)

        if not config.validate_required_keys(REQUIRED_CONFIG_KEYS):
            raise ConfigurationError("Configuration is incomplete",
                                     {"required": REQUIRED_CONFIG_KEYS})

        self.store = CatalogStore()

        # Optional services: a failure here leaves the service in degraded mode
        self.embedding_client = embedding_client
        if self.embedding_client is None and config.get("embedding.enabled", True):
            try:
                self.embedding_client = create_embedding_client()
            except ProviderError as e:
                self.logger.warning(f"Embedding client initialization failed: {str(e)}")

        self.vector_client = vector_client
        if self.vector_client is None and config.get("vector_search.enabled", True) \
                and self.embedding_client is not None:
            try:
                self.vector_client = VectorSearchClient(
                    dimensions=self.embedding_client.dimensions,
                    embedding_client=self.embedding_client
                )
            except ProviderError as e:
                self.logger.warning(f"Vector search initialization failed: {str(e)}")

        self.indexer = SearchIndexer(self.embedding_client, self.vector_client)
        self.retrieval = MethodologyRetrieval(
            self.store, self.embedding_client, self.vector_client, indexer=self.indexer
        )

        self.repository = repository or GitHubRepository()
        self.sync_engine = SyncEngine(self.repository, self.store, indexer=self.indexer)

        if config.get("vector_search.rebuild_on_start", True):
            self.rebuild_index()

        if start_auto_sync is None:
            start_auto_sync = config.get("sync.auto_sync", False)
        if start_auto_sync:
            self.sync_engine.start_auto_sync()

        self.logger.info("Methodology service initialized")

    @log_errors(logging.getLogger(__name__))
    def find(self, query) -> List[MethodologySearchResult]:
        return self.retrieval.find(query)

    def load_by_id(self, methodology_id: str) -> Optional[Methodology]:
        return self.retrieval.load_by_id(methodology_id)

    def list(self, category: Optional[str] = None) -> List[Methodology]:
        return self.retrieval.list(category)

    def trigger_sync(self, cancel_event: Optional[threading.Event] = None) -> Optional[SyncResult]:
        return self.sync_engine.trigger_sync(cancel_event)

    def get_sync_status(self) -> Dict[str, Any]:
        return self.sync_engine.get_sync_status()

    def stop_auto_sync(self) -> None:
        self.sync_engine.stop_auto_sync()

    def rebuild_index(self) -> int:
        return self.retrieval.rebuild_index()

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop the timer and wait for its thread; an in-flight run completes first."""
        self.sync_engine.stop_auto_sync(wait=True, timeout=timeout)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="methodrag", description="Search and sync the methodology catalog")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to the YAML configuration file")
    parser.add_argument("--format", choices=["text", "markdown"], default="text", help="Output format")
    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Find methodologies for a research intent")
    search.add_argument("intent", help="What you want to study")
    search.add_argument("--data-type", help="e.g. interview, observation, document")
    search.add_argument("--research-goal", choices=["theory_building", "description", "exploration", "evaluation"])
    search.add_argument("--paradigm", choices=["positivist", "constructivist", "critical", "pragmatic"])
    search.add_argument("--expertise", choices=["beginner", "intermediate", "advanced"])
    search.add_argument("--sample-size", type=int)

    subparsers.add_parser("sync", help="Pull methodologies from the remote repository now")
    subparsers.add_parser("status", help="Show sync status")

    list_parser = subparsers.add_parser("list", help="List catalog methodologies")
    list_parser.add_argument("--category")

    show = subparsers.add_parser("show", help="Show one methodology")
    show.add_argument("id")

    subparsers.add_parser("reindex", help="Rebuild the vector index from the catalog")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Command line entry point."""
    args = build_parser().parse_args(argv)
    formatter = ResultFormatter(format_type=args.format)

    try:
        service = MethodologyService(args.config, start_auto_sync=False)
    except MethodologyError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 2

    try:
        if args.command == "search":
            results = service.find({
                "intent": args.intent,
                "dataType": args.data_type,
                "researchGoal": args.research_goal,
                "paradigm": args.paradigm,
                "expertise": args.expertise,
                "sampleSize": args.sample_size,
            })
            print(format_results(results, args.format))
        elif args.command == "sync":
            result = service.trigger_sync()
            print(formatter.format_sync_result(result.to_dict()) if result else "A sync is already running")
        elif args.command == "status":
            print(formatter.format_sync_status(service.get_sync_status()))
        elif args.command == "list":
            print(formatter.format_methodology_list(service.list(args.category)))
        elif args.command == "show":
            methodology = service.load_by_id(args.id)
            if methodology is None:
                print(f"No methodology with id '{args.id}'", file=sys.stderr)
                return 1
            print(formatter.format_methodology(methodology))
        elif args.command == "reindex":
            print(f"Indexed {service.rebuild_index()} methodologies")
    except MethodologyError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1
    finally:
        service.close(timeout=5)
    return 0


if __name__ == "__main__":
    sys.exit(main())
