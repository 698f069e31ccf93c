import json
import threading
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import yaml

from methodrag.input_layer.github_repository import RemoteFile
from methodrag.input_layer.methodology_validator import validate_methodology
from methodrag.models import SyncResult
from methodrag.processing_layer.search_indexer import SearchIndexer
from methodrag.storage_layer.catalog_store import (
    ADDED,
    CONFLICT,
    EQUAL_VERSION_POLICIES,
    UPDATED,
    CatalogStore,
)
from methodrag.utils.capability import ProviderCapability
from methodrag.utils.config_handler import config
from methodrag.utils.error_handler import (
    ConfigurationError,
    InvalidRecordError,
    MethodologyError,
    OperationCancelledError,
)
from methodrag.utils.logger import get_logger
from methodrag.utils.parallel_processor import process_in_parallel

logger = get_logger(__name__)

IDLE = "idle"
RUNNING = "running"
COOLING_DOWN = "cooling-down"

SUPPORTED_EXTENSIONS = (".json", ".yaml", ".yml")

class SyncState:
    """Run bookkeeping owned by one SyncEngine.

    Created with the engine. ``last_sync`` and ``last_result`` change only
    when one of its runs completes; ``stop_auto_sync`` clears the timer flag.
    """

    def __init__(self, repo_ref: str):
        self.repo_ref = repo_ref
        self.last_sync: Optional[datetime] = None
        self.last_result: Optional[SyncResult] = None
        self.run_count = 0
        self.auto_sync_enabled = False

class SyncEngine:
    """Pulls methodology files from the remote repository into the catalog.

    At most one run is in flight per engine: a trigger that arrives while a
    run holds the run lock returns None without queueing.
    """

    def __init__(
        self,
        repository,
        store: CatalogStore,
        indexer: Optional[SearchIndexer] = None,
        remote_path: str = None,
        interval_minutes: float = None,
        max_workers: int = None,
        equal_version_policy: str = None
    ):
        self.repository = repository
        self.store = store
        self.indexer = indexer
        self.remote_path = remote_path or config.get("sync.remote_path", "methodologies")
        self.interval_minutes = (interval_minutes if interval_minutes is not None
                                 else config.get("sync.interval_minutes", 60))
        self.max_workers = max_workers or config.get("sync.max_workers", 1)
        self.equal_version_policy = equal_version_policy or config.get(
            "sync.equal_version_policy", "ignore")
        if self.equal_version_policy not in EQUAL_VERSION_POLICIES:
            raise ConfigurationError(
                f"Unknown equal_version_policy: {self.equal_version_policy}",
                {"allowed": list(EQUAL_VERSION_POLICIES)}
            )

        self.state = SyncState(getattr(repository, "repo_ref", str(repository)))
        self._run_lock = threading.Lock()
        self._timer_guard = threading.Lock()
        self._timer_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def status(self) -> str:
        if self._run_lock.locked():
            return RUNNING
        thread = self._timer_thread
        if thread is not None and thread.is_alive():
            return COOLING_DOWN
        return IDLE

    def trigger_sync(self, cancel_event: Optional[threading.Event] = None) -> Optional[SyncResult]:
        """
        Run one sync now unless one is already in flight.

        Args:
            cancel_event: Optional signal; once set, no further files are fetched

        Returns:
            The run result, or None if another run was in flight
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Sync already running, trigger ignored")
            return None
        try:
            return self._run(cancel_event)
        finally:
            self._run_lock.release()

    def get_sync_status(self) -> Dict[str, Any]:
        last_result = self.state.last_result
        return {
            "lastSync": self.state.last_sync.isoformat() if self.state.last_sync else None,
            "autoSyncEnabled": self.state.auto_sync_enabled,
            "repoRef": self.state.repo_ref,
            "state": self.status,
            "lastResult": last_result.to_dict() if last_result else None,
        }

    def start_auto_sync(self) -> bool:
        """
        Start the background timer: one run immediately, then one per interval.

        A non-positive interval keeps the initial run but never repeats it.

        Returns:
            False if the timer was already running
        """
        with self._timer_guard:
            if self._timer_thread is not None and self._timer_thread.is_alive():
                return False
            self._stop_event = threading.Event()
            self.state.auto_sync_enabled = True
            self._timer_thread = threading.Thread(
                target=self._auto_sync_loop,
                args=(self._stop_event,),
                name="methodology-auto-sync",
                daemon=True
            )
            self._timer_thread.start()
        logger.info(f"Auto-sync started (interval {self.interval_minutes} minutes)")
        return True

    def stop_auto_sync(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """
        Cancel the timer. No new run starts afterwards; a run in flight finishes.

        Args:
            wait: Block until the timer thread has exited
            timeout: Maximum seconds to wait
        """
        with self._timer_guard:
            self._stop_event.set()
            thread = self._timer_thread
            self._timer_thread = None
            self.state.auto_sync_enabled = False
        if thread is not None:
            logger.info("Auto-sync stopped")
            if wait:
                thread.join(timeout)

    def _auto_sync_loop(self, stop_event: threading.Event) -> None:
        interval_seconds = float(self.interval_minutes or 0) * 60
        while not stop_event.is_set():
            if self._run_lock.acquire(blocking=False):
                try:
                    # stop_auto_sync may have won the race for the lock
                    if not stop_event.is_set():
                        self._run(None)
                except Exception:
                    logger.exception("Auto-sync run failed")
                finally:
                    self._run_lock.release()
            else:
                logger.info("Skipping scheduled sync, a run is already in flight")

            if interval_seconds <= 0 or stop_event.wait(interval_seconds):
                break

        with self._timer_guard:
            # a restarted timer owns a fresh stop event and keeps the flag
            if self._stop_event is stop_event:
                self.state.auto_sync_enabled = False

    def _run(self, cancel_event: Optional[threading.Event]) -> SyncResult:
        self.state.run_count += 1
        run_id = self.state.run_count
        log_extra = {"sync_run": run_id}
        result = SyncResult(started_at=datetime.now())
        logger.info(f"Syncing methodologies from {self.state.repo_ref}/{self.remote_path}",
                    extra=log_extra)

        if self.indexer is not None:
            embedding_capability, vector_capability = self.indexer.capabilities()
        else:
            embedding_capability = ProviderCapability("embedding", available=False)
            vector_capability = ProviderCapability("vector-search", available=False)

        try:
            files = self.repository.list_files(self.remote_path, cancel_event)
        except OperationCancelledError:
            result.cancelled = True
            return self._finish(result, log_extra)
        except MethodologyError as e:
            logger.error(f"Could not list {self.remote_path}: {str(e)}", extra=log_extra)
            result.errors.append(f"{self.remote_path}: {str(e)}")
            return self._finish(result, log_extra, listed=False)
        except Exception as e:
            logger.exception(f"Unexpected error listing {self.remote_path}", extra=log_extra)
            result.errors.append(f"{self.remote_path}: unexpected error: {str(e)}")
            return self._finish(result, log_extra, listed=False)

        candidates = [
            f for f in files
            if f.type == "file" and f.name.lower().endswith(SUPPORTED_EXTENSIONS)
        ]

        outcomes = process_in_parallel(
            candidates,
            lambda remote_file: self._sync_file(
                remote_file, embedding_capability, vector_capability, cancel_event
            ),
            max_workers=self.max_workers
        )

        for outcome in outcomes:
            remote_file = outcome.item
            if outcome.ok:
                status, methodology_id = outcome.result
                if status == ADDED:
                    result.added.append(methodology_id)
                elif status == UPDATED:
                    result.updated.append(methodology_id)
                else:
                    result.skipped.append(methodology_id)
            elif isinstance(outcome.error, OperationCancelledError):
                result.cancelled = True
            elif isinstance(outcome.error, MethodologyError):
                result.errors.append(f"{remote_file.name}: {str(outcome.error)}")
                logger.error(f"Failed to sync {remote_file.name}: {str(outcome.error)}", extra=log_extra)
            else:
                result.errors.append(f"{remote_file.name}: unexpected error: {str(outcome.error)}")
                logger.error(f"Unexpected error syncing {remote_file.name}", extra=log_extra,
                             exc_info=outcome.error)

        return self._finish(result, log_extra)

    def _finish(self, result: SyncResult, log_extra: dict, listed: bool = True) -> SyncResult:
        result.finished_at = datetime.now()
        if listed and not result.cancelled:
            self.state.last_sync = result.finished_at
        self.state.last_result = result
        logger.info(
            f"Sync {'cancelled' if result.cancelled else 'complete'}: {len(result.added)} added, "
            f"{len(result.updated)} updated, {len(result.errors)} errors",
            extra=log_extra
        )
        return result

    def _sync_file(
        self,
        remote_file: RemoteFile,
        embedding_capability: ProviderCapability,
        vector_capability: ProviderCapability,
        cancel_event: Optional[threading.Event]
    ) -> Tuple[str, str]:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError("Sync cancelled")

        content = self.repository.get_file_content(remote_file.path, cancel_event)
        candidate = self._parse(remote_file.name, content)
        methodology = validate_methodology(candidate)

        status, _ = self.store.replace_if_newer(methodology, self.equal_version_policy)
        if status == CONFLICT:
            raise InvalidRecordError(
                "version-conflict",
                f"'{methodology.id}' {methodology.version} differs from the local copy "
                f"without a version bump"
            )

        if status in (ADDED, UPDATED) and self.indexer is not None:
            if not self.indexer.index(methodology, embedding_capability, vector_capability):
                logger.debug(f"Search document for '{methodology.id}' not updated "
                             f"({embedding_capability!r}, {vector_capability!r})")
        return status, methodology.id

    @staticmethod
    def _parse(name: str, content: str) -> Any:
        if name.lower().endswith(".json"):
            try:
                return json.loads(content)
            except ValueError as e:
                raise InvalidRecordError("parse", "Invalid JSON format", {"error": str(e)}) from e
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise InvalidRecordError("parse", "Invalid YAML format", {"error": str(e)}) from e
