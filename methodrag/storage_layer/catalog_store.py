import os
import json
import tempfile
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from methodrag.input_layer.methodology_validator import ID_PATTERN, validate_methodology
from methodrag.input_layer.version import compare_versions
from methodrag.models import CatalogEntry, Methodology
from methodrag.utils.config_handler import config
from methodrag.utils.error_handler import FormatError, InvalidRecordError, PersistenceError
from methodrag.utils.logger import get_logger

logger = get_logger(__name__)

ADDED = "added"
UPDATED = "updated"
SKIPPED = "skipped"
CONFLICT = "conflict"

EQUAL_VERSION_POLICIES = ("ignore", "overwrite", "error")

class CatalogStore:
    """Durable catalog of validated methodologies, one JSON file per id.

    Files are pretty-printed JSON so they can be inspected or edited by hand.
    Writes go to a hidden temporary file in the same directory and are moved
    into place with ``os.replace``, so readers see either the old or the new
    document, never a partial one. A per-id lock serialises writes and
    id lookups for the same methodology.
    """

    def __init__(self, directory: str = None):
        """Initialize the catalog directory."""
        self.directory = directory or config.get("catalog.directory", "data/methodologies")
        os.makedirs(self.directory, exist_ok=True)

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        # Parsed entries keyed by path, invalidated by mtime
        self._parsed: Dict[str, Tuple[int, CatalogEntry]] = {}
        self._parsed_guard = threading.Lock()

    def _path_for(self, methodology_id: str) -> str:
        if not isinstance(methodology_id, str) or not ID_PATTERN.match(methodology_id):
            raise PersistenceError(f"Invalid methodology id: {methodology_id!r}")
        return os.path.join(self.directory, f"{methodology_id}.json")

    def lock_for(self, methodology_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(methodology_id)
            if lock is None:
                lock = self._locks[methodology_id] = threading.Lock()
            return lock

    def _read_entry(self, path: str) -> Optional[CatalogEntry]:
        """Load one catalog file, or None if it is missing or unusable."""
        try:
            stat = os.stat(path)
        except FileNotFoundError:
            return None

        with self._parsed_guard:
            cached = self._parsed.get(path)
        if cached is not None and cached[0] == stat.st_mtime_ns:
            return cached[1]

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            methodology = validate_methodology(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.error(f"Error reading catalog file {path}: {str(e)}")
            return None
        except InvalidRecordError as e:
            logger.error(f"Catalog file {path} is not a valid methodology ({e.rule}): {str(e)}")
            return None

        expected_id = os.path.splitext(os.path.basename(path))[0]
        if methodology.id != expected_id:
            logger.warning(f"Catalog file {path} holds id '{methodology.id}', ignoring it")
            return None

        entry = CatalogEntry(
            methodology=methodology,
            path=path,
            last_modified=datetime.fromtimestamp(stat.st_mtime),
            validated=methodology.validated,
            reviewers=list(methodology.reviewers),
        )
        with self._parsed_guard:
            self._parsed[path] = (stat.st_mtime_ns, entry)
        return entry

    def _write(self, methodology: Methodology) -> CatalogEntry:
        """Atomically replace the file for one methodology. Caller holds the id lock."""
        path = self._path_for(methodology.id)
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                'w', encoding='utf-8', dir=self.directory,
                prefix=f".{methodology.id}.", suffix=".tmp", delete=False
            ) as f:
                tmp_path = f.name
                json.dump(methodology.to_dict(), f, indent=2, ensure_ascii=False)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Error writing catalog file {path}: {str(e)}")
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise PersistenceError(f"Could not write methodology '{methodology.id}': {str(e)}",
                                   {"path": path}) from e

        with self._parsed_guard:
            self._parsed.pop(path, None)
        entry = self._read_entry(path)
        if entry is None:
            raise PersistenceError(f"Methodology '{methodology.id}' was not readable after write",
                                   {"path": path})
        return entry

    def get(self, methodology_id: str) -> Optional[CatalogEntry]:
        """
        Retrieve one catalog entry.

        Args:
            methodology_id: Methodology id

        Returns:
            The entry, or None if the id is unknown
        """
        try:
            path = self._path_for(methodology_id)
        except PersistenceError:
            return None
        with self.lock_for(methodology_id):
            return self._read_entry(path)

    def list(self, category: Optional[str] = None) -> List[CatalogEntry]:
        """All readable entries, optionally restricted to one category, ordered by id."""
        entries = []
        for name in sorted(os.listdir(self.directory)):
            if name.startswith('.') or not name.endswith('.json'):
                continue
            entry = self._read_entry(os.path.join(self.directory, name))
            if entry is None:
                continue
            if category is not None and entry.methodology.category != category:
                continue
            entries.append(entry)
        return entries

    def snapshot(self) -> List[CatalogEntry]:
        return self.list()

    def save(self, methodology: Methodology) -> CatalogEntry:
        """Write a methodology unconditionally, replacing any previous version."""
        self._path_for(methodology.id)
        with self.lock_for(methodology.id):
            return self._write(methodology)

    def replace_if_newer(
        self,
        methodology: Methodology,
        equal_version_policy: str = "ignore"
    ) -> Tuple[str, Optional[CatalogEntry]]:
        """
        Store a methodology only if it is newer than the local copy.

        The comparison and the write happen under the id lock, so two writers
        for the same id cannot interleave.

        Args:
            methodology: Validated candidate
            equal_version_policy: What to do when versions are equal but content
                differs: 'ignore', 'overwrite' or 'error'

        Returns:
            (outcome, entry) where outcome is added, updated, skipped or conflict

        Raises:
            PersistenceError: If the write fails
        """
        path = self._path_for(methodology.id)
        with self.lock_for(methodology.id):
            existing = self._read_entry(path)
            if existing is None:
                outcome = UPDATED if os.path.exists(path) else ADDED
                if outcome == UPDATED:
                    logger.warning(f"Replacing unreadable catalog file for '{methodology.id}'")
                return outcome, self._write(methodology)

            try:
                order = compare_versions(methodology.version, existing.version)
            except FormatError as e:
                raise PersistenceError(str(e), e.details) from e

            if order > 0:
                return UPDATED, self._write(methodology)

            if order == 0 and methodology.content_hash() != existing.methodology.content_hash():
                if equal_version_policy == "overwrite":
                    logger.info(f"Overwriting '{methodology.id}' {methodology.version}: content changed")
                    return UPDATED, self._write(methodology)
                if equal_version_policy == "error":
                    return CONFLICT, existing
                logger.warning(
                    f"Remote '{methodology.id}' {methodology.version} differs from the local copy "
                    f"without a version bump; keeping local"
                )
            return SKIPPED, existing

    def delete(self, methodology_id: str) -> bool:
        path = self._path_for(methodology_id)
        with self.lock_for(methodology_id):
            with self._parsed_guard:
                self._parsed.pop(path, None)
            try:
                os.remove(path)
            except FileNotFoundError:
                return False
            except OSError as e:
                raise PersistenceError(f"Could not delete '{methodology_id}': {str(e)}") from e
            logger.info(f"Removed methodology '{methodology_id}' from catalog")
            return True
