from typing import Iterable, Optional

from langchain_core.documents import Document

from methodrag.models import CatalogEntry, Methodology
from methodrag.utils.capability import ProviderCapability
from methodrag.utils.error_handler import ProviderError
from methodrag.utils.logger import get_logger

logger = get_logger(__name__)

def build_search_document(methodology: Methodology) -> Document:
    """Compose the text and payload that represent a methodology in vector search."""
    stage_lines = [
        f"Stage {stage.order}: {stage.name}. {stage.description}"
        for stage in methodology.stages
    ]
    text_parts = [
        methodology.name,
        methodology.description,
        f"Category: {methodology.category}",
    ]
    if methodology.tags:
        text_parts.append(f"Tags: {', '.join(methodology.tags)}")
    text_parts.extend(stage_lines)

    payload = {
        "id": methodology.id,
        "version": methodology.version,
        "category": methodology.category,
        "tags": list(methodology.tags),
        "validated": methodology.validated,
    }
    return Document(page_content="\n".join(text_parts), metadata=payload)

class SearchIndexer:
    """Keeps the vector projection in step with catalog records.

    Every method is best effort: provider failures disable the matching
    capability flag and are logged, never raised, because the catalog stays
    authoritative and the projection can always be rebuilt.
    """

    def __init__(self, embedding_client=None, vector_client=None):
        self.embedding_client = embedding_client
        self.vector_client = vector_client

    def capabilities(self):
        return (
            ProviderCapability.for_provider("embedding", self.embedding_client),
            ProviderCapability.for_provider("vector-search", self.vector_client),
        )

    def index(
        self,
        methodology: Methodology,
        embedding_capability: Optional[ProviderCapability] = None,
        vector_capability: Optional[ProviderCapability] = None
    ) -> bool:
        """
        Recompute and upsert the search document of one methodology.

        Returns:
            True if the projection was updated
        """
        if embedding_capability is None or vector_capability is None:
            embedding_capability, vector_capability = self.capabilities()
        if not embedding_capability or not vector_capability:
            return False

        document = build_search_document(methodology)
        try:
            vector = self.embedding_client.embed(document.page_content)
        except ProviderError as e:
            embedding_capability.disable(str(e))
            return False

        try:
            self.vector_client.upsert(
                methodology.id, vector, document.metadata, text=document.page_content
            )
        except ProviderError as e:
            vector_capability.disable(str(e))
            return False
        return True

    def remove(self, methodology_id: str) -> None:
        if self.vector_client is None:
            return
        try:
            self.vector_client.delete(methodology_id)
        except ProviderError as e:
            logger.warning(f"Could not remove stale search document '{methodology_id}': {str(e)}")

    def rebuild(self, entries: Iterable[CatalogEntry]) -> int:
        """
        Re-derive the whole projection from catalog entries.

        Idempotent: documents are replaced by id and ids no longer in the
        catalog are removed.

        Returns:
            Number of documents indexed
        """
        embedding_capability, vector_capability = self.capabilities()
        if not embedding_capability or not vector_capability:
            logger.info("Skipping search index rebuild: "
                        f"{embedding_capability!r}, {vector_capability!r}")
            return 0

        entries = list(entries)
        current_ids = {entry.id for entry in entries}
        try:
            stale_ids = [doc_id for doc_id in self.vector_client.ids() if doc_id not in current_ids]
        except ProviderError as e:
            logger.warning(f"Search index rebuild aborted: {str(e)}")
            return 0
        for doc_id in stale_ids:
            self.remove(doc_id)

        indexed = 0
        for entry in entries:
            if self.index(entry.methodology, embedding_capability, vector_capability):
                indexed += 1
            elif not embedding_capability or not vector_capability:
                break
        logger.info(f"Rebuilt search index: {indexed}/{len(entries)} documents")
        return indexed
