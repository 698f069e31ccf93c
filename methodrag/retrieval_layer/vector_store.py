import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import faiss
import numpy as np
from langchain_community.docstore.in_memory import InMemoryDocstore
from langchain_community.vectorstores import FAISS
from langchain_community.vectorstores.utils import DistanceStrategy

from methodrag.processing_layer.embedding_generator import EmbeddingClient, LangchainEmbeddings
from methodrag.utils.config_handler import config
from methodrag.utils.error_handler import ProviderUnavailableError
from methodrag.utils.logger import get_logger

logger = get_logger(__name__)

@dataclass
class SearchHit:
    id: str
    score: float
    payload: Dict[str, Any] = field(default_factory=dict)

class VectorSearchClient:
    """Cosine similarity search over search documents, keyed by methodology id.

    Vectors are L2 normalised before they reach the FAISS inner-product
    index, so index scores are cosine similarities. The index is a derived
    projection of the catalog and lives in memory; ``clear`` plus a rebuild
    from the catalog restores it at any time.
    """

    provider_name = "vector-search"

    def __init__(
        self,
        dimensions: Optional[int] = None,
        collection_name: Optional[str] = None,
        embedding_client: Optional[EmbeddingClient] = None
    ):
        self.dimensions = dimensions or config.get("embedding.dimensions", 384)
        self.collection_name = collection_name or config.get(
            "vector_search.collection_name", "methodologies")
        self._embedding_function = LangchainEmbeddings(embedding_client) if embedding_client else None
        self._lock = threading.RLock()
        self.vector_store: Optional[FAISS] = None
        self.ensure_collection()

    def ensure_collection(self) -> None:
        """Create the collection if it does not exist yet. Safe to call repeatedly."""
        with self._lock:
            if self.vector_store is not None:
                return
            try:
                logger.info(f"Creating FAISS collection '{self.collection_name}' "
                            f"(dimension {self.dimensions})")
                index = faiss.IndexFlatIP(self.dimensions)
                self.vector_store = FAISS(
                    embedding_function=self._embedding_function,
                    index=index,
                    docstore=InMemoryDocstore({}),
                    index_to_docstore_id={},
                    distance_strategy=DistanceStrategy.MAX_INNER_PRODUCT
                )
            except (RuntimeError, ValueError, TypeError) as e:
                logger.error(f"Error initializing vector store: {str(e)}")
                raise ProviderUnavailableError(
                    self.provider_name, f"Could not create collection: {str(e)}"
                ) from e

    def is_available(self) -> bool:
        return self.vector_store is not None

    def _prepare_vector(self, vector: Sequence[float]) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1 or array.shape[0] != self.dimensions:
            raise ProviderUnavailableError(
                self.provider_name,
                f"Vector dimension {array.shape[-1] if array.ndim else 0} "
                f"does not match collection dimension {self.dimensions}",
                {"expected": self.dimensions}
            )
        norm = np.linalg.norm(array)
        if norm == 0:
            raise ProviderUnavailableError(self.provider_name, "Cannot index a zero vector")
        return array / norm

    def _require_store(self) -> FAISS:
        if self.vector_store is None:
            raise ProviderUnavailableError(self.provider_name, "Vector collection is not initialized")
        return self.vector_store

    def ids(self) -> List[str]:
        with self._lock:
            store = self._require_store()
            return list(store.index_to_docstore_id.values())

    def __len__(self) -> int:
        return len(self.ids())

    def upsert(self, doc_id: str, vector: Sequence[float], payload: Dict[str, Any],
               text: str = "") -> None:
        """
        Insert or replace the search document for one methodology.

        Args:
            doc_id: Methodology id
            vector: Embedding of the search document text
            payload: Filterable metadata stored alongside the vector
            text: Search document text
        """
        prepared = self._prepare_vector(vector)
        metadata = dict(payload)
        metadata["id"] = doc_id
        with self._lock:
            store = self._require_store()
            try:
                if doc_id in store.index_to_docstore_id.values():
                    store.delete([doc_id])
                store.add_embeddings(
                    text_embeddings=[(text, prepared.tolist())],
                    metadatas=[metadata],
                    ids=[doc_id]
                )
            except (RuntimeError, ValueError, KeyError, AssertionError) as e:
                logger.error(f"Error upserting '{doc_id}' into vector store: {str(e)}")
                raise ProviderUnavailableError(self.provider_name, str(e), {"id": doc_id}) from e
        logger.debug(f"Upserted search document for '{doc_id}'")

    def delete(self, doc_id: str) -> bool:
        with self._lock:
            store = self._require_store()
            if doc_id not in store.index_to_docstore_id.values():
                return False
            try:
                store.delete([doc_id])
            except (RuntimeError, ValueError) as e:
                raise ProviderUnavailableError(self.provider_name, str(e), {"id": doc_id}) from e
            return True

    def clear(self) -> None:
        with self._lock:
            self.vector_store = None
            self.ensure_collection()

    def search(self, vector: Sequence[float], top_k: int, score_threshold: float) -> List[SearchHit]:
        """
        Find the search documents most similar to a query vector.

        Args:
            vector: Query embedding
            top_k: Maximum number of hits
            score_threshold: Hits scoring below this are dropped

        Returns:
            Hits in descending score order
        """
        prepared = self._prepare_vector(vector)
        with self._lock:
            store = self._require_store()
            if not store.index_to_docstore_id:
                return []
            try:
                results = store.similarity_search_with_score_by_vector(
                    prepared.tolist(), k=top_k
                )
            except (RuntimeError, ValueError, KeyError, AssertionError) as e:
                logger.error(f"Error in vector store search: {str(e)}")
                raise ProviderUnavailableError(self.provider_name, str(e)) from e

        hits = [
            SearchHit(id=doc.metadata["id"], score=float(score), payload=dict(doc.metadata))
            for doc, score in results
            if float(score) >= score_threshold
        ]
        hits.sort(key=lambda hit: (-hit.score, hit.id))
        return hits[:top_k]
