from typing import Any, Dict, List, Optional, Tuple, Union

from methodrag.models import (
    METHODOLOGY_CATEGORIES,
    Methodology,
    MethodologySearchQuery,
    MethodologySearchResult,
)
from methodrag.processing_layer.search_indexer import SearchIndexer
from methodrag.retrieval_layer.fallback_search import fallback_search
from methodrag.storage_layer.catalog_store import CatalogStore
from methodrag.utils.capability import ProviderCapability
from methodrag.utils.config_handler import config
from methodrag.utils.error_handler import BadQueryError, ProviderError
from methodrag.utils.logger import get_logger

logger = get_logger(__name__)

# Heuristic adjustments added to the base score
BOOSTS = {
    "data_type": 0.10,
    "research_goal": 0.15,
    "paradigm": 0.10,
    "expertise": 0.05,
}
SAMPLE_SIZE_PENALTY = 0.10

GOAL_CATEGORIES = {
    "theory_building": ("theory-building",),
    "description": ("descriptive",),
    "exploration": ("interpretive", "descriptive"),
    "evaluation": ("critical", "mixed"),
}

class MethodologyRetrieval:
    """Ranked methodology search: vector similarity first, keyword fallback always.

    ``find`` only raises BadQueryError. Embedding or vector search failures
    switch the call to the fallback path instead of reaching the caller.
    """

    def __init__(
        self,
        store: CatalogStore,
        embedding_client=None,
        vector_client=None,
        indexer: Optional[SearchIndexer] = None,
        top_k: Optional[int] = None,
        score_threshold: Optional[float] = None
    ):
        self.store = store
        self.embedding_client = embedding_client
        self.vector_client = vector_client
        self.indexer = indexer or SearchIndexer(embedding_client, vector_client)
        self.top_k = top_k or config.get("search.top_k", 5)
        self.score_threshold = (score_threshold if score_threshold is not None
                                else config.get("search.score_threshold", 0.7))

    def find(self, query: Union[MethodologySearchQuery, Dict[str, Any], str]) -> List[MethodologySearchResult]:
        """
        Find the methodologies that best fit a research question.

        Args:
            query: Intent plus optional dataType, researchGoal, paradigm,
                expertise and sampleSize filters

        Returns:
            Results ordered by descending fit score

        Raises:
            BadQueryError: If the query is malformed
        """
        query = MethodologySearchQuery.coerce(query)
        embedding_capability = ProviderCapability.for_provider("embedding", self.embedding_client)
        vector_capability = ProviderCapability.for_provider("vector-search", self.vector_client)

        results: List[MethodologySearchResult] = []
        if embedding_capability and vector_capability:
            results = self._vector_search(query, embedding_capability, vector_capability)

        if results:
            logger.info(f"Vector search returned {len(results)} methodologies for '{query.intent}'")
            return results

        reason = self._degradation_reason(embedding_capability, vector_capability)
        results = self._fallback_search(query, reason)
        logger.info(f"Fallback search returned {len(results)} methodologies for '{query.intent}'"
                    f"{f' ({reason})' if reason else ''}")
        return results

    def _vector_search(
        self,
        query: MethodologySearchQuery,
        embedding_capability: ProviderCapability,
        vector_capability: ProviderCapability
    ) -> List[MethodologySearchResult]:
        try:
            query_vector = self.embedding_client.embed(query.intent)
        except ProviderError as e:
            embedding_capability.disable(str(e))
            return []

        try:
            hits = self.vector_client.search(query_vector, self.top_k, self.score_threshold)
        except ProviderError as e:
            vector_capability.disable(str(e))
            return []

        results = []
        for hit in hits:
            entry = self.store.get(hit.id)
            if entry is None:
                # The catalog wins: drop projections of records it no longer has
                logger.warning(f"Search index holds unknown methodology '{hit.id}', removing it")
                self.indexer.remove(hit.id)
                continue
            if hit.payload.get("version") != entry.version:
                self.indexer.index(entry.methodology, embedding_capability, vector_capability)

            boost, notes = self._attribute_fit(entry.methodology, query)
            reasoning = "; ".join([f"Semantic similarity {hit.score:.2f} to the stated intent"] + notes)
            results.append(MethodologySearchResult(
                methodology=entry.methodology,
                score=hit.score,
                fit_score=self._clamp(hit.score + boost),
                reasoning=reasoning,
                source="vector",
            ))
        return self._rank(results)

    def _fallback_search(self, query: MethodologySearchQuery, reason: Optional[str]) -> List[MethodologySearchResult]:
        results = []
        for match in fallback_search(self.store.snapshot(), query.intent, top_k=self.top_k):
            methodology = match.entry.methodology
            boost, notes = self._attribute_fit(methodology, query)
            summary = (f"Keyword overlap {match.score:.2f} on {', '.join(match.matched_fields)} "
                       f"({', '.join(match.matched_terms)})")
            if reason:
                summary += f"; semantic search unavailable: {reason}"
            results.append(MethodologySearchResult(
                methodology=methodology,
                score=match.score,
                fit_score=self._clamp(match.score + boost),
                reasoning="; ".join([summary] + notes),
                source="fallback",
            ))
        return self._rank(results)

    @staticmethod
    def _rank(results: List[MethodologySearchResult]) -> List[MethodologySearchResult]:
        return sorted(
            results,
            key=lambda r: (-r.fit_score, -r.score, -r.methodology.metadata.citations, r.methodology.id)
        )

    @staticmethod
    def _clamp(value: float) -> float:
        return max(0.0, min(1.0, value))

    @staticmethod
    def _degradation_reason(embedding_capability: ProviderCapability,
                            vector_capability: ProviderCapability) -> Optional[str]:
        for capability in (embedding_capability, vector_capability):
            if not capability:
                return f"{capability.name} {capability.reason}"
        return "no semantic match above threshold"

    def _attribute_fit(self, methodology: Methodology, query: MethodologySearchQuery) -> Tuple[float, List[str]]:
        """Heuristic boosts for the optional query filters, with a note per match."""
        boost = 0.0
        notes = []
        tags = {tag.lower() for tag in methodology.tags}

        if query.data_type:
            data_type = query.data_type.lower()
            if data_type in methodology.data_types() or data_type in tags:
                boost += BOOSTS["data_type"]
                notes.append(f"suited to {data_type} data")

        if query.research_goal:
            goal_tag = query.research_goal.replace("_", "-")
            if methodology.category in GOAL_CATEGORIES[query.research_goal] or goal_tag in tags:
                boost += BOOSTS["research_goal"]
                notes.append(f"category '{methodology.category}' fits the goal '{query.research_goal}'")

        if query.paradigm:
            if query.paradigm in tags or (query.paradigm == "critical" and methodology.category == "critical"):
                boost += BOOSTS["paradigm"]
                notes.append(f"aligned with a {query.paradigm} paradigm")

        if query.expertise and query.expertise in tags:
            boost += BOOSTS["expertise"]
            notes.append(f"marked for {query.expertise} researchers")

        if query.sample_size:
            minimum = methodology.minimum_sample_size()
            if minimum and query.sample_size < minimum:
                boost -= SAMPLE_SIZE_PENALTY
                notes.append(f"needs at least {minimum} participants, query has {query.sample_size}")

        return boost, notes

    def load_by_id(self, methodology_id: str) -> Optional[Methodology]:
        """Return the stored methodology with this id, or None."""
        if not isinstance(methodology_id, str) or not methodology_id.strip():
            raise BadQueryError("Methodology id must be a non-empty string")
        entry = self.store.get(methodology_id)
        return entry.methodology if entry else None

    def list(self, category: Optional[str] = None) -> List[Methodology]:
        """All stored methodologies, optionally filtered by category."""
        if category is not None and category not in METHODOLOGY_CATEGORIES:
            raise BadQueryError(f"Unknown category: {category}",
                                {"allowed": list(METHODOLOGY_CATEGORIES)})
        return [entry.methodology for entry in self.store.list(category)]

    def rebuild_index(self) -> int:
        """Re-derive the vector projection from the catalog."""
        return self.indexer.rebuild(self.store.snapshot())
