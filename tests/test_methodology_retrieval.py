import json
import os

import pytest

from conftest import DISCOURSE, make_record
from methodrag.input_layer.methodology_validator import validate_methodology
from methodrag.models import MethodologySearchQuery
from methodrag.retrieval_layer.methodology_retrieval import MethodologyRetrieval
from methodrag.utils.error_handler import BadQueryError, ProviderUnavailableError

THRESHOLD = 0.2

class BrokenVectorClient:
    """Reports itself available, then fails every call."""

    def is_available(self):
        return True

    def search(self, vector, top_k, score_threshold):
        raise ProviderUnavailableError("vector-search", "connection refused")

    def upsert(self, doc_id, vector, payload, text=""):
        raise ProviderUnavailableError("vector-search", "connection refused")

    def delete(self, doc_id):
        raise ProviderUnavailableError("vector-search", "connection refused")

    def ids(self):
        raise ProviderUnavailableError("vector-search", "connection refused")

@pytest.fixture
def populated_store(catalog_store, record):
    catalog_store.save(validate_methodology(record))
    catalog_store.save(validate_methodology(make_record(DISCOURSE)))
    return catalog_store

@pytest.fixture
def retrieval(populated_store, embedding_client, vector_client, indexer):
    service = MethodologyRetrieval(
        populated_store, embedding_client, vector_client, indexer=indexer,
        top_k=5, score_threshold=THRESHOLD
    )
    service.rebuild_index()
    return service

def test_vector_path_ranks_matching_record_first(retrieval):
    results = retrieval.find({"intent": "constructivist grounded theory interviews coding"})
    assert results
    assert results[0].methodology.id == "gt-charmaz"
    assert all(r.source == "vector" for r in results)
    assert all(r.score >= THRESHOLD for r in results)
    fit_scores = [r.fit_score for r in results]
    assert fit_scores == sorted(fit_scores, reverse=True)
    assert "Semantic similarity" in results[0].reasoning

def test_attribute_boosts(retrieval):
    plain = retrieval.find("constructivist grounded theory interviews coding")[0]
    boosted = retrieval.find({
        "intent": "constructivist grounded theory interviews coding",
        "dataType": "interview",
        "researchGoal": "theory_building",
    })[0]
    assert boosted.methodology.id == plain.methodology.id == "gt-charmaz"
    assert boosted.fit_score == pytest.approx(min(1.0, plain.score + 0.25))
    assert "suited to interview data" in boosted.reasoning
    assert "fits the goal 'theory_building'" in boosted.reasoning

def test_sample_size_penalty(retrieval):
    result = retrieval.find({
        "intent": "constructivist grounded theory interviews coding",
        "sampleSize": 5,
    })[0]
    assert result.fit_score == pytest.approx(max(0.0, result.score - 0.10))
    assert "needs at least 10 participants" in result.reasoning

def test_malformed_catalog_file_does_not_break_filters(populated_store):
    broken = make_record(id="gt-broken", examples=["interview transcripts"])
    broken["stages"][0]["minimumSampleSize"] = "ten"
    with open(os.path.join(populated_store.directory, "gt-broken.json"), "w", encoding="utf-8") as f:
        json.dump(broken, f)

    retrieval = MethodologyRetrieval(populated_store, None, None, top_k=5)
    results = retrieval.find({"intent": "grounded theory interviews", "dataType": "interview",
                              "sampleSize": 5})
    assert [r.methodology.id for r in results] == ["gt-charmaz"]
    assert "needs at least 10 participants" in results[0].reasoning

def test_fallback_when_vector_search_absent(populated_store):
    retrieval = MethodologyRetrieval(populated_store, None, None, top_k=5, score_threshold=0.7)
    results = retrieval.find({"intent": "grounded theory interviews"})
    assert results
    assert results[0].methodology.id == "gt-charmaz"
    assert results[0].source == "fallback"
    assert "semantic search unavailable: embedding not configured" in results[0].reasoning

def test_fallback_when_embedding_fails(retrieval, embedding_client):
    embedding_client.fail = True
    results = retrieval.find("grounded theory interviews")
    assert results[0].methodology.id == "gt-charmaz"
    assert results[0].source == "fallback"
    assert "embedding service down" in results[0].reasoning

def test_fallback_when_vector_search_fails(populated_store, embedding_client):
    retrieval = MethodologyRetrieval(populated_store, embedding_client, BrokenVectorClient(),
                                     top_k=5, score_threshold=0.7)
    results = retrieval.find("grounded theory interviews")
    assert results[0].source == "fallback"
    assert "connection refused" in results[0].reasoning

def test_fallback_when_nothing_clears_threshold(populated_store, embedding_client, vector_client, indexer):
    retrieval = MethodologyRetrieval(populated_store, embedding_client, vector_client,
                                     indexer=indexer, top_k=5, score_threshold=0.99)
    retrieval.rebuild_index()
    results = retrieval.find("grounded theory interviews")
    assert results[0].source == "fallback"
    assert "no semantic match above threshold" in results[0].reasoning

def test_fallback_without_overlap_is_empty(populated_store):
    retrieval = MethodologyRetrieval(populated_store, None, None)
    assert retrieval.find("quantum chromodynamics") == []

def test_unknown_index_entries_are_dropped(retrieval, vector_client, embedding_client):
    text = "constructivist grounded theory interviews coding"
    vector_client.upsert("ghost", embedding_client.embed(text), {"version": "1.0.0"}, text=text)
    results = retrieval.find(text)
    assert "ghost" not in [r.methodology.id for r in results]
    assert "ghost" not in vector_client.ids()

def test_stale_projection_is_refreshed(retrieval, populated_store, vector_client, embedding_client):
    populated_store.save(validate_methodology(make_record(version="1.1.0")))
    results = retrieval.find("constructivist grounded theory interviews coding")
    assert results[0].methodology.version == "1.1.0"
    hits = vector_client.search(
        embedding_client.embed("constructivist grounded theory interviews coding"), 1, 0.0
    )
    assert hits[0].payload["version"] == "1.1.0"

@pytest.mark.parametrize("query", [
    "",
    "   ",
    {"intent": None},
    {"intent": "grounded theory", "researchGoal": "fun"},
    {"intent": "grounded theory", "paradigm": "nihilist"},
    {"intent": "grounded theory", "sampleSize": 0},
    {"intent": "grounded theory", "sampleSize": "ten"},
    42,
])
def test_malformed_queries(retrieval, query):
    with pytest.raises(BadQueryError):
        retrieval.find(query)

def test_query_accepts_snake_case_keys():
    query = MethodologySearchQuery.coerce({"intent": "x", "data_type": "interview", "sample_size": 3})
    assert query.data_type == "interview"
    assert query.sample_size == 3

def test_load_by_id(retrieval):
    assert retrieval.load_by_id("gt-charmaz").name == "Constructivist Grounded Theory"
    assert retrieval.load_by_id("nope") is None
    with pytest.raises(BadQueryError):
        retrieval.load_by_id("")

def test_list(retrieval):
    assert [m.id for m in retrieval.list()] == ["cda-fairclough", "gt-charmaz"]
    assert [m.id for m in retrieval.list("critical")] == ["cda-fairclough"]
    with pytest.raises(BadQueryError):
        retrieval.list("astrology")

def test_rebuild_index_is_idempotent(retrieval, vector_client, embedding_client):
    vector_client.upsert("ghost", embedding_client.embed("ghost"), {})
    assert retrieval.rebuild_index() == 2
    assert retrieval.rebuild_index() == 2
    assert sorted(vector_client.ids()) == ["cda-fairclough", "gt-charmaz"]
