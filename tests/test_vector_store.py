import pytest

from methodrag.retrieval_layer.vector_store import VectorSearchClient
from methodrag.utils.error_handler import ProviderUnavailableError

DOCUMENTS = {
    "gt-charmaz": "grounded theory coding of interview transcripts",
    "cda-fairclough": "critical discourse analysis of documents and power",
    "ethnography": "participant observation field notes in a community",
}

@pytest.fixture
def populated(vector_client, embedding_client):
    for doc_id, text in DOCUMENTS.items():
        vector_client.upsert(doc_id, embedding_client.embed(text), {"version": "1.0.0"}, text=text)
    return vector_client

def test_search_orders_by_descending_score(populated, embedding_client):
    hits = populated.search(embedding_client.embed("grounded theory interview coding"), 3, 0.0)
    assert hits[0].id == "gt-charmaz"
    assert hits[0].payload["id"] == "gt-charmaz"
    assert hits[0].payload["version"] == "1.0.0"
    scores = [hit.score for hit in hits]
    assert scores == sorted(scores, reverse=True)

def test_exact_text_scores_one(populated, embedding_client):
    hits = populated.search(embedding_client.embed(DOCUMENTS["ethnography"]), 1, 0.0)
    assert hits[0].id == "ethnography"
    assert hits[0].score == pytest.approx(1.0, abs=1e-5)

def test_threshold_and_top_k(populated, embedding_client):
    query = embedding_client.embed(DOCUMENTS["cda-fairclough"])
    hits = populated.search(query, 3, 0.99)
    assert [hit.id for hit in hits] == ["cda-fairclough"]
    assert len(populated.search(query, 2, 0.0)) <= 2

def test_upsert_replaces_by_id(populated, embedding_client):
    text = "phenomenology of lived experience"
    populated.upsert("gt-charmaz", embedding_client.embed(text), {"version": "2.0.0"}, text=text)
    assert len(populated) == 3
    hits = populated.search(embedding_client.embed(text), 1, 0.0)
    assert hits[0].id == "gt-charmaz"
    assert hits[0].payload["version"] == "2.0.0"

def test_delete_and_clear(populated):
    assert populated.delete("ethnography") is True
    assert populated.delete("ethnography") is False
    assert sorted(populated.ids()) == ["cda-fairclough", "gt-charmaz"]
    populated.clear()
    assert len(populated) == 0

def test_empty_collection_returns_no_hits(vector_client, embedding_client):
    assert vector_client.search(embedding_client.embed("anything"), 5, 0.0) == []

def test_ensure_collection_is_idempotent(populated):
    store = populated.vector_store
    populated.ensure_collection()
    assert populated.vector_store is store
    assert len(populated) == 3

def test_dimension_mismatch(vector_client):
    with pytest.raises(ProviderUnavailableError):
        vector_client.upsert("x", [1.0, 0.0, 0.0], {})
    with pytest.raises(ProviderUnavailableError):
        vector_client.search([1.0, 0.0], 5, 0.0)

def test_zero_vector_rejected(vector_client):
    with pytest.raises(ProviderUnavailableError):
        vector_client.upsert("x", [0.0] * vector_client.dimensions, {})

def test_unnormalised_vectors_are_normalised():
    client = VectorSearchClient(dimensions=3, collection_name="tiny")
    client.upsert("a", [3.0, 0.0, 0.0], {})
    client.upsert("b", [0.0, 5.0, 0.0], {})
    hits = client.search([10.0, 0.0, 0.0], 2, 0.0)
    assert hits[0].id == "a"
    assert hits[0].score == pytest.approx(1.0)
