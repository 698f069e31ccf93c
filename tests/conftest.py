import copy
import hashlib
import json
import re
import threading
import logging

import numpy as np
import pytest

from methodrag.input_layer.github_repository import RemoteFile
from methodrag.processing_layer.embedding_generator import EmbeddingClient
from methodrag.processing_layer.search_indexer import SearchIndexer
from methodrag.retrieval_layer.vector_store import VectorSearchClient
from methodrag.storage_layer.catalog_store import CatalogStore
from methodrag.utils.error_handler import ProviderUnavailableError

# Setup basic logging for tests
logging.basicConfig(level=logging.INFO)

TEST_DIMENSIONS = 256

class BagOfWordsEmbeddingClient(EmbeddingClient):
    """Deterministic embedding: hashed word counts, L2 normalised."""

    provider_name = "fake-embedding"

    def __init__(self, dimensions: int = TEST_DIMENSIONS):
        super().__init__("bag-of-words", dimensions, cache_size=0)
        self.available = True
        self.fail = False
        self.calls = 0

    def _embed(self, text):
        self.calls += 1
        if self.fail:
            raise ProviderUnavailableError(self.provider_name, "embedding service down")
        vector = np.zeros(self.dimensions, dtype=np.float32)
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            digest = hashlib.md5(word.encode("utf-8")).hexdigest()
            vector[int(digest, 16) % self.dimensions] += 1.0
        return self._normalize(vector)

    def is_available(self):
        return self.available

class FakeRepository:
    """In-memory stand-in for GitHubRepository: file name -> text content."""

    repo_ref = "qualai-community/methodologies"

    def __init__(self, files=None):
        self.files = dict(files or {})
        self.list_error = None
        self.gate = None
        self.listing_started = threading.Event()
        self.list_calls = 0
        self.fetch_calls = 0
        self._lock = threading.Lock()

    def list_files(self, path, cancel_event=None):
        with self._lock:
            self.list_calls += 1
        self.listing_started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.list_error is not None:
            raise self.list_error
        return [
            RemoteFile(name=name, path=f"{path}/{name}", type="file")
            for name in sorted(self.files)
        ]

    def get_file_content(self, path, cancel_event=None):
        with self._lock:
            self.fetch_calls += 1
        return self.files[path.rsplit("/", 1)[-1]]

    def put(self, record, name=None):
        self.files[name or f"{record['id']}.json"] = json.dumps(record)

GT_CHARMAZ = {
    "id": "gt-charmaz",
    "name": "Constructivist Grounded Theory",
    "version": "1.0.0",
    "author": {"name": "Kathy Charmaz", "email": "charmaz@example.org"},
    "category": "theory-building",
    "description": "Grounded theory approach that builds theory from interviews "
                   "through iterative coding and constant comparison.",
    "stages": [
        {
            "name": "Initial coding",
            "description": "Line-by-line coding of interview transcripts",
            "order": 1,
            "promptTemplate": "Code each line of the transcript with gerunds.",
            "outputs": ["initial codes"],
            "minimumSampleSize": 10,
        },
        {
            "name": "Focused coding",
            "description": "Select the most significant initial codes",
            "order": 2,
            "promptTemplate": "Group the initial codes into focused codes.",
            "requires": ["Initial coding"],
            "outputs": ["focused codes"],
        },
    ],
    "tools": {"memos": "Write analytic memos after each coding session"},
    "qualityCriteria": {"credibility": "Codes are grounded in the data"},
    "metadata": {
        "citations": 120,
        "usageCount": 40,
        "rating": 4.6,
        "tags": ["grounded-theory", "interview", "constructivist", "intermediate"],
        "license": "CC-BY-4.0",
    },
    "validated": True,
    "reviewers": ["reviewer-1"],
    "examples": [{"title": "Chronic illness study", "dataType": "interview"}],
}

DISCOURSE = {
    "id": "cda-fairclough",
    "name": "Critical Discourse Analysis",
    "version": "2.0.0",
    "author": {"name": "Norman Fairclough", "contact": "https://example.org/fairclough"},
    "category": "critical",
    "description": "Analysis of power and ideology in written documents and media texts.",
    "stages": [
        {
            "name": "Text description",
            "description": "Describe vocabulary and grammar of each document",
            "order": 1,
            "guidance": "List the lexical and grammatical features.",
            "outputs": ["textual features"],
        },
    ],
    "metadata": {"citations": 300, "tags": ["document", "critical", "power"]},
    "examples": [{"title": "Newspaper coverage", "dataType": "document"}],
}

def make_record(base=None, **overrides):
    """Deep copy of a sample record with top-level keys replaced."""
    record = copy.deepcopy(base or GT_CHARMAZ)
    record.update(overrides)
    return record

@pytest.fixture
def record():
    return make_record()

@pytest.fixture
def catalog_store(tmp_path):
    return CatalogStore(directory=str(tmp_path / "catalog"))

@pytest.fixture
def embedding_client():
    return BagOfWordsEmbeddingClient()

@pytest.fixture
def vector_client(embedding_client):
    return VectorSearchClient(
        dimensions=embedding_client.dimensions,
        collection_name="test-methodologies",
        embedding_client=embedding_client
    )

@pytest.fixture
def indexer(embedding_client, vector_client):
    return SearchIndexer(embedding_client, vector_client)

@pytest.fixture
def repository():
    return FakeRepository()
