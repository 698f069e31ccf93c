import os
import hashlib
import threading
from typing import List, Optional

import numpy as np
import requests
from cachetools import TTLCache
from langchain_core.embeddings import Embeddings

from methodrag.utils.config_handler import config
from methodrag.utils.error_handler import (
    ConfigurationError,
    ProviderUnavailableError,
    RateLimitedError,
)
from methodrag.utils.logger import get_logger

logger = get_logger(__name__)

class EmbeddingClient:
    """Turns text into a fixed-length vector through an external provider.

    Subclasses implement ``_embed``. Results are memoised per text in a TTL
    cache. Provider failures surface as ProviderUnavailableError or
    RateLimitedError and are never retried here; callers degrade instead.
    """

    provider_name = "embedding"

    def __init__(self, model_name: str, dimensions: int,
                 cache_size: int = 256, cache_ttl: int = 3600):
        self.model_name = model_name
        self.dimensions = dimensions
        self._cache = TTLCache(maxsize=cache_size, ttl=cache_ttl) if cache_size > 0 else None
        self._cache_lock = threading.Lock()

    def _cache_key(self, text: str) -> str:
        return hashlib.sha256(f"{self.model_name}:{text}".encode("utf-8")).hexdigest()

    def embed(self, text: str) -> List[float]:
        """
        Generate an embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            List of floats, L2 normalised

        Raises:
            ProviderUnavailableError: Network, auth, timeout or model loading failure
            RateLimitedError: The provider throttled the request
        """
        key = self._cache_key(text)
        if self._cache is not None:
            with self._cache_lock:
                cached = self._cache.get(key)
            if cached is not None:
                return list(cached)

        vector = self._embed(text)

        if self._cache is not None:
            with self._cache_lock:
                self._cache[key] = tuple(vector)
        return vector

    def _embed(self, text: str) -> List[float]:
        raise NotImplementedError

    def is_available(self) -> bool:
        return True

    @staticmethod
    def _normalize(vector: np.ndarray) -> List[float]:
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.astype(float).tolist()


class LocalEmbeddingClient(EmbeddingClient):
    """Embeds text with a local HuggingFace encoder (mean pooled)."""

    provider_name = "local-embedding"

    def __init__(self, model_name: str = None, dimensions: int = None,
                 max_length: int = None, **kwargs):
        super().__init__(
            model_name or config.get("embedding.model_name", "thenlper/gte-small"),
            dimensions or config.get("embedding.dimensions", 384),
            **kwargs
        )
        self.max_length = max_length or config.get("embedding.max_length", 512)
        self._load_error: Optional[str] = None

    def _load(self):
        try:
            from methodrag.utils.model_manager import model_manager

            tokenizer = model_manager.get_tokenizer(self.model_name)
            model = model_manager.get_model(self.model_name)
            return tokenizer, model, model_manager.get_device()
        except (ImportError, OSError, ValueError, RuntimeError) as e:
            self._load_error = str(e)
            logger.error(f"Error loading embedding model {self.model_name}: {str(e)}")
            raise ProviderUnavailableError(
                self.provider_name, f"Embedding model unavailable: {str(e)}",
                {"model": self.model_name}
            ) from e

    def _embed(self, text: str) -> List[float]:
        import torch

        tokenizer, model, device = self._load()
        try:
            inputs = tokenizer(
                text,
                padding=True,
                truncation=True,
                max_length=self.max_length,
                return_tensors="pt"
            ).to(device)

            with torch.no_grad():
                outputs = model(**inputs)
                embeddings = outputs.last_hidden_state.mean(dim=1)

            return self._normalize(embeddings[0].cpu().numpy())
        except RuntimeError as e:
            logger.error(f"Error generating embedding: {str(e)}")
            raise ProviderUnavailableError(self.provider_name, str(e)) from e

    def is_available(self) -> bool:
        return self._load_error is None


class HttpEmbeddingClient(EmbeddingClient):
    """Embeds text through an OpenAI-compatible ``/embeddings`` endpoint."""

    provider_name = "http-embedding"

    def __init__(self, model_name: str = None, dimensions: int = None,
                 api_base_url: str = None, api_key: str = None,
                 timeout: float = None, **kwargs):
        super().__init__(
            model_name or config.get("embedding.model_name", "text-embedding-3-small"),
            dimensions or config.get("embedding.dimensions", 1536),
            **kwargs
        )
        self.api_base_url = api_base_url or config.get(
            "embedding.api_base_url", "https://api.openai.com/v1/embeddings")
        self.api_key = api_key or os.environ.get(config.get("embedding.api_key_env", "OPENAI_API_KEY"))
        self.timeout = timeout or config.get("embedding.timeout", 10)
        self.session = requests.Session()

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _embed(self, text: str) -> List[float]:
        if not self.api_key:
            raise ProviderUnavailableError(self.provider_name, "No embedding API key configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {"model": self.model_name, "input": text}

        try:
            response = self.session.post(
                self.api_base_url, headers=headers, json=payload, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning(f"Embedding request failed: {str(e)}")
            raise ProviderUnavailableError(self.provider_name, str(e)) from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(
                self.provider_name, "Embedding provider rate limit reached",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if response.status_code != 200:
            raise ProviderUnavailableError(
                self.provider_name, f"API error {response.status_code}",
                {"status": response.status_code}
            )

        try:
            vector = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderUnavailableError(
                self.provider_name, f"Missing expected fields in API response: {str(e)}"
            ) from e
        return self._normalize(np.asarray(vector, dtype=np.float32))


class LangchainEmbeddings(Embeddings):
    """Adapter exposing an EmbeddingClient to langchain vector stores."""

    def __init__(self, client: EmbeddingClient):
        self.client = client

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self.client.embed(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        return self.client.embed(text)


def create_embedding_client(provider: str = None) -> EmbeddingClient:
    """Build the configured embedding client."""
    provider = provider or config.get("embedding.provider", "local")
    cache_options = {
        "cache_size": config.get("embedding.cache_size", 256),
        "cache_ttl": config.get("embedding.cache_ttl", 3600),
    }
    if provider == "local":
        return LocalEmbeddingClient(**cache_options)
    if provider in ("openai", "http"):
        return HttpEmbeddingClient(**cache_options)
    raise ConfigurationError(f"Unknown embedding provider: {provider}",
                             {"allowed": ["local", "openai"]})
