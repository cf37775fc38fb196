"""
Embedding Service

Turns strategy text into fixed-length, L2-normalized vectors.

Providers are chosen at construction time:
- HashEmbeddingProvider: deterministic, pure, never fails (default)
- FastEmbedProvider: on-device ONNX embeddings via fastembed
- CommandEmbeddingProvider: external command that prints JSON

EmbeddingService wraps a provider with an LRU cache and a timeout, and
falls back to the hash provider whenever the real provider fails.
"""

import asyncio
import json
import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import List, Optional, Sequence, Union

import numpy as np

logger = logging.getLogger("guidebank.common.embedding_service")

_INT32_MODULUS = 1 << 32
_INT32_SIGN = 1 << 31


def l2_normalize(vector: Sequence[float]) -> np.ndarray:
    """Return a float64 copy of the vector scaled to unit length (zero stays zero)"""
    arr = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm > 0:
        arr = arr / norm
    return arr


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Cosine similarity between two vectors.

    Vectors are not assumed to be normalized; a zero vector scores 0.0.
    """
    v1 = np.asarray(vec1, dtype=np.float64)
    v2 = np.asarray(vec2, dtype=np.float64)

    if v1.shape != v2.shape:
        raise ValueError(f"Vector dimension mismatch: {v1.shape} vs {v2.shape}")

    denom = float(np.linalg.norm(v1) * np.linalg.norm(v2))
    if denom == 0.0:
        return 0.0
    return float(np.dot(v1, v2) / denom)


class EmbeddingProvider(ABC):
    """Text -> vector of `dimensions` floats"""

    def __init__(self, dimensions: int):
        self.dimensions = dimensions

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Embed one text. May block; may raise."""


class HashEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic embedding derived from a rolling hash of the text.

    For component i, a 32-bit signed rolling hash h = h*31 + ord(c)*(i+1)
    runs over the lowercased, stripped text; the component is (sin(h)+1)/2.
    The vector is then L2-normalized. Identical text always yields the
    identical vector, and embed() never raises.
    """

    def __init__(self, dimensions: int = 384):
        super().__init__(dimensions)
        self._multipliers = np.arange(1, dimensions + 1, dtype=np.int64)

    def embed(self, text: str) -> List[float]:
        normalized = (text or "").lower().strip()

        hashes = np.zeros(self.dimensions, dtype=np.int64)
        for ch in normalized:
            hashes = hashes * 31 + ord(ch) * self._multipliers
            # wrap to signed 32-bit
            hashes = (hashes + _INT32_SIGN) % _INT32_MODULUS - _INT32_SIGN

        components = (np.sin(hashes.astype(np.float64)) + 1.0) / 2.0
        return l2_normalize(components).tolist()


class FastEmbedProvider(EmbeddingProvider):
    """
    On-device embeddings using fastembed.

    The model is downloaded/loaded on first use, not at construction.
    """

    def __init__(
        self,
        model: str = "sentence-transformers/all-MiniLM-L6-v2",
        dimensions: int = 384,
    ):
        super().__init__(dimensions)
        self._model_name = model
        self._model = None

    def _load_model(self):
        if self._model is None:
            from fastembed import TextEmbedding

            logger.info("Loading fastembed model %s", self._model_name)
            self._model = TextEmbedding(model_name=self._model_name)
        return self._model

    def embed(self, text: str) -> List[float]:
        model = self._load_model()
        vectors = list(model.embed([text]))
        return np.asarray(vectors[0], dtype=np.float64).tolist()


class CommandEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings from an external command.

    The text is appended as the last argument; stdout must be JSON, either
    {"embedding": [...]} or a bare list of floats.
    """

    def __init__(
        self,
        command: Union[str, Sequence[str]],
        dimensions: int = 384,
        timeout_seconds: float = 10.0,
        max_text_chars: int = 500,
    ):
        super().__init__(dimensions)
        self._command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self._command:
            raise ValueError("CommandEmbeddingProvider requires a command")
        self._timeout = timeout_seconds
        self._max_text_chars = max_text_chars

    def embed(self, text: str) -> List[float]:
        completed = subprocess.run(
            [*self._command, text[: self._max_text_chars]],
            capture_output=True,
            text=True,
            timeout=self._timeout,
            check=True,
        )
        parsed = json.loads(completed.stdout)
        if isinstance(parsed, dict):
            parsed = parsed.get("embedding", [])
        return [float(x) for x in parsed]


class EmbeddingService:
    """
    Cached, timeout-bounded embedding with a deterministic fallback.

    Results from the configured provider are cached per input text.
    Fallback vectors are not cached so a recovered provider is used again.
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider] = None,
        dimensions: int = 384,
        timeout_seconds: float = 10.0,
        cache_size: int = 1000,
    ):
        """
        Initialize embedding service.

        Args:
            provider: Embedding provider (default: HashEmbeddingProvider)
            dimensions: Expected vector length
            timeout_seconds: Upper bound for a single provider call
            cache_size: Max cached texts (LRU)
        """
        self._dimensions = dimensions
        self._fallback = HashEmbeddingProvider(dimensions)
        self._provider = provider or self._fallback
        self._timeout = timeout_seconds
        self._cache_size = cache_size
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self._fallback_count = 0

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def uses_fallback_only(self) -> bool:
        """True when the configured provider is the hash embedder itself"""
        return isinstance(self._provider, HashEmbeddingProvider)

    @property
    def fallback_count(self) -> int:
        """Number of times the hash fallback replaced the provider"""
        return self._fallback_count

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def embed(self, text: str) -> List[float]:
        """
        Embed text. Never raises for provider failures.

        Args:
            text: Text to embed

        Returns:
            L2-normalized vector of `dimensions` floats
        """
        cached = self._cache.get(text)
        if cached is not None:
            self._cache.move_to_end(text)
            return list(cached)

        if self.uses_fallback_only:
            vector = self._fallback.embed(text)
            self._remember(text, vector)
            return list(vector)

        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(self._provider.embed, text),
                timeout=self._timeout,
            )
            if len(raw) != self._dimensions:
                raise ValueError(
                    f"provider returned {len(raw)} dimensions, expected {self._dimensions}"
                )
            vector = l2_normalize(raw).tolist()
        except asyncio.TimeoutError:
            logger.warning(
                "Embedding provider timed out after %.1fs, using hash fallback", self._timeout
            )
            return self._embed_fallback(text)
        except Exception as e:
            logger.warning("Embedding provider failed (%s), using hash fallback", e)
            return self._embed_fallback(text)

        self._remember(text, vector)
        return list(vector)

    def embed_fallback(self, text: str) -> List[float]:
        """Deterministic hash embedding, bypassing provider and cache"""
        return self._fallback.embed(text)

    def cosine_similarity(self, vec1: Sequence[float], vec2: Sequence[float]) -> float:
        return cosine_similarity(vec1, vec2)

    def clear_cache(self) -> None:
        self._cache.clear()

    def _embed_fallback(self, text: str) -> List[float]:
        self._fallback_count += 1
        return self._fallback.embed(text)

    def _remember(self, text: str, vector: List[float]) -> None:
        if self._cache_size <= 0:
            return
        self._cache[text] = vector
        self._cache.move_to_end(text)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
