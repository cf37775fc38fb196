"""
Guidebank Common Module

Shared infrastructure for the pattern store and the retriever side.
"""

from .config import GuidebankConfig, StoreConfig, EmbeddingConfig, PersistenceConfig, load_config
from .embedding_service import (
    EmbeddingProvider,
    EmbeddingService,
    HashEmbeddingProvider,
    FastEmbedProvider,
    CommandEmbeddingProvider,
    cosine_similarity,
)
from .persistence import (
    PersistenceDelegate,
    NullPersistence,
    InMemoryPersistence,
    JsonFilePersistence,
)
from .similarity import SimilaritySearch, BruteForceSearch, PatternMatch

__all__ = [
    "GuidebankConfig",
    "StoreConfig",
    "EmbeddingConfig",
    "PersistenceConfig",
    "load_config",
    "EmbeddingProvider",
    "EmbeddingService",
    "HashEmbeddingProvider",
    "FastEmbedProvider",
    "CommandEmbeddingProvider",
    "cosine_similarity",
    "PersistenceDelegate",
    "NullPersistence",
    "InMemoryPersistence",
    "JsonFilePersistence",
    "SimilaritySearch",
    "BruteForceSearch",
    "PatternMatch",
]
