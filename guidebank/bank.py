"""
Guidance Bank

Public entry point wiring the pattern store, consolidator, synthesizer and
router together. Construct one explicitly (or through create_bank()); there
is no module-level instance.

Usage:
    bank = create_bank(load_config())
    await bank.initialize()
    result = await bank.store_pattern("Use JWT with refresh tokens", domain="security")
    guidance = await bank.generate_guidance({"task": {"description": "add login"}})
"""

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .common.config import GuidebankConfig
from .common.embedding_service import (
    CommandEmbeddingProvider,
    EmbeddingProvider,
    EmbeddingService,
    FastEmbedProvider,
    HashEmbeddingProvider,
)
from .common.persistence import (
    InMemoryPersistence,
    JsonFilePersistence,
    NullPersistence,
    PersistenceDelegate,
)
from .common.schemas import GuidancePattern
from .common.similarity import PatternMatch, SimilaritySearch
from .retriever.agent_router import AgentRouter, RoutingResult
from .retriever.synthesizer import GuidanceResult, GuidanceSynthesizer, TaskContext
from .store.consolidator import ConsolidationResult, Consolidator
from .store.metrics import BankMetrics
from .store.pattern_store import PatternStore, StoreResult

logger = logging.getLogger("guidebank.bank")

Listener = Callable[[str, Dict[str, Any]], None]


class GuidanceBank:
    """
    Two-tier guidance pattern memory with synthesis and routing.

    Mutating operations are serialized through an asyncio.Lock; searches
    and guidance generation run without it.
    """

    def __init__(
        self,
        config: Optional[GuidebankConfig] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        persistence: Optional[PersistenceDelegate] = None,
        search: Optional[SimilaritySearch] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize guidance bank.

        Args:
            config: Configuration (default: GuidebankConfig())
            embedding_provider: Provider for embeddings (default: hash embedder)
            persistence: Persistence delegate (default: NullPersistence)
            search: Similarity search implementation (default: brute force)
            clock: Returns the current UTC datetime (injectable for tests)
        """
        self._config = config or GuidebankConfig()
        store_config = self._config.store

        self._embedding = EmbeddingService(
            provider=embedding_provider,
            dimensions=store_config.dimensions,
            timeout_seconds=self._config.embedding.timeout_seconds,
            cache_size=self._config.embedding.cache_size,
        )
        self._metrics = BankMetrics()
        self._store = PatternStore(
            config=store_config,
            embedding_service=self._embedding,
            persistence=persistence or NullPersistence(),
            search=search,
            metrics=self._metrics,
            clock=clock,
            on_event=self._emit,
        )
        self._consolidator = Consolidator(self._store)
        self._router = AgentRouter(self._store)
        self._synthesizer = GuidanceSynthesizer(self._store, self._router)

        self._listeners: List[Listener] = []
        self._lock = asyncio.Lock()
        self._initialized = False
        self._in_memory_only = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> GuidebankConfig:
        return self._config

    @property
    def store(self) -> PatternStore:
        return self._store

    @property
    def router(self) -> AgentRouter:
        return self._router

    @property
    def metrics(self) -> BankMetrics:
        return self._metrics

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def in_memory_only(self) -> bool:
        """True when the persistence delegate failed to initialize"""
        return self._in_memory_only

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_listener(self, callback: Listener) -> None:
        """Register callback(event_name, payload) for lifecycle events"""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, payload)
            except Exception as e:
                logger.warning("Listener failed on %s: %s", event, e)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Initialize persistence and load stored patterns. Safe to call twice.

        A persistence failure switches the bank to in-memory-only mode
        instead of raising.
        """
        async with self._lock:
            if self._initialized:
                return

            try:
                await self._store.persistence.initialize()
            except Exception as e:
                logger.warning(
                    "Persistence unavailable, running in memory only: %s", e
                )
                self._store.persistence = NullPersistence()
                self._in_memory_only = True

            loaded = 0
            if not self._in_memory_only:
                loaded = await self._store.load()

            self._initialized = True
            logger.info(
                "Guidance bank initialized (%d patterns loaded, in_memory_only=%s)",
                loaded, self._in_memory_only,
            )
            self._emit("initialized", {
                "patterns_loaded": loaded,
                "in_memory_only": self._in_memory_only,
            })

    async def close(self) -> None:
        async with self._lock:
            try:
                await self._store.persistence.close()
            except Exception as e:
                logger.warning("Failed to close persistence: %s", e)
            self._initialized = False

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def store_pattern(
        self,
        strategy: str,
        domain: str = "general",
        metadata: Optional[Mapping] = None,
    ) -> StoreResult:
        """Store a strategy or bump its near-duplicate (see PatternStore)"""
        await self.initialize()
        async with self._lock:
            return await self._store.store_pattern(strategy, domain, metadata)

    async def search_patterns(
        self,
        query: Union[str, Sequence[float]],
        k: int = 5,
    ) -> List[PatternMatch]:
        """
        Find the k most similar patterns across both tiers.

        Args:
            query: Query text or a precomputed embedding
            k: Maximum number of results

        Returns:
            PatternMatch list, highest similarity first
        """
        await self.initialize()
        if isinstance(query, str):
            if not query.strip():
                return []
            return await self._store.search_text(query, k)
        return self._store.search(query, k)

    async def generate_guidance(
        self,
        context: Union[TaskContext, Mapping],
    ) -> GuidanceResult:
        await self.initialize()
        return await self._synthesizer.generate_guidance(context)

    async def route_task(self, task: str) -> RoutingResult:
        await self.initialize()
        return await self._router.route_task(task)

    async def record_outcome(
        self,
        pattern_id: str,
        success: bool,
    ) -> Optional[GuidancePattern]:
        """
        Record whether applying a pattern worked.

        Returns:
            Updated pattern, or None for an unknown id
        """
        await self.initialize()
        async with self._lock:
            return await self._store.record_outcome(pattern_id, success)

    async def consolidate(self) -> ConsolidationResult:
        """Promote qualifying short-term patterns and prune stale ones"""
        await self.initialize()
        async with self._lock:
            result = await self._consolidator.consolidate()
        self._emit("consolidated", result.to_dict())
        return result

    def get_stats(self) -> Dict[str, Any]:
        return {
            "short_term_count": len(self._store.short_term),
            "long_term_count": len(self._store.long_term),
            "avg_search_time_ms": self._metrics.avg_search_time_ms,
            "embedding_fallbacks": self._embedding.fallback_count,
            "in_memory_only": self._in_memory_only,
            "metrics": self._metrics.snapshot(),
        }

    async def export_patterns(self) -> Dict[str, List[Dict[str, Any]]]:
        """Serializable snapshot of both tiers"""
        await self.initialize()
        async with self._lock:
            return self._store.export()


def create_provider(config: GuidebankConfig) -> EmbeddingProvider:
    """Build the embedding provider named in config.embedding.provider"""
    embedding = config.embedding
    dimensions = config.store.dimensions

    if embedding.provider == "hash":
        return HashEmbeddingProvider(dimensions)
    if embedding.provider == "fastembed":
        return FastEmbedProvider(model=embedding.model, dimensions=dimensions)
    if embedding.provider == "command":
        return CommandEmbeddingProvider(
            embedding.command,
            dimensions=dimensions,
            timeout_seconds=embedding.timeout_seconds,
        )
    raise ValueError(f"Unknown embedding provider: {embedding.provider}")


def create_persistence(config: GuidebankConfig) -> PersistenceDelegate:
    """Build the persistence delegate named in config.persistence.backend"""
    backend = config.persistence.backend
    if backend == "none":
        return NullPersistence()
    if backend == "memory":
        return InMemoryPersistence()
    if backend == "json":
        return JsonFilePersistence(config.persistence.path)
    raise ValueError(f"Unknown persistence backend: {backend}")


def create_bank(
    config: Optional[GuidebankConfig] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> GuidanceBank:
    """
    Create a GuidanceBank from configuration.

    Args:
        config: Configuration (default: GuidebankConfig())
        clock: Optional clock override

    Returns:
        Uninitialized GuidanceBank
    """
    config = config or GuidebankConfig()
    return GuidanceBank(
        config=config,
        embedding_provider=create_provider(config),
        persistence=create_persistence(config),
        clock=clock,
    )
