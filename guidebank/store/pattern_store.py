"""
Pattern Store

Two disjoint in-memory tiers of GuidancePattern:
- short-term: every new pattern starts here
- long-term: patterns that proved useful (enough usage, high enough quality)

Pipeline for store_pattern():
1. Embed the strategy text (never fails, falls back to hash embedding)
2. Find the single most similar stored pattern
3. similarity >= dedup_threshold → same pattern, bump its counters
4. Otherwise create a new short-term pattern

The in-memory tiers are authoritative. Persistence delegate errors are
logged and counted, never rolled back.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic_core import PydanticSerializationError, to_jsonable_python

from ..common.config import StoreConfig
from ..common.embedding_service import EmbeddingService
from ..common.persistence import NullPersistence, PersistenceDelegate
from ..common.schemas import (
    GuidancePattern,
    SHORT_TERM,
    LONG_TERM,
    SHORT_TERM_NAMESPACE,
    LONG_TERM_NAMESPACE,
    INITIAL_QUALITY,
    calculate_quality,
    generate_pattern_id,
    utc_now,
)
from ..common.similarity import BruteForceSearch, PatternMatch, SimilaritySearch
from .metrics import BankMetrics, timed

logger = logging.getLogger("guidebank.store.pattern_store")

EventCallback = Callable[[str, Dict[str, Any]], None]


@dataclass
class StoreResult:
    """Outcome of store_pattern()"""
    id: str
    action: str  # "created" or "updated"

    @property
    def created(self) -> bool:
        return self.action == "created"

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "action": self.action}


class PatternStore:
    """
    Owns the short-term and long-term tiers and every mutation on them.

    Not safe for concurrent mutation on its own; GuidanceBank serializes
    mutating calls with a lock.
    """

    def __init__(
        self,
        config: StoreConfig,
        embedding_service: EmbeddingService,
        persistence: Optional[PersistenceDelegate] = None,
        search: Optional[SimilaritySearch] = None,
        metrics: Optional[BankMetrics] = None,
        clock: Optional[Callable[[], datetime]] = None,
        on_event: Optional[EventCallback] = None,
    ):
        """
        Initialize pattern store.

        Args:
            config: Store policy (thresholds, capacities)
            embedding_service: For embedding strategy text
            persistence: Persistence delegate (default: NullPersistence)
            search: Similarity search implementation (default: brute force)
            metrics: Shared metrics object
            clock: Returns the current UTC datetime (injectable for tests)
            on_event: Called with (event_name, payload) on lifecycle changes
        """
        self._config = config
        self._embedding = embedding_service
        self._persistence = persistence or NullPersistence()
        self._search = search or BruteForceSearch()
        self._metrics = metrics or BankMetrics()
        self._clock = clock or utc_now
        self._on_event = on_event

        self._short_term: Dict[str, GuidancePattern] = {}
        self._long_term: Dict[str, GuidancePattern] = {}

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def metrics(self) -> BankMetrics:
        return self._metrics

    @property
    def embedding_service(self) -> EmbeddingService:
        return self._embedding

    @property
    def persistence(self) -> PersistenceDelegate:
        return self._persistence

    @persistence.setter
    def persistence(self, delegate: PersistenceDelegate) -> None:
        self._persistence = delegate

    @property
    def short_term(self) -> Mapping:
        return MappingProxyType(self._short_term)

    @property
    def long_term(self) -> Mapping:
        return MappingProxyType(self._long_term)

    def now(self) -> datetime:
        return self._clock()

    def get(self, pattern_id: str) -> Optional[GuidancePattern]:
        pattern = self._short_term.get(pattern_id)
        if pattern is None:
            pattern = self._long_term.get(pattern_id)
        return pattern

    def tier_of(self, pattern_id: str) -> Optional[str]:
        if pattern_id in self._short_term:
            return SHORT_TERM
        if pattern_id in self._long_term:
            return LONG_TERM
        return None

    def all_patterns(self) -> List[GuidancePattern]:
        """Both tiers, long-term first"""
        return list(self._long_term.values()) + list(self._short_term.values())

    def __len__(self) -> int:
        return len(self._short_term) + len(self._long_term)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query_vector: Sequence[float], k: int = 5) -> List[PatternMatch]:
        """
        Rank all stored patterns (both tiers) against a vector.

        Args:
            query_vector: Query embedding
            k: Maximum number of results

        Returns:
            Up to k PatternMatch objects, highest similarity first
        """
        with timed() as elapsed:
            results = self._search.rank(query_vector, self.all_patterns(), k)
        self._metrics.record_search(elapsed[0], len(results))
        return results

    async def search_text(self, text: str, k: int = 5) -> List[PatternMatch]:
        """Embed text, then search"""
        query_vector = await self._embedding.embed(text)
        return self.search(query_vector, k)

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    async def store_pattern(
        self,
        strategy: str,
        domain: str = "general",
        metadata: Optional[Mapping] = None,
    ) -> StoreResult:
        """
        Store a strategy, or count it against an existing near-duplicate.

        Args:
            strategy: Learned strategy text (must not be empty)
            domain: Coarse category tag
            metadata: Opaque key/value bag (e.g. {"agent": "coder"})

        Returns:
            StoreResult with the pattern id and "created" or "updated"

        Raises:
            ValueError: strategy is empty or whitespace
            TypeError: metadata is not a mapping, or holds values that cannot
                be serialized to JSON
        """
        if not isinstance(strategy, str) or not strategy.strip():
            raise ValueError("Cannot store a pattern with empty strategy text")
        if metadata is not None and not isinstance(metadata, Mapping):
            raise TypeError(f"metadata must be a mapping, got {type(metadata).__name__}")
        if metadata:
            try:
                to_jsonable_python(dict(metadata))
            except PydanticSerializationError as e:
                raise TypeError(f"metadata must be JSON-serializable: {e}") from e

        domain = (domain or "").strip() or "general"

        # Embed before touching any state
        embedding = await self._embedding.embed(strategy)

        similar = self.search(embedding, k=1)
        if similar and similar[0].similarity >= self._config.dedup_threshold:
            existing = similar[0].pattern
            existing.usage_count += 1
            existing.quality = calculate_quality(existing.usage_count, existing.success_count)
            existing.updated_at = self.now()

            await self._persist_update(existing)
            self._metrics.patterns_updated += 1
            self._emit("pattern_updated", {
                "id": existing.id,
                "similarity": similar[0].similarity,
                "usage_count": existing.usage_count,
            })
            await self.check_promotion(existing)
            return StoreResult(id=existing.id, action="updated")

        now = self.now()
        pattern = GuidancePattern(
            strategy=strategy,
            domain=domain,
            embedding=embedding,
            quality=INITIAL_QUALITY,
            usage_count=1,
            success_count=0,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
        )
        while self.get(pattern.id) is not None:
            pattern.id = generate_pattern_id()

        self._short_term[pattern.id] = pattern
        await self._persist_store(pattern, SHORT_TERM)

        self._metrics.patterns_stored += 1
        self._emit("pattern_stored", {"id": pattern.id, "domain": domain})
        logger.debug("Stored pattern %s (%s)", pattern.id, domain)

        await self._enforce_capacity(SHORT_TERM, keep_id=pattern.id)
        return StoreResult(id=pattern.id, action="created")

    async def record_outcome(self, pattern_id: str, success: bool) -> Optional[GuidancePattern]:
        """
        Record one use of a pattern and whether it worked.

        Args:
            pattern_id: Pattern to update (either tier)
            success: Whether applying the pattern succeeded

        Returns:
            The updated pattern, or None if the id is unknown
        """
        pattern = self.get(pattern_id)
        if pattern is None:
            logger.warning("record_outcome: unknown pattern %s", pattern_id)
            return None

        pattern.usage_count += 1
        if success:
            pattern.success_count += 1
        pattern.quality = calculate_quality(pattern.usage_count, pattern.success_count)
        pattern.updated_at = self.now()

        await self._persist_update(pattern)
        self._metrics.outcomes_recorded += 1
        self._emit("outcome_recorded", {
            "id": pattern_id,
            "success": success,
            "quality": pattern.quality,
        })

        await self.check_promotion(pattern)
        return pattern

    # ------------------------------------------------------------------
    # Promotion / removal
    # ------------------------------------------------------------------

    def should_promote(self, pattern: GuidancePattern) -> bool:
        return (
            pattern.usage_count >= self._config.promotion_threshold
            and pattern.quality >= self._config.quality_threshold
        )

    async def check_promotion(self, pattern: GuidancePattern) -> bool:
        """Promote a short-term pattern if it qualifies. Returns True if promoted."""
        if pattern.id in self._short_term and self.should_promote(pattern):
            await self.promote(pattern)
            return True
        return False

    async def promote(self, pattern: GuidancePattern) -> None:
        """Move a pattern from short-term to long-term"""
        if pattern.id not in self._short_term:
            raise KeyError(f"Pattern {pattern.id} is not in short-term memory")

        del self._short_term[pattern.id]
        self._long_term[pattern.id] = pattern

        await self._persist_delete(pattern.id)
        await self._persist_store(pattern, LONG_TERM)

        self._metrics.promotions += 1
        self._emit("pattern_promoted", {
            "id": pattern.id,
            "usage_count": pattern.usage_count,
            "quality": pattern.quality,
        })
        logger.info(
            "Promoted pattern %s to long-term (usage=%d, quality=%.2f)",
            pattern.id, pattern.usage_count, pattern.quality,
        )

        await self._enforce_capacity(LONG_TERM, keep_id=pattern.id)

    async def remove(self, pattern_id: str) -> Optional[GuidancePattern]:
        """Delete a pattern from whichever tier holds it, and from persistence"""
        pattern = self._short_term.pop(pattern_id, None)
        if pattern is None:
            pattern = self._long_term.pop(pattern_id, None)
        if pattern is None:
            return None
        await self._persist_delete(pattern_id)
        return pattern

    async def prune(self, pattern_id: str) -> Optional[GuidancePattern]:
        """Remove a stale pattern, counting it as pruned"""
        pattern = await self.remove(pattern_id)
        if pattern is not None:
            self._metrics.patterns_pruned += 1
            self._emit("pattern_pruned", {"id": pattern_id, "usage_count": pattern.usage_count})
            logger.debug("Pruned stale pattern %s", pattern_id)
        return pattern

    async def _enforce_capacity(self, tier: str, keep_id: Optional[str] = None) -> int:
        """
        Evict from a tier until it fits its capacity.

        Victim order: lowest quality, then least recently updated, then oldest.
        The pattern named by keep_id is never evicted.
        """
        patterns = self._short_term if tier == SHORT_TERM else self._long_term
        capacity = (
            self._config.max_short_term if tier == SHORT_TERM else self._config.max_long_term
        )

        evicted = 0
        while len(patterns) > capacity:
            candidates = [p for p in patterns.values() if p.id != keep_id]
            if not candidates:
                break
            victim = min(candidates, key=lambda p: (p.quality, p.updated_at, p.created_at))
            del patterns[victim.id]
            await self._persist_delete(victim.id)

            evicted += 1
            self._metrics.patterns_evicted += 1
            self._emit("pattern_evicted", {"id": victim.id, "tier": tier})
            logger.info("Evicted pattern %s from %s (capacity %d)", victim.id, tier, capacity)
        return evicted

    # ------------------------------------------------------------------
    # Load / export
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """
        Rebuild both tiers from the persistence delegate.

        Returns:
            Number of patterns loaded
        """
        loaded = 0
        for namespace, patterns, limit in (
            (SHORT_TERM_NAMESPACE, self._short_term, self._config.max_short_term),
            (LONG_TERM_NAMESPACE, self._long_term, self._config.max_long_term),
        ):
            try:
                entries = await self._persistence.query(namespace, limit)
            except Exception as e:
                logger.warning("Failed to load %s: %s", namespace, e)
                self._metrics.persistence_errors += 1
                continue

            for entry in entries:
                try:
                    pattern = entry.to_pattern()
                except ValueError as e:
                    logger.warning("Skipping malformed entry %s: %s", entry.key, e)
                    continue
                if self.get(pattern.id) is not None:
                    # A pattern lives in exactly one tier
                    continue
                patterns[pattern.id] = pattern
                loaded += 1
        return loaded

    def export(self) -> Dict[str, List[Dict[str, Any]]]:
        """Plain serializable snapshot of both tiers"""
        return {
            "short_term": [p.to_dict() for p in self._short_term.values()],
            "long_term": [p.to_dict() for p in self._long_term.values()],
        }

    # ------------------------------------------------------------------
    # Persistence helpers (errors never propagate)
    # ------------------------------------------------------------------

    async def _persist_store(self, pattern: GuidancePattern, tier: str) -> None:
        try:
            await self._persistence.store(pattern.to_entry(tier))
        except Exception as e:
            logger.warning("Failed to store pattern %s: %s", pattern.id, e)
            self._metrics.persistence_errors += 1

    async def _persist_update(self, pattern: GuidancePattern) -> None:
        try:
            await self._persistence.update(pattern.id, pattern.counters_update())
        except Exception as e:
            logger.warning("Failed to update pattern %s: %s", pattern.id, e)
            self._metrics.persistence_errors += 1

    async def _persist_delete(self, pattern_id: str) -> None:
        try:
            await self._persistence.delete(pattern_id)
        except Exception as e:
            logger.warning("Failed to delete pattern %s: %s", pattern_id, e)
            self._metrics.persistence_errors += 1

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self._on_event is not None:
            self._on_event(event, payload)
