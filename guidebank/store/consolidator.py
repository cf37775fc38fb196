"""
Consolidator

Caller-invoked maintenance of the short-term tier:
1. Promotion pass: qualifying short-term patterns move to long-term
2. Pruning pass: old, barely used short-term patterns are deleted

Long-term patterns are never pruned or demoted here.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict

from .pattern_store import PatternStore

logger = logging.getLogger("guidebank.store.consolidator")

# Patterns used at least this often survive pruning regardless of age
MIN_USAGE_TO_KEEP = 2


@dataclass
class ConsolidationResult:
    """Counts from one consolidate() call"""
    # Always 0: deduplication happens inline in store_pattern().
    duplicates_removed: int = 0
    patterns_pruned: int = 0
    patterns_promoted: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class Consolidator:
    """Runs promotion and pruning passes over a PatternStore"""

    def __init__(self, store: PatternStore):
        self._store = store

    def is_prunable(self, pattern) -> bool:
        """Old enough and used fewer than MIN_USAGE_TO_KEEP times"""
        age_ms = pattern.age_ms(self._store.now())
        return (
            age_ms > self._store.config.prune_max_age_ms
            and pattern.usage_count < MIN_USAGE_TO_KEEP
        )

    async def consolidate(self) -> ConsolidationResult:
        """
        Promote qualifying short-term patterns, then prune stale ones.

        Returns:
            ConsolidationResult with promotion and pruning counts
        """
        result = ConsolidationResult()

        # Promotion pass (snapshot: promote() mutates the tier)
        for pattern in list(self._store.short_term.values()):
            if self._store.should_promote(pattern):
                await self._store.promote(pattern)
                result.patterns_promoted += 1

        # Pruning pass
        for pattern in list(self._store.short_term.values()):
            if self.is_prunable(pattern):
                await self._store.prune(pattern.id)
                result.patterns_pruned += 1

        if result.patterns_promoted or result.patterns_pruned:
            logger.info(
                "Consolidated: %d promoted, %d pruned",
                result.patterns_promoted, result.patterns_pruned,
            )
        return result
