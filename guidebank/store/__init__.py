"""
Guidebank Store - Two-tier pattern memory

Key Components:
- PatternStore: short-term/long-term tiers, dedup-on-store, outcomes, promotion
- Consolidator: promotion and pruning passes
- BankMetrics: counters/timers

Lifecycle:
1. store_pattern() creates in short-term (or bumps a near-duplicate)
2. record_outcome() updates usage/success and quality
3. usage >= promotion_threshold and quality >= quality_threshold → long-term
4. consolidate() prunes old short-term patterns used fewer than 2 times
"""

from .metrics import BankMetrics
from .pattern_store import PatternStore, StoreResult
from .consolidator import Consolidator, ConsolidationResult

__all__ = [
    "BankMetrics",
    "PatternStore",
    "StoreResult",
    "Consolidator",
    "ConsolidationResult",
]
