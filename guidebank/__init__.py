"""
Guidebank

Learned-guidance pattern store for agent frameworks: records short strategy
texts observed during task execution, indexes them by embedding, and turns
the most relevant ones into guidance and agent suggestions.

Philosophy:
- Two tiers: every pattern starts short-term, proven ones become long-term
- Near-duplicates are merged on store, never stored twice
- Embedding never fails: a deterministic hash embedding is the fallback
- In-memory state is authoritative; persistence is best effort

Usage:
    from guidebank import create_bank, load_config
    from guidebank.common import EmbeddingService, InMemoryPersistence
    from guidebank.store import PatternStore, Consolidator
    from guidebank.retriever import AgentRouter, GuidanceSynthesizer
"""

from .bank import GuidanceBank, create_bank
from .common.config import GuidebankConfig, load_config

__version__ = "0.1.0"

__all__ = [
    "GuidanceBank",
    "create_bank",
    "GuidebankConfig",
    "load_config",
]
