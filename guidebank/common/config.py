"""
Configuration Management for Guidebank

Loads configuration from ~/.guidebank/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

from dotenv import load_dotenv

logger = logging.getLogger("guidebank.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".guidebank"
CONFIG_PATH = CONFIG_DIR / "config.json"
PATTERNS_PATH = CONFIG_DIR / "patterns.json"


@dataclass
class StoreConfig:
    """Pattern store policy"""
    dimensions: int = 384
    max_short_term: int = 1000
    max_long_term: int = 5000
    promotion_threshold: int = 3  # usage count
    quality_threshold: float = 0.6
    dedup_threshold: float = 0.95
    prune_max_age_ms: int = 86_400_000  # 24h

    def __post_init__(self):
        if self.dimensions <= 0:
            raise ValueError(f"dimensions must be positive, got {self.dimensions}")
        if self.max_short_term <= 0 or self.max_long_term <= 0:
            raise ValueError("tier capacities must be positive")
        if self.promotion_threshold < 1:
            raise ValueError(f"promotion_threshold must be >= 1, got {self.promotion_threshold}")
        for name in ("quality_threshold", "dedup_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.prune_max_age_ms < 0:
            raise ValueError(f"prune_max_age_ms must be >= 0, got {self.prune_max_age_ms}")


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration"""
    provider: str = "hash"  # hash, fastembed, command
    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    command: str = ""  # used by the "command" provider
    timeout_seconds: float = 10.0
    cache_size: int = 1000


@dataclass
class PersistenceConfig:
    """Persistence delegate configuration"""
    backend: str = "none"  # none, memory, json
    path: str = str(PATTERNS_PATH)


@dataclass
class GuidebankConfig:
    """Main Guidebank configuration"""
    store: StoreConfig = field(default_factory=StoreConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)


def _parse_store_config(data: dict) -> StoreConfig:
    """Parse store section from config dict"""
    store_data = data.get("store", {})
    return StoreConfig(
        dimensions=store_data.get("dimensions", 384),
        max_short_term=store_data.get("max_short_term", 1000),
        max_long_term=store_data.get("max_long_term", 5000),
        promotion_threshold=store_data.get("promotion_threshold", 3),
        quality_threshold=store_data.get("quality_threshold", 0.6),
        dedup_threshold=store_data.get("dedup_threshold", 0.95),
        prune_max_age_ms=store_data.get("prune_max_age_ms", 86_400_000),
    )


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    return EmbeddingConfig(
        provider=embedding_data.get("provider", "hash"),
        model=embedding_data.get("model", "sentence-transformers/all-MiniLM-L6-v2"),
        command=embedding_data.get("command", ""),
        timeout_seconds=embedding_data.get("timeout_seconds", 10.0),
        cache_size=embedding_data.get("cache_size", 1000),
    )


def _parse_persistence_config(data: dict) -> PersistenceConfig:
    """Parse persistence section from config dict"""
    persistence_data = data.get("persistence", {})
    return PersistenceConfig(
        backend=persistence_data.get("backend", "none"),
        path=persistence_data.get("path", str(PATTERNS_PATH)),
    )


# Env var -> (section, attribute, type)
_ENV_OVERRIDES = {
    "GUIDEBANK_DIMENSIONS": ("store", "dimensions", int),
    "GUIDEBANK_MAX_SHORT_TERM": ("store", "max_short_term", int),
    "GUIDEBANK_MAX_LONG_TERM": ("store", "max_long_term", int),
    "GUIDEBANK_PROMOTION_THRESHOLD": ("store", "promotion_threshold", int),
    "GUIDEBANK_QUALITY_THRESHOLD": ("store", "quality_threshold", float),
    "GUIDEBANK_DEDUP_THRESHOLD": ("store", "dedup_threshold", float),
    "GUIDEBANK_PRUNE_MAX_AGE_MS": ("store", "prune_max_age_ms", int),
    "EMBEDDING_PROVIDER": ("embedding", "provider", str),
    "EMBEDDING_MODEL": ("embedding", "model", str),
    "EMBEDDING_COMMAND": ("embedding", "command", str),
    "EMBEDDING_TIMEOUT": ("embedding", "timeout_seconds", float),
    "GUIDEBANK_PERSISTENCE": ("persistence", "backend", str),
    "GUIDEBANK_PATTERNS_PATH": ("persistence", "path", str),
}


def load_config() -> GuidebankConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (a local .env file is honored)
    2. Config file (~/.guidebank/config.json)
    3. Default values
    """
    load_dotenv()
    config = GuidebankConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.store = _parse_store_config(data)
            config.embedding = _parse_embedding_config(data)
            config.persistence = _parse_persistence_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)

    # Environment variable overrides
    store_overrides = {}
    for env_var, (section, attr, cast) in _ENV_OVERRIDES.items():
        val = os.getenv(env_var)
        if not val:
            continue
        if section == "store":
            store_overrides[attr] = cast(val)
        else:
            setattr(getattr(config, section), attr, cast(val))

    if store_overrides:
        # Rebuild so that StoreConfig validation also covers env values
        current = {k: getattr(config.store, k) for k in StoreConfig.__dataclass_fields__}
        current.update(store_overrides)
        config.store = StoreConfig(**current)

    return config


def save_config(config: GuidebankConfig) -> None:
    """Save configuration to file."""
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "dimensions": config.store.dimensions,
            "max_short_term": config.store.max_short_term,
            "max_long_term": config.store.max_long_term,
            "promotion_threshold": config.store.promotion_threshold,
            "quality_threshold": config.store.quality_threshold,
            "dedup_threshold": config.store.dedup_threshold,
            "prune_max_age_ms": config.store.prune_max_age_ms,
        },
        "embedding": {
            "provider": config.embedding.provider,
            "model": config.embedding.model,
            "command": config.embedding.command,
            "timeout_seconds": config.embedding.timeout_seconds,
            "cache_size": config.embedding.cache_size,
        },
        "persistence": {
            "backend": config.persistence.backend,
            "path": config.persistence.path,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)
