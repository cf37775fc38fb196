"""
Guidance Pattern Schema

A pattern is one learned strategy: the text, its embedding, and the
usage/success counters that drive quality, promotion and pruning.
StorageEntry is the shape handed to the persistence delegate.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

# Persistence namespaces, one per tier
SHORT_TERM = "short_term"
LONG_TERM = "long_term"
SHORT_TERM_NAMESPACE = f"patterns:{SHORT_TERM}"
LONG_TERM_NAMESPACE = f"patterns:{LONG_TERM}"

QUALITY_FLOOR = 0.3
QUALITY_CEILING = 1.0
INITIAL_QUALITY = 0.5


def namespace_for(tier: str) -> str:
    """Map a tier name to its persistence namespace"""
    if tier not in (SHORT_TERM, LONG_TERM):
        raise ValueError(f"Unknown tier: {tier}")
    return f"patterns:{tier}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_pattern_id() -> str:
    """Generate a globally unique pattern ID"""
    return f"pat_{uuid.uuid4().hex[:16]}"


def calculate_quality(usage_count: int, success_count: int) -> float:
    """
    Quality from the historical success ratio.

    Range: 0.3 (never succeeded) to 1.0 (always succeeded).
    A pattern that was never used keeps the initial 0.5.
    """
    if usage_count <= 0:
        return INITIAL_QUALITY
    success_rate = success_count / usage_count
    quality = QUALITY_FLOOR + success_rate * 0.7
    return max(QUALITY_FLOOR, min(QUALITY_CEILING, quality))


class GuidancePattern(BaseModel):
    """A stored learned strategy"""
    id: str = Field(default_factory=generate_pattern_id)
    strategy: str = Field(..., min_length=1, description="Learned action/strategy text")
    domain: str = Field(default="general")
    embedding: List[float] = Field(default_factory=list)
    quality: float = Field(default=INITIAL_QUALITY, ge=QUALITY_FLOOR, le=QUALITY_CEILING)
    usage_count: int = Field(default=1, ge=1)
    success_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_counters(self) -> "GuidancePattern":
        if self.success_count > self.usage_count:
            raise ValueError(
                f"success_count ({self.success_count}) exceeds usage_count ({self.usage_count})"
            )
        return self

    @property
    def success_rate(self) -> float:
        return self.success_count / max(self.usage_count, 1)

    def age_ms(self, now: datetime) -> float:
        """Milliseconds since creation"""
        return (now - self.created_at).total_seconds() * 1000.0

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-serializable snapshot"""
        return self.model_dump(mode="json")

    def to_entry(self, tier: str) -> "StorageEntry":
        """Build the persistence entry for this pattern in the given tier"""
        return StorageEntry(
            key=self.id,
            namespace=namespace_for(tier),
            content=self.strategy,
            embedding=list(self.embedding),
            tags=[self.domain, tier],
            metadata={
                **self.metadata,
                "domain": self.domain,
                "quality": self.quality,
                "usage_count": self.usage_count,
                "success_count": self.success_count,
                "created_at": self.created_at.isoformat(),
                "updated_at": self.updated_at.isoformat(),
            },
        )

    def counters_update(self) -> Dict[str, Any]:
        """Partial update sent to the persistence delegate after a mutation"""
        return {
            "metadata": {
                "quality": self.quality,
                "usage_count": self.usage_count,
                "success_count": self.success_count,
                "updated_at": self.updated_at.isoformat(),
            }
        }


# Keys written by to_entry() that are not part of the caller's metadata
_RESERVED_METADATA_KEYS = (
    "domain", "quality", "usage_count", "success_count", "created_at", "updated_at",
)


class StorageEntry(BaseModel):
    """Entry exchanged with the persistence delegate"""
    key: str
    namespace: str
    content: str
    embedding: List[float] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_pattern(self) -> GuidancePattern:
        """Rebuild a GuidancePattern from a stored entry"""
        meta = dict(self.metadata)
        domain = meta.get("domain") or (self.tags[0] if self.tags else "general")
        usage_count = max(int(meta.get("usage_count") or 1), 1)
        success_count = min(int(meta.get("success_count") or 0), usage_count)
        quality = meta.get("quality")
        if quality is None:
            quality = INITIAL_QUALITY

        fields: Dict[str, Any] = {}
        created_at: Optional[str] = meta.get("created_at")
        updated_at: Optional[str] = meta.get("updated_at")
        if created_at:
            fields["created_at"] = created_at
        if updated_at:
            fields["updated_at"] = updated_at

        return GuidancePattern(
            id=self.key,
            strategy=self.content,
            domain=domain,
            embedding=list(self.embedding),
            quality=max(QUALITY_FLOOR, min(QUALITY_CEILING, float(quality))),
            usage_count=usage_count,
            success_count=success_count,
            metadata={k: v for k, v in meta.items() if k not in _RESERVED_METADATA_KEYS},
            **fields,
        )
