"""
Guidebank Schemas

Persisted pattern entity and the persistence entry format.
"""

from .guidance_pattern import (
    GuidancePattern,
    StorageEntry,
    SHORT_TERM,
    LONG_TERM,
    SHORT_TERM_NAMESPACE,
    LONG_TERM_NAMESPACE,
    QUALITY_FLOOR,
    QUALITY_CEILING,
    INITIAL_QUALITY,
    calculate_quality,
    generate_pattern_id,
    namespace_for,
    utc_now,
)

__all__ = [
    "GuidancePattern",
    "StorageEntry",
    "SHORT_TERM",
    "LONG_TERM",
    "SHORT_TERM_NAMESPACE",
    "LONG_TERM_NAMESPACE",
    "QUALITY_FLOOR",
    "QUALITY_CEILING",
    "INITIAL_QUALITY",
    "calculate_quality",
    "generate_pattern_id",
    "namespace_for",
    "utc_now",
]
