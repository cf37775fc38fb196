"""Shared fixtures: a controllable clock and a fixed-vector embedding provider."""

from datetime import datetime, timedelta, timezone

import pytest

from guidebank.common.embedding_service import EmbeddingProvider

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start=T0):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class FixedVectorProvider(EmbeddingProvider):
    """Looks text up in a dict; unknown text raises KeyError (triggers fallback)"""

    def __init__(self, vectors, dimensions=4):
        super().__init__(dimensions)
        self.vectors = dict(vectors)

    def embed(self, text):
        return list(self.vectors[text])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vector_provider():
    return FixedVectorProvider
