"""
GuidanceBank Scenario Tests

End-to-end runs through the public facade:
- JWT strategy learned, reinforced by outcomes, promoted to long-term
- Near-duplicate strategy folded into the existing pattern
- Guidance and routing for a new task
- Maintenance: consolidation prunes stale one-off patterns
- Degradation: persistence failure at startup → in-memory only

Embeddings come from the deterministic hash provider unless a test
needs exact similarities.
"""

import asyncio
import json
import math
import pytest
from unittest.mock import AsyncMock, Mock


def make_bank(clock=None, persistence=None, provider=None, dimensions=64, **store_overrides):
    from guidebank.bank import GuidanceBank
    from guidebank.common.config import GuidebankConfig, StoreConfig

    config = GuidebankConfig(store=StoreConfig(dimensions=dimensions, **store_overrides))
    return GuidanceBank(
        config=config,
        embedding_provider=provider,
        persistence=persistence,
        clock=clock,
    )


class TestJwtScenario:
    """A security strategy proves itself and moves to long-term memory"""

    @pytest.mark.asyncio
    async def test_promoted_after_successful_outcomes(self):
        bank = make_bank()
        events = []
        bank.add_listener(lambda name, payload: events.append(name))

        stored = await bank.store_pattern(
            "Use JWT with refresh tokens", domain="security",
            metadata={"agent": "security-architect"},
        )
        for _ in range(3):
            await bank.record_outcome(stored.id, True)

        pattern = bank.store.get(stored.id)
        assert stored.id in bank.store.long_term
        assert stored.id not in bank.store.short_term
        # Creation counts as a use but not as a success
        assert pattern.usage_count == 4
        assert pattern.success_count == 3
        assert pattern.quality == pytest.approx(0.3 + 0.75 * 0.7)
        assert events.count("pattern_promoted") == 1

        stats = bank.get_stats()
        assert stats["short_term_count"] == 0
        assert stats["long_term_count"] == 1
        assert stats["metrics"]["promotions"] == 1

    @pytest.mark.asyncio
    async def test_guidance_surfaces_promoted_pattern(self):
        bank = make_bank()
        stored = await bank.store_pattern("Use JWT with refresh tokens", domain="security")
        for _ in range(3):
            await bank.record_outcome(stored.id, True)

        guidance = await bank.generate_guidance(
            {"task": {"description": "Use JWT with refresh tokens"}}
        )

        assert guidance.patterns[0].pattern.id == stored.id
        assert "security" in [d.value for d in guidance.domains]
        assert "Validate all inputs at system boundaries" in guidance.recommendations
        assert "(100% match)" in guidance.context_summary


class TestNearDuplicateScenario:
    @pytest.mark.asyncio
    async def test_near_duplicate_counts_once(self, vector_provider):
        second = [0.97, math.sqrt(1.0 - 0.97 ** 2), 0.0, 0.0]
        provider = vector_provider({
            "Cache embeddings per text": [1.0, 0.0, 0.0, 0.0],
            "Cache embedding vectors per input text": second,
        })
        bank = make_bank(provider=provider, dimensions=4)

        first = await bank.store_pattern("Cache embeddings per text")
        again = await bank.store_pattern("Cache embedding vectors per input text")

        assert again.action == "updated"
        assert again.id == first.id
        assert bank.store.get(first.id).usage_count == 2
        assert bank.get_stats()["short_term_count"] == 1


class TestSearchPatterns:
    @pytest.mark.asyncio
    async def test_text_and_vector_queries(self):
        bank = make_bank()
        stored = await bank.store_pattern("Batch database operations", domain="performance")
        vector = bank.store.get(stored.id).embedding

        by_text = await bank.search_patterns("Batch database operations", k=3)
        by_vector = await bank.search_patterns(vector, k=3)

        assert by_text[0].pattern.id == stored.id
        assert by_text[0].similarity == pytest.approx(1.0, abs=1e-6)
        assert by_vector[0].pattern.id == stored.id

    @pytest.mark.asyncio
    async def test_blank_text_returns_nothing(self):
        bank = make_bank()
        await bank.store_pattern("Batch database operations")

        assert await bank.search_patterns("   ") == []

    @pytest.mark.asyncio
    async def test_k_bounds_results(self):
        bank = make_bank()
        for text in ("alpha one", "beta two", "gamma three", "delta four"):
            await bank.store_pattern(text)

        results = await bank.search_patterns("alpha one", k=2)

        assert len(results) == 2
        assert results[0].similarity >= results[1].similarity


class TestRouting:
    @pytest.mark.asyncio
    async def test_route_task_uses_history(self):
        bank = make_bank()
        stored = await bank.store_pattern(
            "Audit dependencies for CVEs", metadata={"agent": "security-architect"}
        )
        await bank.record_outcome(stored.id, True)

        result = await bank.route_task("check auth token handling for vuln")

        assert result.agent == "security-architect"
        assert result.historical_performance is not None
        assert result.historical_performance.task_count == 1
        assert result.historical_performance.success_rate == pytest.approx(0.5)
        assert len(result.alternatives) == 3


class TestConsolidationScenario:
    @pytest.mark.asyncio
    async def test_stale_patterns_pruned_useful_kept(self, clock):
        bank = make_bank(clock=clock)
        events = []
        bank.add_listener(lambda name, payload: events.append((name, payload)))

        stale = await bank.store_pattern("One-off workaround for flaky CI")
        reused = await bank.store_pattern("Profile before optimizing")
        await bank.record_outcome(reused.id, False)
        clock.advance(hours=48)

        result = await bank.consolidate()

        assert result.patterns_pruned == 1
        assert result.duplicates_removed == 0
        assert bank.store.get(stale.id) is None
        assert bank.store.get(reused.id) is not None
        assert ("consolidated", result.to_dict()) in events

    @pytest.mark.asyncio
    async def test_capacity_enforced_through_bank(self):
        bank = make_bank(max_short_term=3)
        for text in ("first idea", "second thought", "third option", "fourth plan"):
            await bank.store_pattern(text)

        stats = bank.get_stats()
        assert stats["short_term_count"] == 3
        assert stats["metrics"]["patterns_evicted"] == 1


class TestInitialization:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self):
        from guidebank.common.persistence import InMemoryPersistence

        delegate = InMemoryPersistence()
        delegate.initialize = AsyncMock()
        bank = make_bank(persistence=delegate)
        events = []
        bank.add_listener(lambda name, payload: events.append(name))

        await bank.initialize()
        await bank.initialize()
        await bank.store_pattern("Mock external dependencies")

        delegate.initialize.assert_awaited_once()
        assert events.count("initialized") == 1
        assert bank.is_initialized

    @pytest.mark.asyncio
    async def test_persistence_failure_degrades_to_memory(self):
        delegate = Mock()
        delegate.initialize = AsyncMock(side_effect=ConnectionError("backend down"))
        delegate.store = AsyncMock()
        bank = make_bank(persistence=delegate)

        stored = await bank.store_pattern("Store secrets in environment variables only")

        assert bank.in_memory_only
        assert bank.get_stats()["in_memory_only"] is True
        assert stored.id in bank.store.short_term
        delegate.store.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reload_from_json_file(self, tmp_path):
        from guidebank.common.persistence import JsonFilePersistence

        path = tmp_path / "patterns.json"
        writer = make_bank(persistence=JsonFilePersistence(path))
        stored = await writer.store_pattern("Use descriptive test names", domain="testing")
        for _ in range(2):
            await writer.record_outcome(stored.id, True)
        await writer.close()

        reader = make_bank(persistence=JsonFilePersistence(path))
        await reader.initialize()

        assert stored.id in reader.store.long_term
        pattern = reader.store.get(stored.id)
        assert pattern.usage_count == 3
        assert pattern.domain == "testing"


class TestEvents:
    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_operation(self):
        bank = make_bank()
        seen = []

        def broken(name, payload):
            raise RuntimeError("listener bug")

        bank.add_listener(broken)
        bank.add_listener(lambda name, payload: seen.append(name))

        stored = await bank.store_pattern("Write test first")

        assert stored.created
        assert "pattern_stored" in seen

    @pytest.mark.asyncio
    async def test_remove_listener(self):
        bank = make_bank()
        seen = []
        listener = lambda name, payload: seen.append(name)

        bank.add_listener(listener)
        await bank.initialize()
        bank.remove_listener(listener)
        await bank.store_pattern("Write test first")

        assert seen == ["initialized"]

    @pytest.mark.asyncio
    async def test_outcome_event(self):
        bank = make_bank()
        seen = []
        bank.add_listener(lambda name, payload: seen.append((name, payload)))

        stored = await bank.store_pattern("Write test first")
        await bank.record_outcome(stored.id, True)

        assert ("outcome_recorded", {
            "id": stored.id, "success": True, "quality": pytest.approx(0.65),
        }) in seen


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_outcomes_are_all_counted(self):
        bank = make_bank(promotion_threshold=100)
        stored = await bank.store_pattern("Apply principle of least privilege")

        await asyncio.gather(*(bank.record_outcome(stored.id, True) for _ in range(20)))

        pattern = bank.store.get(stored.id)
        assert pattern.usage_count == 21
        assert pattern.success_count == 20

    @pytest.mark.asyncio
    async def test_concurrent_identical_stores_dedup(self):
        bank = make_bank()

        results = await asyncio.gather(
            *(bank.store_pattern("Use parameterized queries") for _ in range(5))
        )

        assert sum(1 for r in results if r.created) == 1
        assert len({r.id for r in results}) == 1
        assert bank.store.get(results[0].id).usage_count == 5


class TestCreateBank:
    def test_builds_configured_components(self, tmp_path):
        from guidebank.bank import create_bank
        from guidebank.common.config import GuidebankConfig, PersistenceConfig
        from guidebank.common.embedding_service import HashEmbeddingProvider
        from guidebank.common.persistence import JsonFilePersistence

        config = GuidebankConfig(
            persistence=PersistenceConfig(backend="json", path=str(tmp_path / "p.json")),
        )
        bank = create_bank(config)

        assert isinstance(bank.store.persistence, JsonFilePersistence)
        assert isinstance(bank.store.embedding_service.provider, HashEmbeddingProvider)
        assert not bank.is_initialized

    def test_command_provider(self):
        from guidebank.bank import create_bank
        from guidebank.common.config import EmbeddingConfig, GuidebankConfig
        from guidebank.common.embedding_service import CommandEmbeddingProvider

        config = GuidebankConfig(embedding=EmbeddingConfig(provider="command", command="embed-cli"))

        bank = create_bank(config)

        assert isinstance(bank.store.embedding_service.provider, CommandEmbeddingProvider)

    def test_unknown_backend_rejected(self):
        from guidebank.bank import create_bank
        from guidebank.common.config import GuidebankConfig, PersistenceConfig

        with pytest.raises(ValueError):
            create_bank(GuidebankConfig(persistence=PersistenceConfig(backend="redis")))

    @pytest.mark.asyncio
    async def test_export_patterns(self):
        bank = make_bank()
        await bank.store_pattern("Use domain events for cross-module communication")

        exported = await bank.export_patterns()

        assert len(exported["short_term"]) == 1
        assert exported["long_term"] == []

    @pytest.mark.asyncio
    async def test_export_after_rejected_metadata(self, tmp_path):
        from guidebank.common.persistence import JsonFilePersistence

        class Opaque:
            pass

        path = tmp_path / "patterns.json"
        bank = make_bank(persistence=JsonFilePersistence(path))

        with pytest.raises(TypeError):
            await bank.store_pattern("Cache parsed configs", metadata={"obj": Opaque()})
        await bank.store_pattern("Batch database operations", metadata={"agent": "coder"})

        exported = await bank.export_patterns()
        assert [p["strategy"] for p in exported["short_term"]] == ["Batch database operations"]
        assert len(json.loads(path.read_text())["entries"]) == 1
