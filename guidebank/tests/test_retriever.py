"""
Tests for the retriever side

Tests domain detection, agent routing and guidance synthesis.
"""

import time
import pytest
from unittest.mock import patch


def make_store(dimensions=64):
    from guidebank.common.config import StoreConfig
    from guidebank.common.embedding_service import EmbeddingService
    from guidebank.store.pattern_store import PatternStore

    return PatternStore(
        config=StoreConfig(dimensions=dimensions),
        embedding_service=EmbeddingService(dimensions=dimensions),
    )


class TestDomainDetection:
    def test_debugging(self):
        from guidebank.retriever.domains import GuidanceDomain, detect_domains

        assert detect_domains("fix bug in login") == [GuidanceDomain.DEBUGGING]

    def test_multiple_domains_in_rule_order(self):
        from guidebank.retriever.domains import GuidanceDomain, detect_domains

        domains = detect_domains("Fix failing auth tests")

        assert domains == [
            GuidanceDomain.SECURITY,
            GuidanceDomain.TESTING,
            GuidanceDomain.DEBUGGING,
        ]

    def test_case_insensitive(self):
        from guidebank.retriever.domains import GuidanceDomain, detect_domains

        assert GuidanceDomain.PERFORMANCE in detect_domains("SLOW QUERY")

    def test_no_domain(self):
        from guidebank.retriever.domains import detect_domains

        assert detect_domains("hello world") == []
        assert detect_domains("") == []

    def test_recommendations_capped(self):
        from guidebank.retriever.domains import (
            DOMAIN_GUIDANCE,
            GuidanceDomain,
            recommendations_for,
        )

        recs = recommendations_for([GuidanceDomain.SECURITY, GuidanceDomain.TESTING])

        assert len(recs) == 5
        assert recs == DOMAIN_GUIDANCE[GuidanceDomain.SECURITY][:5]

    def test_every_domain_has_guidance(self):
        from guidebank.retriever.domains import DOMAIN_GUIDANCE, GuidanceDomain

        for domain in GuidanceDomain:
            assert DOMAIN_GUIDANCE[domain]


class TestAgentRouter:
    @pytest.fixture
    def router(self):
        from guidebank.retriever.agent_router import AgentRouter
        return AgentRouter(make_store())

    def test_default_agent(self, router):
        suggestion = router.suggest_agent("hello world")

        assert suggestion.agent == "coder"
        assert suggestion.confidence == 70
        assert suggestion.reasoning == "Default agent for general tasks"

    def test_match_count_raises_confidence(self, router):
        suggestion = router.suggest_agent("fix bug in login")

        assert suggestion.agent == "coder"
        assert suggestion.confidence == 95
        assert suggestion.reasoning == "Task matches coder patterns"

    def test_confidence_capped(self, router):
        suggestion = router.suggest_agent("test test test test mock")

        assert suggestion.agent == "test-architect"
        assert suggestion.confidence == 98

    def test_strictly_higher_confidence_wins(self, router):
        suggestion = router.suggest_agent("implement JWT auth token refresh")

        assert suggestion.agent == "security-architect"
        assert suggestion.confidence == 95

    def test_tie_keeps_earlier_rule(self, router):
        suggestion = router.suggest_agent("security test")

        assert suggestion.agent == "security-architect"
        assert suggestion.confidence == 90

    def test_rules_in_priority_order(self):
        from guidebank.retriever.agent_router import AGENT_RULES

        assert [r.priority for r in AGENT_RULES] == sorted(r.priority for r in AGENT_RULES)
        assert AGENT_RULES[0].agent == "security-architect"

    @pytest.mark.asyncio
    async def test_route_alternatives(self, router):
        result = await router.route_task("implement JWT auth token refresh")

        assert result.agent == "security-architect"
        assert len(result.alternatives) == 3
        assert result.alternatives[0].agent == "coder"
        assert result.alternatives[0].confidence == 85
        assert [a.confidence for a in result.alternatives[1:]] == [60, 60]
        assert all(a.agent != "security-architect" for a in result.alternatives)

    @pytest.mark.asyncio
    async def test_route_without_history(self, router):
        result = await router.route_task("hello world")

        assert result.agent == "coder"
        assert result.historical_performance is None
        assert [a.agent for a in result.alternatives] == [
            "security-architect", "test-architect", "performance-engineer",
        ]

    @pytest.mark.asyncio
    async def test_route_aggregates_history(self):
        from guidebank.retriever.agent_router import AgentRouter

        store = make_store()
        fixed = await store.store_pattern("Reproduce the bug first", metadata={"agent": "coder"})
        await store.store_pattern("Add logging before fixing")  # no agent -> coder
        await store.store_pattern("Review for quality", metadata={"agent": "reviewer"})
        await store.record_outcome(fixed.id, True)

        result = await AgentRouter(store).route_task("fix bug in login")

        perf = result.historical_performance
        assert result.agent == "coder"
        assert perf.task_count == 2
        assert perf.success_rate == pytest.approx((0.5 + 0.0) / 2)
        assert perf.avg_quality == pytest.approx((0.65 + 0.5) / 2)

    @pytest.mark.asyncio
    async def test_routing_result_to_dict(self, router):
        result = await router.route_task("review the lint output")
        data = result.to_dict()

        assert data["agent"] == "reviewer"
        assert isinstance(data["alternatives"], list)
        assert set(data["alternatives"][0]) == {"agent", "confidence"}


class TestTaskContext:
    def test_from_nested_mapping(self):
        from guidebank.retriever.synthesizer import TaskContext

        ctx = TaskContext.from_dict({
            "file": {"path": "src/auth.py"},
            "command": {"raw": "pytest -k login"},
            "task": {"description": "fix bug in login"},
            "routing": {"task": "debug session"},
        })

        assert ctx.build_query() == (
            "file: src/auth.py command: pytest -k login fix bug in login debug session"
        )

    def test_from_flat_mapping(self):
        from guidebank.retriever.synthesizer import TaskContext

        ctx = TaskContext.from_dict({"file_path": "a.py", "task_description": "refactor"})

        assert ctx.build_query() == "file: a.py refactor"

    def test_empty_context(self):
        from guidebank.retriever.synthesizer import TaskContext

        assert TaskContext.from_dict({}).build_query() == ""


class TestGuidanceSynthesizer:
    @pytest.fixture
    def store(self):
        return make_store()

    @pytest.fixture
    def synthesizer(self, store):
        from guidebank.retriever.agent_router import AgentRouter
        from guidebank.retriever.synthesizer import GuidanceSynthesizer
        return GuidanceSynthesizer(store, AgentRouter(store))

    @pytest.mark.asyncio
    async def test_fix_bug_in_login(self, synthesizer):
        from guidebank.retriever.domains import DOMAIN_GUIDANCE, GuidanceDomain

        result = await synthesizer.generate_guidance({"task": {"description": "fix bug in login"}})

        assert result.domains == [GuidanceDomain.DEBUGGING]
        assert len(result.recommendations) <= 5
        assert "Reproduce the issue first" in result.recommendations
        assert result.recommendations == DOMAIN_GUIDANCE[GuidanceDomain.DEBUGGING][:5]
        assert result.agent_suggestion.agent == "coder"
        assert "**Detected Domains**: debugging" in result.context_summary
        assert result.patterns == []

    @pytest.mark.asyncio
    async def test_blank_context(self, synthesizer, store):
        result = await synthesizer.generate_guidance({})

        assert result.patterns == []
        assert result.recommendations == []
        assert result.context_summary == ""
        assert result.agent_suggestion.confidence == 70
        assert store.metrics.search_count == 0

    @pytest.mark.asyncio
    async def test_summary_lists_top_three(self, synthesizer, store):
        for text in (
            "Reproduce the issue first",
            "Write regression test",
            "Check recent changes in git log",
            "Add logging before fixing",
        ):
            await store.store_pattern(text, domain="debugging")

        result = await synthesizer.generate_guidance({"task_description": "fix bug in login"})

        assert len(result.patterns) == 4
        pattern_lines = [l for l in result.context_summary.splitlines() if l.startswith("- ")]
        assert len(pattern_lines) == 3
        assert "**Relevant Patterns**:" in result.context_summary
        top = result.patterns[0]
        assert f"- {top.pattern.strategy} ({top.similarity * 100:.0f}% match)" in pattern_lines

    @pytest.mark.asyncio
    async def test_accepts_task_context(self, synthesizer):
        from guidebank.retriever.synthesizer import TaskContext

        result = await synthesizer.generate_guidance(TaskContext(command="npm test"))

        assert [d.value for d in result.domains] == ["testing"]
        assert result.search_time_ms >= 0.0

    @pytest.mark.asyncio
    async def test_time_covers_whole_generation(self, synthesizer):
        from guidebank.retriever.domains import detect_domains

        def slow_detect(text):
            time.sleep(0.02)
            return detect_domains(text)

        with patch("guidebank.retriever.synthesizer.detect_domains", side_effect=slow_detect):
            result = await synthesizer.generate_guidance({"task_description": "optimize cache"})

        assert result.search_time_ms >= 15.0
        assert [d.value for d in result.domains] == ["performance"]

    @pytest.mark.asyncio
    async def test_to_dict(self, synthesizer):
        result = await synthesizer.generate_guidance({"task": {"description": "optimize cache"}})
        data = result.to_dict()

        assert data["domains"] == ["performance"]
        assert data["agent_suggestion"]["agent"] == "performance-engineer"
