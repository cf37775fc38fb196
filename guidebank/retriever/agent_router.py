"""
Agent Router

Suggests which specialized agent should handle a task:
1. Regex rules over the task text give a confidence per agent
2. Similar stored patterns give historical performance per agent
   (from each pattern's metadata["agent"], default "coder")
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from ..store.pattern_store import PatternStore

logger = logging.getLogger("guidebank.retriever.agent_router")

DEFAULT_AGENT = "coder"
DEFAULT_CONFIDENCE = 70
MATCH_BASE_CONFIDENCE = 85
MATCH_BONUS_PER_HIT = 5
MATCH_BONUS_CAP = 13
ALTERNATIVE_MATCH_CONFIDENCE = 85
ALTERNATIVE_BASELINE_CONFIDENCE = 60


@dataclass(frozen=True)
class AgentRule:
    """Routing rule; lower priority value is evaluated first and wins ties"""
    agent: str
    pattern: re.Pattern
    priority: int

    def count_matches(self, text: str) -> int:
        return sum(1 for _ in self.pattern.finditer(text))


AGENT_RULES: List[AgentRule] = sorted(
    [
        AgentRule("security-architect", re.compile(r"security|auth|cve|vuln|encrypt|password|token", re.IGNORECASE), 1),
        AgentRule("test-architect", re.compile(r"test|spec|mock|coverage|tdd|assert", re.IGNORECASE), 2),
        AgentRule("performance-engineer", re.compile(r"perf|optim|fast|memory|cache|speed|slow", re.IGNORECASE), 3),
        AgentRule("core-architect", re.compile(r"architect|design|ddd|domain|refactor|struct", re.IGNORECASE), 4),
        AgentRule("swarm-specialist", re.compile(r"swarm|agent|coordinate|orchestrat|parallel", re.IGNORECASE), 5),
        AgentRule("memory-specialist", re.compile(r"memory|agentdb|hnsw|vector|embedding", re.IGNORECASE), 6),
        AgentRule("coder", re.compile(r"fix|bug|implement|create|add|build|error|code", re.IGNORECASE), 7),
        AgentRule("reviewer", re.compile(r"review|quality|lint|check|audit", re.IGNORECASE), 8),
    ],
    key=lambda rule: rule.priority,
)


@dataclass
class AgentSuggestion:
    agent: str
    confidence: int
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AgentAlternative:
    agent: str
    confidence: int


@dataclass
class AgentPerformance:
    """Aggregated history of one agent over similar patterns"""
    success_rate: float
    avg_quality: float
    task_count: int


@dataclass
class RoutingResult:
    agent: str
    confidence: int
    reasoning: str
    alternatives: List[AgentAlternative] = field(default_factory=list)
    historical_performance: Optional[AgentPerformance] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def match_confidence(match_count: int) -> int:
    return MATCH_BASE_CONFIDENCE + min(match_count * MATCH_BONUS_PER_HIT, MATCH_BONUS_CAP)


class AgentRouter:
    """
    Routes task text to an agent.

    Rules are evaluated in priority order; a later rule replaces the current
    best only with a strictly higher confidence.
    """

    def __init__(
        self,
        store: PatternStore,
        rules: Optional[List[AgentRule]] = None,
        history_k: int = 10,
        max_alternatives: int = 3,
    ):
        self._store = store
        self._rules = sorted(rules, key=lambda r: r.priority) if rules else AGENT_RULES
        self._history_k = history_k
        self._max_alternatives = max_alternatives

    @property
    def rules(self) -> List[AgentRule]:
        return list(self._rules)

    def suggest_agent(self, task: str) -> AgentSuggestion:
        """Best agent for the task text from regex rules alone"""
        best = AgentSuggestion(
            agent=DEFAULT_AGENT,
            confidence=DEFAULT_CONFIDENCE,
            reasoning="Default agent for general tasks",
        )
        if not task:
            return best

        for rule in self._rules:
            count = rule.count_matches(task)
            if count == 0:
                continue
            confidence = match_confidence(count)
            if confidence > best.confidence:
                best = AgentSuggestion(
                    agent=rule.agent,
                    confidence=confidence,
                    reasoning=f"Task matches {rule.agent} patterns",
                )
        return best

    async def route_task(self, task: str) -> RoutingResult:
        """
        Suggest an agent and attach history and alternatives.

        Args:
            task: Task description

        Returns:
            RoutingResult with agent, confidence, alternatives and,
            when similar patterns exist for the agent, historical performance
        """
        suggestion = self.suggest_agent(task)

        matches = await self._store.search_text(task, self._history_k) if task.strip() else []
        performance = self._aggregate_performance(matches)
        logger.debug(
            "Routed to %s (%d%%), history for %d agent(s)",
            suggestion.agent, suggestion.confidence, len(performance),
        )

        return RoutingResult(
            agent=suggestion.agent,
            confidence=suggestion.confidence,
            reasoning=suggestion.reasoning,
            alternatives=self._alternatives(task, exclude=suggestion.agent),
            historical_performance=performance.get(suggestion.agent),
        )

    def _aggregate_performance(self, matches) -> Dict[str, AgentPerformance]:
        totals: Dict[str, Dict[str, float]] = {}
        for match in matches:
            pattern = match.pattern
            agent = pattern.metadata.get("agent") or DEFAULT_AGENT
            perf = totals.setdefault(agent, {"success": 0.0, "quality": 0.0, "total": 0})
            perf["total"] += 1
            perf["success"] += pattern.success_count / max(pattern.usage_count, 1)
            perf["quality"] += pattern.quality

        return {
            agent: AgentPerformance(
                success_rate=perf["success"] / perf["total"],
                avg_quality=perf["quality"] / perf["total"],
                task_count=int(perf["total"]),
            )
            for agent, perf in totals.items()
        }

    def _alternatives(self, task: str, exclude: str) -> List[AgentAlternative]:
        alternatives = [
            AgentAlternative(
                agent=rule.agent,
                confidence=(
                    ALTERNATIVE_MATCH_CONFIDENCE
                    if task and rule.pattern.search(task)
                    else ALTERNATIVE_BASELINE_CONFIDENCE
                ),
            )
            for rule in self._rules
            if rule.agent != exclude
        ]
        # stable sort keeps rule priority as tie-break
        alternatives.sort(key=lambda a: a.confidence, reverse=True)
        return alternatives[: self._max_alternatives]
