"""
Guidance Synthesizer

Turns a task context into guidance:
1. Build a query string from the context fields
2. Retrieve the most similar stored patterns
3. Detect domains and attach their static best-practice templates
4. Summarize domains and top matches as markdown
5. Ask the router for an agent

Key principle: stored patterns are evidence, templates are defaults.
Templates are always included for detected domains, even with no matches.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..common.similarity import PatternMatch
from ..store.metrics import timed
from ..store.pattern_store import PatternStore
from .agent_router import AgentRouter, AgentSuggestion
from .domains import GuidanceDomain, detect_domains, recommendations_for

logger = logging.getLogger("guidebank.retriever.synthesizer")

MAX_PATTERNS = 5
MAX_RECOMMENDATIONS = 5
SUMMARY_PATTERNS = 3


@dataclass
class TaskContext:
    """What the agent is about to do"""
    file_path: Optional[str] = None
    command: Optional[str] = None
    task_description: Optional[str] = None
    routing_task: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping) -> "TaskContext":
        """
        Accept either hook-style nesting or flat keys:

            {"file": {"path": ...}, "command": {"raw": ...},
             "task": {"description": ...}, "routing": {"task": ...}}
            {"file_path": ..., "command": ..., "task_description": ..., "routing_task": ...}
        """
        def nested(key: str, inner: str) -> Optional[str]:
            value = data.get(key)
            if isinstance(value, Mapping):
                return value.get(inner)
            return None

        def flat(key: str) -> Optional[str]:
            value = data.get(key)
            return value if isinstance(value, str) else None

        return cls(
            file_path=nested("file", "path") or flat("file_path"),
            command=nested("command", "raw") or flat("command"),
            task_description=nested("task", "description") or flat("task_description") or flat("task"),
            routing_task=nested("routing", "task") or flat("routing_task"),
        )

    def build_query(self) -> str:
        parts: List[str] = []
        if self.file_path:
            parts.append(f"file: {self.file_path}")
        if self.command:
            parts.append(f"command: {self.command}")
        if self.task_description:
            parts.append(self.task_description)
        if self.routing_task:
            parts.append(self.routing_task)
        return " ".join(parts)


@dataclass
class GuidanceResult:
    """Synthesized guidance for one task context"""
    patterns: List[PatternMatch]
    context_summary: str
    recommendations: List[str]
    agent_suggestion: AgentSuggestion
    search_time_ms: float  # whole generate_guidance() call, not just the vector search
    domains: List[GuidanceDomain] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patterns": [m.to_dict() for m in self.patterns],
            "context_summary": self.context_summary,
            "recommendations": list(self.recommendations),
            "agent_suggestion": self.agent_suggestion.to_dict(),
            "search_time_ms": self.search_time_ms,
            "domains": [d.value for d in self.domains],
        }


class GuidanceSynthesizer:
    """
    Builds guidance from stored patterns and domain templates.

    Never fails on empty input: a blank context yields no patterns,
    no domains and the default agent.
    """

    def __init__(self, store: PatternStore, router: AgentRouter):
        self._store = store
        self._router = router

    async def generate_guidance(
        self,
        context: Union[TaskContext, Mapping],
    ) -> GuidanceResult:
        """
        Generate guidance for a task.

        Args:
            context: TaskContext or an equivalent mapping

        Returns:
            GuidanceResult with matches, summary, recommendations and agent
        """
        if not isinstance(context, TaskContext):
            context = TaskContext.from_dict(context)

        query = context.build_query()

        with timed() as elapsed:
            if query.strip():
                patterns = await self._store.search_text(query, MAX_PATTERNS)
            else:
                patterns = []

            domains = detect_domains(query)
            recommendations = recommendations_for(domains, MAX_RECOMMENDATIONS)
            context_summary = self._format_summary(domains, patterns)
            suggestion = self._router.suggest_agent(query)

        logger.debug(
            "Guidance: %d patterns, domains=%s, agent=%s",
            len(patterns), [d.value for d in domains], suggestion.agent,
        )

        return GuidanceResult(
            patterns=patterns,
            context_summary=context_summary,
            recommendations=recommendations,
            agent_suggestion=suggestion,
            search_time_ms=elapsed[0],
            domains=domains,
        )

    def _format_summary(
        self,
        domains: List[GuidanceDomain],
        patterns: List[PatternMatch],
    ) -> str:
        lines: List[str] = []
        if domains:
            lines.append(f"**Detected Domains**: {', '.join(d.value for d in domains)}")

        if patterns:
            lines.append("**Relevant Patterns**:")
            for match in patterns[:SUMMARY_PATTERNS]:
                lines.append(f"- {match.pattern.strategy} ({match.similarity * 100:.0f}% match)")

        return "\n".join(lines)
