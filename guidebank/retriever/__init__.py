"""
Guidebank Retriever - Guidance synthesis and agent routing

Turns stored patterns into advice for a new task.

Key Components:
- domains: Regex domain detection and per-domain best-practice templates
- AgentRouter: Suggests a handling agent from regex rules and pattern history
- GuidanceSynthesizer: Query building, pattern retrieval, summary text

Pipeline:
1. Build a query from the task context (file, command, description)
2. Search both tiers for similar patterns
3. Detect domains and attach their templates (max 5)
4. Suggest an agent
"""

from .domains import GuidanceDomain, DOMAIN_RULES, DOMAIN_GUIDANCE, detect_domains
from .agent_router import (
    AgentRouter,
    AgentRule,
    AgentSuggestion,
    AgentPerformance,
    RoutingResult,
    AGENT_RULES,
)
from .synthesizer import GuidanceSynthesizer, GuidanceResult, TaskContext

__all__ = [
    "GuidanceDomain",
    "DOMAIN_RULES",
    "DOMAIN_GUIDANCE",
    "detect_domains",
    "AgentRouter",
    "AgentRule",
    "AgentSuggestion",
    "AgentPerformance",
    "RoutingResult",
    "AGENT_RULES",
    "GuidanceSynthesizer",
    "GuidanceResult",
    "TaskContext",
]
