"""
Domain Detection

Classifies query text into the fixed domain taxonomy and holds the static
best-practice guidance for each domain. Rules are an ordered list so the
order of detected domains (and therefore of recommendations) is stable.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List


class GuidanceDomain(str, Enum):
    """Coarse task categories"""
    SECURITY = "security"
    TESTING = "testing"
    PERFORMANCE = "performance"
    ARCHITECTURE = "architecture"
    DEBUGGING = "debugging"


@dataclass(frozen=True)
class DomainRule:
    domain: GuidanceDomain
    pattern: re.Pattern

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


# Evaluated in this order
DOMAIN_RULES: List[DomainRule] = [
    DomainRule(
        GuidanceDomain.SECURITY,
        re.compile(r"security|auth|password|token|secret|cve|vuln", re.IGNORECASE),
    ),
    DomainRule(
        GuidanceDomain.TESTING,
        re.compile(r"test|spec|mock|coverage|tdd|assert", re.IGNORECASE),
    ),
    DomainRule(
        GuidanceDomain.PERFORMANCE,
        re.compile(r"perf|optim|fast|slow|memory|cache|speed", re.IGNORECASE),
    ),
    DomainRule(
        GuidanceDomain.ARCHITECTURE,
        re.compile(r"architect|design|ddd|domain|refactor|struct", re.IGNORECASE),
    ),
    DomainRule(
        GuidanceDomain.DEBUGGING,
        re.compile(r"fix|bug|error|issue|broken|fail|debug", re.IGNORECASE),
    ),
]


DOMAIN_GUIDANCE: Dict[GuidanceDomain, List[str]] = {
    GuidanceDomain.SECURITY: [
        "Validate all inputs at system boundaries",
        "Use parameterized queries (no string concatenation)",
        "Store secrets in environment variables only",
        "Apply principle of least privilege",
        "Check OWASP Top 10 patterns",
    ],
    GuidanceDomain.TESTING: [
        "Write test first, then implementation (TDD)",
        "Mock external dependencies",
        "Test behavior, not implementation",
        "One assertion per test concept",
        "Use descriptive test names",
    ],
    GuidanceDomain.PERFORMANCE: [
        "Use an indexed vector search instead of brute-force scans",
        "Batch database operations",
        "Implement caching at appropriate layers",
        "Profile before optimizing",
        "Target: <1ms searches, <100ms operations",
    ],
    GuidanceDomain.ARCHITECTURE: [
        "Respect bounded context boundaries",
        "Use domain events for cross-module communication",
        "Keep domain logic in domain layer",
        "Infrastructure adapters for external services",
        "Follow recorded architecture decisions (ADRs)",
    ],
    GuidanceDomain.DEBUGGING: [
        "Reproduce the issue first",
        "Check recent changes in git log",
        "Add logging before fixing",
        "Write regression test",
        "Verify fix doesn't break other tests",
    ],
}


def detect_domains(text: str) -> List[GuidanceDomain]:
    """All domains whose rule matches the text, in rule order"""
    if not text:
        return []
    return [rule.domain for rule in DOMAIN_RULES if rule.matches(text)]


def recommendations_for(domains: List[GuidanceDomain], limit: int = 5) -> List[str]:
    """Concatenate the templates of each domain, capped at `limit`"""
    recommendations: List[str] = []
    for domain in domains:
        recommendations.extend(DOMAIN_GUIDANCE.get(domain, []))
    return recommendations[:limit]
