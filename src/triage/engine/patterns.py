"""Detects recurring issue clusters across a feedback batch.

Three detectors run over the same batch: agent clustering, category
clustering and keyword clustering. Their patterns are concatenated and
sorted by consolidated priority. An item may appear in several clusters.
"""
import logging
from collections.abc import Callable
from typing import Any

from triage.engine.models import FeedbackItem, IssuePattern, TriageDecision

logger = logging.getLogger(__name__)

AGENT_CLUSTER_MIN = 3
CATEGORY_CLUSTER_MIN = 4
KEYWORD_CLUSTER_MIN = 2

KEYWORDS = ["timeout", "null", "undefined", "failed", "slow", "error", "missing", "invalid"]

# Priority used for members without a decision
UNTRIAGED_PRIORITY = 999

Cluster = tuple[str, list[FeedbackItem]]
PriorityLookup = Callable[[FeedbackItem], int]
Detector = Callable[[list[FeedbackItem], PriorityLookup], list[IssuePattern]]


def group_by(items: list[FeedbackItem], key: Callable[[FeedbackItem], Any]) -> dict[str, list[FeedbackItem]]:
    """Group items by key, preserving first-seen order"""
    groups: dict[str, list[FeedbackItem]] = {}
    for item in items:
        value = key(item)
        group_key = getattr(value, "value", value)
        groups.setdefault(str(group_key), []).append(item)
    return groups


def cluster_by_agent(items: list[FeedbackItem], min_size: int = AGENT_CLUSTER_MIN) -> list[Cluster]:
    groups = group_by(items, lambda i: i.agent_source)
    return [(agent, members) for agent, members in groups.items() if len(members) >= min_size]


def cluster_by_category(items: list[FeedbackItem], min_size: int = CATEGORY_CLUSTER_MIN) -> list[Cluster]:
    groups = group_by(items, lambda i: i.category)
    return [(category, members) for category, members in groups.items() if len(members) >= min_size]


def cluster_by_keyword(
    items: list[FeedbackItem],
    keywords: list[str] | None = None,
    min_size: int = KEYWORD_CLUSTER_MIN,
) -> list[Cluster]:
    """Items whose description or actual behaviour mentions a keyword"""
    clusters = []
    for keyword in keywords or KEYWORDS:
        matching = [
            item for item in items
            if keyword in item.description.lower() or keyword in item.actual_behavior.lower()
        ]
        if len(matching) >= min_size:
            clusters.append((keyword, matching))
    return clusters


def distinct_agents(items: list[FeedbackItem]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(item.agent_source for item in items))


def _consolidated(members: list[FeedbackItem], priority_of: PriorityLookup) -> int:
    return min(priority_of(member) for member in members)


def detect_agent_clusters(items: list[FeedbackItem], priority_of: PriorityLookup) -> list[IssuePattern]:
    return [
        IssuePattern(
            pattern_id=f"agent-cluster-{agent}",
            description=f"Multiple issues in {agent} agent",
            affected_count=len(members),
            affected_agents=(agent,),
            suggested_root_cause=f"{agent} may need architectural review",
            suggested_fix=f"Prioritize {agent} stabilization before adding features",
            consolidated_priority=_consolidated(members, priority_of),
        )
        for agent, members in cluster_by_agent(items)
    ]


def detect_category_clusters(items: list[FeedbackItem], priority_of: PriorityLookup) -> list[IssuePattern]:
    patterns = []
    for category, members in cluster_by_category(items):
        agents = distinct_agents(members)
        patterns.append(IssuePattern(
            pattern_id=f"category-spread-{category}",
            description=f"{category} issues across {len(agents)} agents",
            affected_count=len(members),
            affected_agents=agents,
            suggested_root_cause=f"Systemic {category} issue",
            suggested_fix=f"Review {category} handling patterns across codebase",
            consolidated_priority=_consolidated(members, priority_of),
        ))
    return patterns


def detect_keyword_clusters(items: list[FeedbackItem], priority_of: PriorityLookup) -> list[IssuePattern]:
    return [
        IssuePattern(
            pattern_id=f"similar-{keyword}",
            description=f'Related issues: "{keyword}"',
            affected_count=len(members),
            affected_agents=distinct_agents(members),
            suggested_root_cause=f'Common issue around "{keyword}"',
            suggested_fix=f"Address root cause: {keyword}",
            consolidated_priority=_consolidated(members, priority_of),
        )
        for keyword, members in cluster_by_keyword(items)
    ]


DEFAULT_DETECTORS: dict[str, Detector] = {
    "agent": detect_agent_clusters,
    "category": detect_category_clusters,
    "keyword": detect_keyword_clusters,
}


class PatternDetector:
    """Runs registered detectors in registration order"""

    def __init__(self, detectors: dict[str, Detector] | None = None):
        self.detectors: dict[str, Detector] = dict(
            detectors if detectors is not None else DEFAULT_DETECTORS
        )

    def register(self, name: str, detector: Detector) -> None:
        """Add or replace a detector"""
        self.detectors[name] = detector

    def detect(self, items: list[FeedbackItem], decisions: Any) -> list[IssuePattern]:
        """Detect clusters in a batch.

        Args:
            items: The feedback batch.
            decisions: Anything with ``get(feedback_id)`` returning a
                TriageDecision or None; classification must already have run.
        """
        def priority_of(item: FeedbackItem) -> int:
            decision: TriageDecision | None = decisions.get(item.id)
            return decision.priority if decision is not None else UNTRIAGED_PRIORITY

        patterns: list[IssuePattern] = []
        for name, detector in self.detectors.items():
            found = detector(items, priority_of)
            logger.debug("Detector %s found %d pattern(s)", name, len(found))
            patterns.extend(found)

        return sorted(patterns, key=lambda p: p.consolidated_priority)
