"""Classifies feedback items into triage decisions"""
import logging

from triage.engine.models import (
    Category,
    FeedbackItem,
    Severity,
    TriageDecision,
    classify_destination,
    severity_rank,
)
from triage.engine.rules import EscalationRule, default_escalation_rules

logger = logging.getLogger(__name__)


class Classifier:
    """Maps a feedback item to a triage decision using escalation rules"""

    SEVERITY_WEIGHT = {
        Severity.CRITICAL: 0,
        Severity.HIGH: 100,
        Severity.MEDIUM: 200,
        Severity.LOW: 300,
    }

    # Security and compliance sort ahead of everything else in a severity band
    CATEGORY_WEIGHT = {
        Category.SECURITY: 0,
        Category.COMPLIANCE: 5,
        Category.BUG: 10,
        Category.DATA_QUALITY: 15,
        Category.PERFORMANCE: 20,
        Category.UX_ISSUE: 25,
        Category.FEATURE_GAP: 30,
    }

    # Hours by category and adjusted severity
    RESOLUTION_HOURS = {
        Category.BUG: {Severity.CRITICAL: 4, Severity.HIGH: 2, Severity.MEDIUM: 1, Severity.LOW: 0.5},
        Category.PERFORMANCE: {Severity.CRITICAL: 8, Severity.HIGH: 4, Severity.MEDIUM: 2, Severity.LOW: 1},
        Category.UX_ISSUE: {Severity.CRITICAL: 4, Severity.HIGH: 2, Severity.MEDIUM: 1, Severity.LOW: 0.5},
        Category.FEATURE_GAP: {Severity.CRITICAL: 16, Severity.HIGH: 8, Severity.MEDIUM: 4, Severity.LOW: 2},
        Category.DATA_QUALITY: {Severity.CRITICAL: 4, Severity.HIGH: 2, Severity.MEDIUM: 1, Severity.LOW: 0.5},
        Category.SECURITY: {Severity.CRITICAL: 8, Severity.HIGH: 4, Severity.MEDIUM: 2, Severity.LOW: 1},
        Category.COMPLIANCE: {Severity.CRITICAL: 8, Severity.HIGH: 4, Severity.MEDIUM: 2, Severity.LOW: 1},
    }

    OWNER_MAP = {
        "SENTINEL": "compliance-team",
        "CARTOGRAPH": "geo-team",
        "WORKFORCE": "hr-team",
        "NEXUS": "platform-team",
        "CAPTURE": "bd-team",
        "ORACLE": "analytics-team",
        "ARCHIVIST": "docs-team",
        "GUARDIAN": "audit-team",
        "DIPLOMAT": "partnerships-team",
        "ADVOCATE": "regulatory-team",
    }

    # Agents whose output other agents consume
    DEPENDENTS = {
        "SENTINEL": ("ORACLE", "GUARDIAN", "ARCHIVIST"),
        "CARTOGRAPH": ("WORKFORCE", "SENTINEL"),
    }

    BLOCKING_AGENTS = {"NEXUS", "SENTINEL"}

    def __init__(self, rules: list[EscalationRule] | None = None):
        self.rules: list[EscalationRule] = (
            list(rules) if rules is not None else default_escalation_rules()
        )

    def add_rule(self, rule: EscalationRule) -> None:
        """Register a custom rule; it runs after the existing ones"""
        self.rules.append(rule)

    def escalate(self, feedback: FeedbackItem) -> tuple[Severity, str | None]:
        """Apply every rule; severity can only move towards critical.

        Returns the adjusted severity and the reason of the rule that last
        raised it (None when nothing fired or nothing raised).
        """
        adjusted = feedback.severity
        reason = None
        for rule in self.rules:
            if not rule.matches(feedback):
                continue
            if severity_rank(rule.escalate_to) > severity_rank(adjusted):
                adjusted = rule.escalate_to
                reason = rule.reason
        return adjusted, reason

    @classmethod
    def priority_for(cls, severity: Severity, category: Category) -> int:
        return cls.SEVERITY_WEIGHT[severity] + cls.CATEGORY_WEIGHT[category]

    @classmethod
    def resolution_hours(cls, category: Category, severity: Severity) -> float:
        return cls.RESOLUTION_HOURS[category][severity]

    def suggest_owner(self, feedback: FeedbackItem) -> str | None:
        return self.OWNER_MAP.get(feedback.agent_source)

    def classify(self, feedback: FeedbackItem) -> TriageDecision:
        """Build the triage decision for one feedback item"""
        adjusted, reason = self.escalate(feedback)
        auto_escalated = adjusted != feedback.severity

        rationale = f"{adjusted.value.upper()} {feedback.category.value} in {feedback.agent_source}"
        if auto_escalated:
            rationale += f" (escalated from {feedback.severity.value}: {reason})"
            logger.debug(
                "Escalated %s from %s to %s", feedback.id, feedback.severity.value, adjusted.value
            )

        return TriageDecision(
            feedback_id=feedback.id,
            original_severity=feedback.severity,
            adjusted_severity=adjusted,
            priority=self.priority_for(adjusted, feedback.category),
            destination=classify_destination(adjusted),
            rationale=rationale,
            auto_escalated=auto_escalated,
            escalation_reason=reason,
            suggested_owner=self.suggest_owner(feedback),
            estimated_resolution_hours=self.resolution_hours(feedback.category, adjusted),
            blocks_others=(
                feedback.agent_source in self.BLOCKING_AGENTS and adjusted == Severity.CRITICAL
            ),
            dependencies=self.DEPENDENTS.get(feedback.agent_source, ()),
        )
