"""Declarative escalation rules applied before classification."""
from collections.abc import Callable
from dataclasses import dataclass

from triage.engine.models import Category, FeedbackItem, Severity

# Agents on the critical path of every build phase
CORE_AGENTS = {"SENTINEL", "CARTOGRAPH", "WORKFORCE", "NEXUS"}


@dataclass(frozen=True)
class EscalationRule:
    """Predicate that may raise a feedback item's severity"""
    id: str
    name: str
    condition: Callable[[FeedbackItem], bool]
    escalate_to: Severity
    reason: str

    def matches(self, feedback: FeedbackItem) -> bool:
        return bool(self.condition(feedback))


def default_escalation_rules() -> list[EscalationRule]:
    """Built-in rules, in evaluation order."""
    return [
        EscalationRule(
            id="compliance-to-critical",
            name="Compliance Auto-Escalation",
            condition=lambda f: (
                f.category == Category.COMPLIANCE and f.severity != Severity.CRITICAL
            ),
            escalate_to=Severity.CRITICAL,
            reason="Compliance issues risk certification",
        ),
        EscalationRule(
            id="security-to-high",
            name="Security Auto-Escalation",
            condition=lambda f: (
                f.category == Category.SECURITY
                and f.severity in (Severity.MEDIUM, Severity.LOW)
            ),
            escalate_to=Severity.HIGH,
            reason="Security issues require prompt attention",
        ),
        EscalationRule(
            id="data-integrity-to-high",
            name="Data Integrity Auto-Escalation",
            condition=lambda f: (
                f.category == Category.DATA_QUALITY and f.severity == Severity.MEDIUM
            ),
            escalate_to=Severity.HIGH,
            reason="Data integrity affects compliance calculations",
        ),
        EscalationRule(
            id="sentinel-bugs-critical",
            name="SENTINEL Bug Escalation",
            condition=lambda f: f.agent_source == "SENTINEL" and f.category == Category.BUG,
            escalate_to=Severity.CRITICAL,
            reason="SENTINEL bugs directly affect compliance accuracy",
        ),
        EscalationRule(
            id="core-performance-escalation",
            name="Core Performance Escalation",
            condition=lambda f: (
                f.category == Category.PERFORMANCE
                and f.agent_source in CORE_AGENTS
                and f.severity == Severity.MEDIUM
            ),
            escalate_to=Severity.HIGH,
            reason="Performance issues in core agents affect user experience",
        ),
    ]
