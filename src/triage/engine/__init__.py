"""Feedback triage and patch lifecycle engine."""
from triage.engine.classifier import Classifier
from triage.engine.models import (
    BUILD_PHASES,
    BuildPhase,
    Category,
    CycleResult,
    CycleStatus,
    Destination,
    Effort,
    FeedbackItem,
    FeedbackStatus,
    IssuePattern,
    PatchItem,
    PatchStatus,
    Severity,
    TriageDecision,
    TriageReport,
)
from triage.engine.patches import ManagedPatch, PatchManager
from triage.engine.patterns import PatternDetector
from triage.engine.rules import EscalationRule, default_escalation_rules
from triage.engine.store import RecordStore
from triage.engine.triage import TriageSystem, triage_report_to_patches

__all__ = [
    "BUILD_PHASES",
    "BuildPhase",
    "Category",
    "Classifier",
    "CycleResult",
    "CycleStatus",
    "Destination",
    "Effort",
    "EscalationRule",
    "FeedbackItem",
    "FeedbackStatus",
    "IssuePattern",
    "ManagedPatch",
    "PatchItem",
    "PatchManager",
    "PatchStatus",
    "PatternDetector",
    "RecordStore",
    "Severity",
    "TriageDecision",
    "TriageReport",
    "TriageSystem",
    "default_escalation_rules",
    "triage_report_to_patches",
]
