"""Triage orchestration: classify a batch, queue it, and detect patterns.

Critical issues become build blockers, high issues become parallel patches
and everything else goes to the backlog. Each pass produces a TriageReport.
"""
import logging
from collections.abc import Callable
from datetime import datetime
from operator import attrgetter

from triage.engine.classifier import Classifier
from triage.engine.models import (
    BuildPhase,
    Destination,
    Effort,
    FeedbackItem,
    IssuePattern,
    PatchItem,
    TriageDecision,
    TriageReport,
)
from triage.engine.patterns import PatternDetector
from triage.engine.rules import EscalationRule
from triage.engine.store import RecordStore

logger = logging.getLogger(__name__)

BACKLOG_GROOMING_THRESHOLD = 20


class TriageSystem:
    """Runs the classifier and pattern detector over feedback batches"""

    def __init__(
        self,
        classifier: Classifier | None = None,
        detector: PatternDetector | None = None,
        store: RecordStore[TriageDecision] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.classifier = classifier or Classifier()
        self.detector = detector or PatternDetector()
        self.decisions: RecordStore[TriageDecision] = (
            store if store is not None else RecordStore(key=attrgetter("feedback_id"))
        )
        self._clock = clock

    def add_escalation_rule(self, rule: EscalationRule) -> None:
        self.classifier.add_rule(rule)

    def triage_feedback(self, feedback: FeedbackItem) -> TriageDecision:
        """Triage one item, replacing any earlier decision for it"""
        return self.decisions.put(self.classifier.classify(feedback))

    def get_decision(self, feedback_id: str) -> TriageDecision | None:
        return self.decisions.get(feedback_id)

    def triage_all(
        self,
        feedback_items: list[FeedbackItem],
        cycle_number: int,
        phase: BuildPhase,
    ) -> TriageReport:
        """Triage a batch and build the report"""
        decisions = [self.triage_feedback(item) for item in feedback_items]
        # Stable sort: equal priorities keep batch order
        decisions.sort(key=attrgetter("priority"))

        blocker_queue = [d for d in decisions if d.destination == Destination.BUILD_BLOCKER]
        patch_queue = [d for d in decisions if d.destination == Destination.PARALLEL_PATCH]
        backlog_queue = [d for d in decisions if d.destination == Destination.BACKLOG]

        escalations = [d for d in decisions if d.auto_escalated]
        patterns = self.detector.detect(feedback_items, self.decisions)

        blocker_hours = sum(d.estimated_resolution_hours for d in blocker_queue)
        patch_hours = sum(d.estimated_resolution_hours for d in patch_queue)

        logger.debug(
            "Cycle %d triage: %d blockers, %d patches, %d backlog, %d pattern(s)",
            cycle_number, len(blocker_queue), len(patch_queue), len(backlog_queue), len(patterns),
        )

        return TriageReport(
            cycle_number=cycle_number,
            phase=phase,
            timestamp=self._clock(),
            total_issues=len(feedback_items),
            build_blockers=len(blocker_queue),
            parallel_patches=len(patch_queue),
            backlog_items=len(backlog_queue),
            auto_escalations=len(escalations),
            escalation_reasons=list(dict.fromkeys(d.escalation_reason for d in escalations)),
            blocker_queue=blocker_queue,
            patch_queue=patch_queue,
            backlog_queue=backlog_queue,
            patterns=patterns,
            recommendations=self._recommendations(
                blocker_queue, patch_queue, backlog_queue, patterns, len(escalations)
            ),
            estimated_blocker_resolution_hours=blocker_hours,
            estimated_patch_resolution_hours=patch_hours,
        )

    def _recommendations(
        self,
        blockers: list[TriageDecision],
        patches: list[TriageDecision],
        backlog: list[TriageDecision],
        patterns: list[IssuePattern],
        escalation_count: int,
    ) -> list[str]:
        recommendations = []

        if blockers:
            recommendations.append(
                f"BLOCKED: Fix {len(blockers)} critical issue(s) before proceeding"
            )
            total_hours = sum(b.estimated_resolution_hours for b in blockers)
            recommendations.append(f"Estimated blocker resolution: {total_hours:g}h")

        if patches:
            recommendations.append(
                f"{len(patches)} patch(es) can be addressed in parallel with next phase"
            )

        for pattern in patterns[:3]:
            recommendations.append(
                f"Pattern detected: {pattern.description} -> {pattern.suggested_fix}"
            )

        if escalation_count:
            recommendations.append(f"{escalation_count} issue(s) auto-escalated by triage rules")

        if len(backlog) > BACKLOG_GROOMING_THRESHOLD:
            recommendations.append(f"Consider scheduling backlog grooming ({len(backlog)} items)")

        if not blockers and not patches:
            recommendations.append("No blocking issues. Ready to proceed to next phase.")

        return recommendations


def _effort_for_hours(hours: float) -> Effort:
    if hours <= 2:
        return Effort.SMALL
    if hours <= 4:
        return Effort.MEDIUM
    return Effort.LARGE


def triage_report_to_patches(report: TriageReport) -> list[PatchItem]:
    """Convert the blocker and patch queues of a report into patch items"""
    patches = []

    for decision in report.blocker_queue:
        patches.append(PatchItem(
            id=f"patch-blocker-{decision.feedback_id}",
            feedback_id=decision.feedback_id,
            cycle_number=report.cycle_number,
            phase=report.phase,
            priority=decision.priority,
            component=decision.suggested_owner or "platform-team",
            description=decision.rationale,
            estimated_effort=_effort_for_hours(decision.estimated_resolution_hours),
            suggested_fix=f"Fix critical issue: {decision.rationale}",
            assigned_to=decision.suggested_owner,
        ))

    for decision in report.patch_queue:
        patches.append(PatchItem(
            id=f"patch-parallel-{decision.feedback_id}",
            feedback_id=decision.feedback_id,
            cycle_number=report.cycle_number,
            phase=report.phase,
            priority=decision.priority,
            component=decision.suggested_owner or "platform-team",
            description=decision.rationale,
            estimated_effort=_effort_for_hours(decision.estimated_resolution_hours),
            suggested_fix=f"Address: {decision.rationale}",
            assigned_to=decision.suggested_owner,
        ))

    return sorted(patches, key=attrgetter("priority"))
