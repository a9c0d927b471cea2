"""Build cycle: feedback collection and the proceed gate for one cycle.

BUILD -> TEST -> ANALYZE -> REPORT -> TRIAGE -> PATCH -> (repeat)

This is the coarse pass. Destinations come straight from the raw severity,
without escalation rules, so an item can land in a different queue here
than in the TriageSystem pass, which is authoritative.
"""
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from operator import attrgetter
from typing import Any

from pydantic import BaseModel, Field

from triage.config.schema import CycleSettings
from triage.engine.models import (
    BuildPhase,
    Category,
    CycleResult,
    CycleStatus,
    Destination,
    Effort,
    FeedbackItem,
    FeedbackStatus,
    PatchItem,
    Severity,
    next_phase,
)
from triage.engine.persistence import FeedbackSink, PersistenceFailure, PersistenceReport
from triage.errors import PersistenceError

logger = logging.getLogger(__name__)


class BuildCycleConfig(BaseModel):
    """Configuration for one build cycle."""

    cycle_number: int = Field(ge=0)
    phase: BuildPhase
    features: list[str] = Field(default_factory=list)
    target_components: list[str] = Field(default_factory=list)
    block_on_critical: bool = True
    parallel_patch_threshold: int = Field(default=5, ge=0)  # Max high issues before blocking


def create_phase_config(
    cycle_number: int,
    phase: BuildPhase | str,
    settings: CycleSettings | None = None,
    **overrides: Any,
) -> BuildCycleConfig:
    """Create a cycle config from the phase defaults plus overrides."""
    settings = settings or CycleSettings()
    phase = BuildPhase(phase)
    phase_settings = settings.for_phase(phase)

    values: dict[str, Any] = {
        "cycle_number": cycle_number,
        "phase": phase,
        "features": list(phase_settings.features),
        "target_components": list(phase_settings.target_components),
        "block_on_critical": settings.block_on_critical,
        "parallel_patch_threshold": phase_settings.parallel_patch_threshold,
    }
    values.update(overrides)
    return BuildCycleConfig(**values)


@dataclass(frozen=True)
class ProceedCheck:
    """Whether the cycle may move on to the next phase"""
    proceed: bool
    reason: str


class BuildCycle:
    """Collects feedback for one cycle and derives its result"""

    SEVERITY_WEIGHT = {
        Severity.CRITICAL: 0,
        Severity.HIGH: 10,
        Severity.MEDIUM: 20,
        Severity.LOW: 30,
    }
    CATEGORY_WEIGHT = {
        Category.SECURITY: 0,
        Category.COMPLIANCE: 1,
        Category.BUG: 2,
        Category.DATA_QUALITY: 3,
        Category.PERFORMANCE: 4,
        Category.UX_ISSUE: 5,
        Category.FEATURE_GAP: 6,
    }

    def __init__(
        self,
        config: BuildCycleConfig,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self._clock = clock
        self._feedback: list[FeedbackItem] = []
        self._patches: list[PatchItem] = []
        self.started_at = clock()

    @classmethod
    def calculate_priority(cls, severity: Severity, category: Category) -> int:
        """Coarse cycle-level priority, lower is more urgent"""
        return cls.SEVERITY_WEIGHT[severity] + cls.CATEGORY_WEIGHT[category]

    def add_feedback(
        self,
        agent_source: str,
        task_type: str,
        category: Category | str,
        severity: Severity | str,
        description: str,
        expected_behavior: str = "",
        actual_behavior: str = "",
        reproduction_steps: list[str] | None = None,
        input_data: dict[str, Any] | None = None,
        output_data: dict[str, Any] | None = None,
        status: FeedbackStatus | str = FeedbackStatus.OPEN,
        prevention_strategy: str | None = None,
        added_to_test_suite: bool = False,
    ) -> FeedbackItem:
        """Record feedback from a self-test.

        Critical and high items also get a patch immediately.
        """
        item = FeedbackItem(
            id=f"fb-{self.config.cycle_number}-{uuid.uuid4().hex[:12]}",
            cycle_number=self.config.cycle_number,
            phase=self.config.phase,
            agent_source=agent_source,
            task_type=task_type,
            category=Category(category),
            severity=Severity(severity),
            description=description,
            expected_behavior=expected_behavior,
            actual_behavior=actual_behavior,
            reproduction_steps=list(reproduction_steps or []),
            input_data=dict(input_data or {}),
            output_data=dict(output_data or {}),
            status=FeedbackStatus(status),
            prevention_strategy=prevention_strategy,
            added_to_test_suite=added_to_test_suite,
            created_at=self._clock(),
        )
        self._feedback.append(item)

        if item.destination in (Destination.BUILD_BLOCKER, Destination.PARALLEL_PATCH):
            self._generate_patch(item)

        return item

    def add_feedback_items(self, items: Iterable[dict[str, Any]]) -> list[FeedbackItem]:
        """Record a batch of feedback given as keyword dicts"""
        return [self.add_feedback(**item) for item in items]

    def _generate_patch(self, feedback: FeedbackItem) -> PatchItem:
        patch = PatchItem(
            id=f"patch-{self.config.cycle_number}-{uuid.uuid4().hex[:12]}",
            feedback_id=feedback.id,
            cycle_number=self.config.cycle_number,
            phase=self.config.phase,
            priority=self.calculate_priority(feedback.severity, feedback.category),
            component=feedback.agent_source,
            description=feedback.description,
            estimated_effort=self._estimate_effort(feedback),
            suggested_fix=feedback.prevention_strategy or (
                f"Fix {feedback.category.value} in {feedback.agent_source}: {feedback.description}"
            ),
        )
        self._patches.append(patch)
        return patch

    def _estimate_effort(self, feedback: FeedbackItem) -> Effort:
        if feedback.category == Category.BUG:
            return Effort.MEDIUM if feedback.severity == Severity.CRITICAL else Effort.SMALL
        if feedback.category in (Category.PERFORMANCE, Category.SECURITY, Category.COMPLIANCE):
            return Effort.MEDIUM
        if feedback.category == Category.FEATURE_GAP:
            return Effort.LARGE
        return Effort.SMALL

    def resolve_feedback(
        self,
        feedback_id: str,
        resolution: str,
        patched_in_cycle: int | None = None,
    ) -> FeedbackItem | None:
        """Mark an item resolved; None if the id is unknown"""
        for item in self._feedback:
            if item.id == feedback_id:
                item.status = FeedbackStatus.RESOLVED
                item.resolution = resolution
                item.patched_in_cycle = patched_in_cycle
                item.resolved_at = self._clock()
                return item
        return None

    def aggregate_feedback(self) -> tuple[dict[Severity, int], dict[Category, int], dict[Destination, int]]:
        """Count feedback by severity, category and destination"""
        by_severity = {severity: 0 for severity in Severity}
        by_category = {category: 0 for category in Category}
        by_destination = {destination: 0 for destination in Destination}

        for item in self._feedback:
            by_severity[item.severity] += 1
            by_category[item.category] += 1
            by_destination[item.destination] += 1
            by_destination[Destination.LEARNING_EVENT] += 1  # All go to learning

        return by_severity, by_category, by_destination

    def can_proceed(self) -> ProceedCheck:
        """Decide whether the cycle may move to the next phase"""
        critical_count = sum(1 for f in self._feedback if f.severity == Severity.CRITICAL)
        high_count = sum(1 for f in self._feedback if f.severity == Severity.HIGH)
        threshold = self.config.parallel_patch_threshold

        if self.config.block_on_critical and critical_count > 0:
            return ProceedCheck(
                proceed=False,
                reason=f"{critical_count} critical issue(s) must be fixed before proceeding",
            )

        if high_count > threshold:
            return ProceedCheck(
                proceed=False,
                reason=f"{high_count} high-priority issues exceed threshold ({threshold})",
            )

        if critical_count == 0 and high_count == 0:
            return ProceedCheck(proceed=True, reason="All tests passed")
        return ProceedCheck(proceed=True, reason=f"{high_count} patches to address in parallel")

    def next_phase(self) -> BuildPhase | None:
        return next_phase(self.config.phase)

    def generate_result(self, tests_run: int, tests_passed: int) -> CycleResult:
        """Fold test counts and feedback into the cycle result"""
        by_severity, by_category, by_destination = self.aggregate_feedback()
        check = self.can_proceed()

        completed_at = self._clock()
        health_score = (tests_passed / tests_run) * 100 if tests_run > 0 else 0.0

        patches = sorted(self._patches, key=attrgetter("priority"))
        build_blockers = [
            f.description for f in self._feedback if f.destination == Destination.BUILD_BLOCKER
        ]

        if not check.proceed:
            status = CycleStatus.BLOCKED
            recommendation = (
                f"BLOCKED: {check.reason}. Fix {by_severity[Severity.CRITICAL]} "
                f"critical issue(s) before proceeding."
            )
        elif patches:
            status = CycleStatus.NEEDS_PATCHES
            recommendation = (
                f"CAN PROCEED with {len(patches)} patches to address in parallel. {check.reason}"
            )
        else:
            status = CycleStatus.PASSED
            recommendation = "All tests passed. Ready for next phase."

        logger.debug("Cycle %d finished with status %s", self.config.cycle_number, status.value)

        return CycleResult(
            cycle_number=self.config.cycle_number,
            phase=self.config.phase,
            status=status,
            health_score=health_score,
            tests_run=tests_run,
            tests_passed=tests_passed,
            tests_failed=tests_run - tests_passed,
            feedback_items=list(self._feedback),
            by_severity=by_severity,
            by_category=by_category,
            by_destination=by_destination,
            patches=patches,
            build_blockers=build_blockers,
            recommendation=recommendation,
            can_proceed=check.proceed,
            next_phase=self.next_phase() if check.proceed else None,
            started_at=self.started_at,
            completed_at=completed_at,
            duration_ms=int((completed_at - self.started_at).total_seconds() * 1000),
        )

    def log_learning_events(self, sink: FeedbackSink) -> PersistenceReport:
        """Record every feedback item as a learning event (best effort)"""
        phase = self.config.phase.value
        return self._persist(sink.record_learning_event, [
            (item.id, {
                "event_type": f"feedback_{phase}",
                "input_data": item.input_data,
                "output_data": {
                    **item.output_data,
                    "feedback": {
                        "severity": item.severity.value,
                        "category": item.category.value,
                        "destination": item.destination.value,
                    },
                },
                "outcome": item.status.value,
                "metadata": {
                    "cycle_number": self.config.cycle_number,
                    "phase": phase,
                    "agent_source": item.agent_source,
                    "task_type": item.task_type,
                    "description": item.description,
                },
            })
            for item in self._feedback
        ])

    def persist_feedback(self, sink: FeedbackSink) -> PersistenceReport:
        """Store every feedback item in the feedback log (best effort)"""
        scenario_id = f"cycle-{self.config.cycle_number}-{self.config.phase.value}"
        return self._persist(sink.record_feedback, [
            (item.id, {
                "source_type": "build_cycle",
                "feedback_id": item.id,
                "agent_id": item.agent_source,
                "task_type": item.task_type,
                "scenario_id": scenario_id,
                "execution_input": item.input_data,
                "execution_output": item.output_data,
                "execution_success": item.status != FeedbackStatus.OPEN,
                "category": item.category.value,
                "severity": item.severity.value,
                "description": item.description,
                "expected_behavior": item.expected_behavior,
                "actual_behavior": item.actual_behavior,
                "resolution_status": item.status.value,
                "compliance_risk": item.category == Category.COMPLIANCE,
                "data_integrity_risk": item.category == Category.DATA_QUALITY,
                "security_risk": item.category == Category.SECURITY,
            })
            for item in self._feedback
        ])

    def _persist(
        self,
        write: Callable[[dict[str, Any]], None],
        records: list[tuple[str, dict[str, Any]]],
    ) -> PersistenceReport:
        report = PersistenceReport()
        for record_id, record in records:
            report.attempted += 1
            try:
                write(record)
            except PersistenceError as e:
                logger.warning("Failed to persist %s: %s", record_id, e)
                report.failures.append(PersistenceFailure(record_id=record_id, error=str(e)))
            else:
                report.written += 1
        return report

    def get_feedback(self) -> list[FeedbackItem]:
        return list(self._feedback)

    def get_patches(self) -> list[PatchItem]:
        return list(self._patches)
