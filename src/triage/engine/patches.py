"""Patch lifecycle: tracks patches from triage to resolution.

pending -> in_progress -> review -> testing -> completed, with blocked,
wont_fix and deferred reachable from any open state. Transitions are not
restricted; every one is appended to the patch's status history. Leaving
completed counts as a reopen and clears verification.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from triage.engine.models import (
    TERMINAL_PATCH_STATUSES,
    BuildPhase,
    Effort,
    PatchItem,
    PatchStatus,
    TriageDecision,
    TriageReport,
    to_jsonable,
)
from triage.engine.persistence import FeedbackSink
from triage.engine.store import RecordStore
from triage.errors import PersistenceError

logger = logging.getLogger(__name__)

EFFORT_HOURS = {
    Effort.TRIVIAL: 0.5,
    Effort.SMALL: 2,
    Effort.MEDIUM: 4,
    Effort.LARGE: 8,
    Effort.XLARGE: 16,
}

VELOCITY_WINDOWS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "sprint": timedelta(days=14),
}

DEFAULT_COMPONENT = "platform"


@dataclass
class StatusChange:
    status: PatchStatus
    timestamp: datetime
    changed_by: str | None = None
    note: str | None = None


@dataclass
class PatchResolution:
    approach: str
    files_changed: list[str] = field(default_factory=list)
    lines_added: int = 0
    lines_removed: int = 0


@dataclass
class ManagedPatch:
    """A patch tracked through its lifecycle"""
    id: str
    feedback_id: str
    cycle_number: int
    phase: BuildPhase
    priority: int
    component: str
    description: str
    estimated_effort: Effort
    suggested_fix: str
    status: PatchStatus
    status_history: list[StatusChange]
    assigned_to: str | None = None
    assigned_at: datetime | None = None
    resolution: PatchResolution | None = None
    branch_name: str | None = None
    pull_request_url: str | None = None
    commit_hash: str | None = None
    build_version: str | None = None
    merged_at: datetime | None = None
    verified: bool = False
    verified_by: str | None = None
    verified_at: datetime | None = None
    time_to_resolution: float | None = None  # Hours from creation to completion
    reopen_count: int = 0

    @property
    def created_at(self) -> datetime:
        return self.status_history[0].timestamp

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PATCH_STATUSES

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass
class PatchQueueSummary:
    total_patches: int
    by_status: dict[PatchStatus, int]
    by_priority: dict[str, int]
    by_component: dict[str, int]
    average_age: float  # Hours
    estimated_total_hours: float
    oldest_patch: ManagedPatch | None = None


@dataclass
class PatchVelocity:
    period: str  # "day" | "week" | "sprint"
    created: int
    completed: int
    net_change: int
    average_resolution_time: float
    trend: str  # "accelerating" | "stable" | "slowing"


def priority_band(priority: int) -> str:
    """Map a triage priority onto its severity band"""
    if priority < 100:
        return "critical"
    if priority < 200:
        return "high"
    if priority < 300:
        return "medium"
    return "low"


def effort_from_hours(hours: float) -> Effort:
    if hours <= 0.5:
        return Effort.TRIVIAL
    if hours <= 2:
        return Effort.SMALL
    if hours <= 4:
        return Effort.MEDIUM
    if hours <= 8:
        return Effort.LARGE
    return Effort.XLARGE


class PatchManager:
    """Owns managed patches and their state machine"""

    def __init__(
        self,
        sink: FeedbackSink | None = None,
        store: RecordStore[ManagedPatch] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.sink = sink
        self.patches: RecordStore[ManagedPatch] = store if store is not None else RecordStore()
        self.failed_events: list[dict[str, Any]] = []
        self._clock = clock

    def import_from_triage(self, report: TriageReport) -> list[ManagedPatch]:
        """Create pending patches for every blocker and parallel patch"""
        imported = [
            self._patch_from_decision(report, decision, f"CRITICAL: {decision.rationale}")
            for decision in report.blocker_queue
        ]
        imported.extend(
            self._patch_from_decision(report, decision, decision.rationale)
            for decision in report.patch_queue
        )
        logger.debug("Imported %d patch(es) from cycle %d", len(imported), report.cycle_number)
        return sorted(imported, key=lambda p: p.priority)

    def _patch_from_decision(
        self, report: TriageReport, decision: TriageDecision, suggested_fix: str
    ) -> ManagedPatch:
        return self.create_patch(PatchItem(
            id=f"patch-{decision.feedback_id}",
            feedback_id=decision.feedback_id,
            cycle_number=report.cycle_number,
            phase=report.phase,
            priority=decision.priority,
            component=decision.suggested_owner or DEFAULT_COMPONENT,
            description=decision.rationale,
            estimated_effort=effort_from_hours(decision.estimated_resolution_hours),
            suggested_fix=suggested_fix,
            assigned_to=decision.suggested_owner,
        ))

    def create_patch(self, item: PatchItem) -> ManagedPatch:
        """Start tracking a patch; it always begins pending.

        An id that is already tracked returns the existing patch unchanged.
        """
        existing = self.patches.get(item.id)
        if existing is not None:
            logger.debug("Patch %s already tracked", item.id)
            return existing

        patch = ManagedPatch(
            id=item.id,
            feedback_id=item.feedback_id,
            cycle_number=item.cycle_number,
            phase=item.phase,
            priority=item.priority,
            component=item.component,
            description=item.description,
            estimated_effort=item.estimated_effort,
            suggested_fix=item.suggested_fix,
            assigned_to=item.assigned_to,
            commit_hash=item.commit_hash,
            build_version=item.build_version,
            status=PatchStatus.PENDING,
            status_history=[StatusChange(
                status=PatchStatus.PENDING,
                timestamp=self._clock(),
                note="Created from triage",
            )],
        )
        return self.patches.put(patch)

    def update_status(
        self,
        patch_id: str,
        new_status: PatchStatus,
        changed_by: str | None = None,
        note: str | None = None,
    ) -> ManagedPatch | None:
        """Move a patch to a new status; None if the id is unknown"""
        patch = self.patches.get(patch_id)
        if patch is None:
            return None

        now = self._clock()
        patch.status_history.append(StatusChange(
            status=new_status, timestamp=now, changed_by=changed_by, note=note
        ))

        old_status = patch.status
        patch.status = new_status

        if old_status == PatchStatus.COMPLETED and new_status != PatchStatus.COMPLETED:
            patch.reopen_count += 1
            patch.verified = False

        if new_status == PatchStatus.COMPLETED and old_status != PatchStatus.COMPLETED:
            patch.time_to_resolution = (now - patch.created_at).total_seconds() / 3600

        logger.debug("Patch %s: %s -> %s", patch_id, old_status.value, new_status.value)
        self._log_event(patch, "status_change", {
            "old_status": old_status.value,
            "new_status": new_status.value,
            "changed_by": changed_by,
            "note": note,
        })
        return patch

    def assign(
        self,
        patch_id: str,
        assignee: str,
        changed_by: str | None = None,
    ) -> ManagedPatch | None:
        """Assign a patch; pending patches move to in_progress"""
        patch = self.patches.get(patch_id)
        if patch is None:
            return None

        patch.assigned_to = assignee
        patch.assigned_at = self._clock()

        if patch.status == PatchStatus.PENDING:
            self.update_status(patch_id, PatchStatus.IN_PROGRESS, changed_by, f"Assigned to {assignee}")

        self._log_event(patch, "assigned", {"assignee": assignee})
        return patch

    def link_pull_request(self, patch_id: str, pr_url: str, branch_name: str) -> ManagedPatch | None:
        """Attach a pull request and move the patch to review"""
        patch = self.patches.get(patch_id)
        if patch is None:
            return None

        patch.pull_request_url = pr_url
        patch.branch_name = branch_name

        self.update_status(patch_id, PatchStatus.REVIEW, note=f"PR: {pr_url}")
        self._log_event(patch, "pr_linked", {"pr_url": pr_url, "branch_name": branch_name})
        return patch

    def mark_merged(
        self,
        patch_id: str,
        commit_hash: str,
        build_version: str | None = None,
    ) -> ManagedPatch | None:
        """Record the merge commit and move the patch to testing"""
        patch = self.patches.get(patch_id)
        if patch is None:
            return None

        patch.commit_hash = commit_hash
        patch.build_version = build_version
        patch.merged_at = self._clock()

        self.update_status(patch_id, PatchStatus.TESTING, note=f"Merged: {commit_hash}")
        self._log_event(patch, "merged", {"commit_hash": commit_hash, "build_version": build_version})
        return patch

    def verify(
        self,
        patch_id: str,
        verified_by: str,
        passed: bool,
        notes: str | None = None,
    ) -> ManagedPatch | None:
        """Complete a patch if verification passed, else send it back"""
        patch = self.patches.get(patch_id)
        if patch is None:
            return None

        if passed:
            patch.verified = True
            patch.verified_by = verified_by
            patch.verified_at = self._clock()
            self.update_status(patch_id, PatchStatus.COMPLETED, verified_by, notes or "Verified")
        else:
            self.update_status(
                patch_id, PatchStatus.IN_PROGRESS, verified_by, f"Verification failed: {notes}"
            )

        self._log_event(patch, "verified", {"passed": passed, "verified_by": verified_by, "notes": notes})
        return patch

    def record_resolution(
        self,
        patch_id: str,
        approach: str,
        files_changed: list[str] | None = None,
        lines_added: int = 0,
        lines_removed: int = 0,
    ) -> ManagedPatch | None:
        """Attach resolution details without changing status"""
        patch = self.patches.get(patch_id)
        if patch is None:
            return None

        patch.resolution = PatchResolution(
            approach=approach,
            files_changed=list(files_changed or []),
            lines_added=lines_added,
            lines_removed=lines_removed,
        )
        self._log_event(patch, "resolution_recorded", to_jsonable(patch.resolution))
        return patch

    def get_patch(self, patch_id: str) -> ManagedPatch | None:
        return self.patches.get(patch_id)

    def get_patches(
        self,
        status: PatchStatus | None = None,
        component: str | None = None,
        assigned_to: str | None = None,
        cycle_number: int | None = None,
        phase: BuildPhase | None = None,
    ) -> list[ManagedPatch]:
        """Filtered patches, most urgent first"""
        patches = self.patches.values()

        if status is not None:
            patches = [p for p in patches if p.status == status]
        if component is not None:
            patches = [p for p in patches if p.component == component]
        if assigned_to is not None:
            patches = [p for p in patches if p.assigned_to == assigned_to]
        if cycle_number is not None:
            patches = [p for p in patches if p.cycle_number == cycle_number]
        if phase is not None:
            patches = [p for p in patches if p.phase == phase]

        return sorted(patches, key=lambda p: p.priority)

    def get_build_blockers(self) -> list[ManagedPatch]:
        """Open patches in the critical priority band"""
        return [p for p in self.get_patches() if p.priority < 100 and not p.is_terminal]

    def get_queue_summary(self) -> PatchQueueSummary:
        patches = self.patches.values()
        now = self._clock()

        by_status = {status: 0 for status in PatchStatus}
        by_priority = {"critical": 0, "high": 0, "medium": 0, "low": 0}
        by_component: dict[str, int] = {}

        total_age = 0.0
        oldest: ManagedPatch | None = None
        oldest_age = -1.0
        remaining_hours = 0.0

        for patch in patches:
            by_status[patch.status] += 1
            by_priority[priority_band(patch.priority)] += 1
            by_component[patch.component] = by_component.get(patch.component, 0) + 1

            age = (now - patch.created_at).total_seconds() / 3600
            total_age += age
            if age > oldest_age:
                oldest_age = age
                oldest = patch

            if not patch.is_terminal:
                remaining_hours += EFFORT_HOURS[patch.estimated_effort]

        return PatchQueueSummary(
            total_patches=len(patches),
            by_status=by_status,
            by_priority=by_priority,
            by_component=by_component,
            average_age=total_age / len(patches) if patches else 0.0,
            oldest_patch=oldest,
            estimated_total_hours=remaining_hours,
        )

    def get_velocity(self, period: str = "week") -> PatchVelocity:
        """Patches created versus completed within the window"""
        if period not in VELOCITY_WINDOWS:
            raise ValueError(f"Unknown velocity period: {period}")

        patches = self.patches.values()
        cutoff = self._clock() - VELOCITY_WINDOWS[period]

        created = sum(1 for p in patches if p.created_at > cutoff)
        completed = 0
        for patch in patches:
            entry = next(
                (h for h in patch.status_history if h.status == PatchStatus.COMPLETED), None
            )
            if entry is not None and entry.timestamp > cutoff:
                completed += 1

        resolved = [
            p.time_to_resolution for p in patches
            if p.status == PatchStatus.COMPLETED and p.time_to_resolution is not None
        ]
        average_resolution = sum(resolved) / len(resolved) if resolved else 0.0

        net_change = completed - created
        if net_change > 2:
            trend = "accelerating"
        elif net_change < -2:
            trend = "slowing"
        else:
            trend = "stable"

        return PatchVelocity(
            period=period,
            created=created,
            completed=completed,
            net_change=net_change,
            average_resolution_time=average_resolution,
            trend=trend,
        )

    def _log_event(self, patch: ManagedPatch, event_type: str, data: dict[str, Any]) -> None:
        """Send a patch event to the sink; failures are kept, never raised"""
        if self.sink is None:
            return

        event = {
            "event_type": f"patch_{event_type}",
            "input_data": {
                "patch_id": patch.id,
                "feedback_id": patch.feedback_id,
                "component": patch.component,
            },
            "output_data": data,
            "outcome": patch.status.value,
            "metadata": {
                "cycle_number": patch.cycle_number,
                "phase": patch.phase.value,
                "priority": patch.priority,
            },
        }
        try:
            self.sink.record_patch_event(event)
        except PersistenceError as e:
            logger.warning("Failed to log %s for %s: %s", event["event_type"], patch.id, e)
            self.failed_events.append(event)
