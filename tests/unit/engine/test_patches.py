"""Tests for the patch lifecycle manager"""
import pytest

from triage.engine.models import BuildPhase, Category, Effort, PatchItem, PatchStatus, Severity
from triage.engine.patches import PatchManager, effort_from_hours, priority_band
from triage.engine.persistence import FeedbackSink
from triage.engine.triage import TriageSystem
from triage.errors import PersistenceError


class EventSink(FeedbackSink):
    """Collects patch events; optionally fails every write."""

    def __init__(self, fail=False):
        self.fail = fail
        self.events = []

    def record_learning_event(self, event):
        pass

    def record_feedback(self, record):
        pass

    def record_patch_event(self, event):
        if self.fail:
            raise PersistenceError("sink offline")
        self.events.append(event)


@pytest.fixture
def manager(clock):
    return PatchManager(clock=clock)


def _patch_item(patch_id="patch-1", priority=110, component="platform-team", effort=Effort.SMALL, **kwargs):
    values = {
        "id": patch_id,
        "feedback_id": f"fb-{patch_id}",
        "cycle_number": 1,
        "phase": BuildPhase.API_ROUTES,
        "priority": priority,
        "component": component,
        "description": "Validation skipped on PATCH",
        "estimated_effort": effort,
        "suggested_fix": "Validate request body",
    }
    values.update(kwargs)
    return PatchItem(**values)


@pytest.mark.parametrize("hours,effort", [
    (0.5, Effort.TRIVIAL),
    (1, Effort.SMALL),
    (2, Effort.SMALL),
    (4, Effort.MEDIUM),
    (8, Effort.LARGE),
    (16, Effort.XLARGE),
])
def test_effort_from_hours(hours, effort):
    """Test hour estimates map onto effort sizes"""
    assert effort_from_hours(hours) == effort


@pytest.mark.parametrize("priority,band", [
    (0, "critical"), (99, "critical"), (100, "high"), (199, "high"),
    (200, "medium"), (299, "medium"), (300, "low"), (999, "low"),
])
def test_priority_band(priority, band):
    """Test priority bands follow the triage scale"""
    assert priority_band(priority) == band


def test_scenario_c_import_from_triage(scenario_a_batch, manager):
    """Test importing one blocker and two patches yields three pending patches"""
    report = TriageSystem().triage_all(scenario_a_batch, 1, BuildPhase.AGENT_INTEGRATION)

    patches = manager.import_from_triage(report)

    assert len(patches) == 3
    assert len(manager.patches) == 3
    assert all(p.status == PatchStatus.PENDING for p in patches)
    assert [p.priority for p in patches] == sorted(p.priority for p in patches)
    assert patches[0].id == f"patch-{scenario_a_batch[0].id}"
    assert patches[0].suggested_fix.startswith("CRITICAL: ")
    assert patches[0].component == "compliance-team"
    assert patches[0].estimated_effort == Effort.MEDIUM
    assert patches[1].estimated_effort == Effort.SMALL


def test_import_component_fallback(make_feedback, manager):
    """Test agents without an owner fall back to the platform component"""
    item = make_feedback("UNKNOWN", Category.BUG, Severity.HIGH, "Odd agent")
    report = TriageSystem().triage_all([item], 1, BuildPhase.API_ROUTES)

    patch = manager.import_from_triage(report)[0]

    assert patch.component == "platform"
    assert patch.assigned_to is None


def test_create_patch_starts_history(manager, clock):
    """Test new patches are pending with one history entry"""
    patch = manager.create_patch(_patch_item(status=PatchStatus.REVIEW))

    assert patch.status == PatchStatus.PENDING
    assert len(patch.status_history) == 1
    assert patch.status_history[0].note == "Created from triage"
    assert patch.created_at == clock.now


def test_unknown_patch_returns_none(manager):
    """Test every operation reports unknown ids with None"""
    assert manager.get_patch("missing") is None
    assert manager.update_status("missing", PatchStatus.REVIEW) is None
    assert manager.assign("missing", "dev") is None
    assert manager.link_pull_request("missing", "url", "branch") is None
    assert manager.mark_merged("missing", "abc123") is None
    assert manager.verify("missing", "qa", True) is None
    assert manager.record_resolution("missing", "approach") is None


def test_assign_advances_pending(manager, clock):
    """Test assigning a pending patch starts work on it"""
    manager.create_patch(_patch_item())
    clock.advance(minutes=5)

    patch = manager.assign("patch-1", "dana", changed_by="lead")

    assert patch.assigned_to == "dana"
    assert patch.assigned_at == clock.now
    assert patch.status == PatchStatus.IN_PROGRESS
    assert patch.status_history[-1].note == "Assigned to dana"
    assert patch.status_history[-1].changed_by == "lead"


def test_assign_keeps_non_pending_status(manager):
    """Test reassigning does not move a patch under review"""
    manager.create_patch(_patch_item())
    manager.update_status("patch-1", PatchStatus.REVIEW)

    patch = manager.assign("patch-1", "sam")

    assert patch.status == PatchStatus.REVIEW
    assert len(patch.status_history) == 2


def test_full_lifecycle(manager, clock):
    """Test the conventional flow from pending to completed"""
    manager.create_patch(_patch_item())
    manager.assign("patch-1", "dana")
    manager.link_pull_request("patch-1", "https://git.example.com/pr/42", "fix/validation")
    manager.mark_merged("patch-1", "abc123", build_version="1.4.0")
    clock.advance(hours=3)

    patch = manager.verify("patch-1", "qa-bot", passed=True)

    assert [h.status for h in patch.status_history] == [
        PatchStatus.PENDING,
        PatchStatus.IN_PROGRESS,
        PatchStatus.REVIEW,
        PatchStatus.TESTING,
        PatchStatus.COMPLETED,
    ]
    assert patch.pull_request_url == "https://git.example.com/pr/42"
    assert patch.branch_name == "fix/validation"
    assert patch.commit_hash == "abc123"
    assert patch.build_version == "1.4.0"
    assert patch.verified is True
    assert patch.verified_by == "qa-bot"
    assert patch.verified_at == clock.now
    assert patch.is_terminal


def test_failed_verification_returns_to_work(manager):
    """Test a failed verification sends the patch back to in_progress"""
    manager.create_patch(_patch_item())
    manager.update_status("patch-1", PatchStatus.TESTING)

    patch = manager.verify("patch-1", "qa-bot", passed=False, notes="regression in export")

    assert patch.status == PatchStatus.IN_PROGRESS
    assert patch.verified is False
    assert patch.status_history[-1].note == "Verification failed: regression in export"


def test_scenario_d_time_to_resolution(manager, clock):
    """Test time to resolution is the elapsed hours since creation"""
    manager.create_patch(_patch_item())
    clock.advance(hours=5, minutes=30)

    patch = manager.update_status("patch-1", PatchStatus.COMPLETED)

    assert patch.time_to_resolution == pytest.approx(5.5)
    assert patch.reopen_count == 0


def test_reopen_increments_once_and_clears_verification(manager, clock):
    """Test leaving completed counts a reopen and clears verification"""
    manager.create_patch(_patch_item())
    clock.advance(hours=2)
    manager.verify("patch-1", "qa-bot", passed=True)

    patch = manager.update_status("patch-1", PatchStatus.IN_PROGRESS, note="Bug came back")

    assert patch.reopen_count == 1
    assert patch.verified is False
    assert patch.time_to_resolution == pytest.approx(2.0)

    manager.update_status("patch-1", PatchStatus.REVIEW)
    manager.update_status("patch-1", PatchStatus.BLOCKED)
    assert patch.reopen_count == 1


def test_reimport_keeps_tracked_patch(scenario_a_batch, manager):
    """Test importing the same report twice does not reset tracked patches"""
    report = TriageSystem().triage_all(scenario_a_batch, 1, BuildPhase.AGENT_INTEGRATION)
    patch_id = manager.import_from_triage(report)[0].id
    manager.update_status(patch_id, PatchStatus.COMPLETED)
    manager.update_status(patch_id, PatchStatus.IN_PROGRESS)
    manager.update_status(patch_id, PatchStatus.COMPLETED)

    manager.import_from_triage(report)

    patch = manager.get_patch(patch_id)
    assert len(manager.patches) == 3
    assert patch.status == PatchStatus.COMPLETED
    assert patch.reopen_count == 1
    assert len(patch.status_history) == 4


def test_completed_again_keeps_resolution_time(manager, clock):
    """Test a repeated completed status does not move the resolution time"""
    manager.create_patch(_patch_item())
    clock.advance(hours=3)
    manager.update_status("patch-1", PatchStatus.COMPLETED)
    clock.advance(hours=4)

    patch = manager.update_status("patch-1", PatchStatus.COMPLETED)

    assert patch.time_to_resolution == pytest.approx(3.0)
    assert patch.reopen_count == 0


def test_transitions_are_permissive(manager):
    """Test unconventional transitions are accepted and recorded"""
    manager.create_patch(_patch_item())

    patch = manager.update_status("patch-1", PatchStatus.COMPLETED, changed_by="admin")

    assert patch.status == PatchStatus.COMPLETED
    assert patch.status_history[-1].changed_by == "admin"


def test_record_resolution(manager):
    """Test resolution details are attached without a transition"""
    manager.create_patch(_patch_item())

    patch = manager.record_resolution(
        "patch-1", "Added schema validation", files_changed=["api/routes.py"], lines_added=12, lines_removed=3
    )

    assert patch.resolution.approach == "Added schema validation"
    assert patch.resolution.files_changed == ["api/routes.py"]
    assert patch.status == PatchStatus.PENDING


def test_get_patches_filters(manager):
    """Test filtering by status, component, assignee, cycle and phase"""
    manager.create_patch(_patch_item("p-1", priority=210, component="geo-team"))
    manager.create_patch(_patch_item("p-2", priority=10, component="geo-team", cycle_number=2))
    manager.create_patch(_patch_item("p-3", priority=110, component="hr-team", phase=BuildPhase.UI_COMPONENTS))
    manager.assign("p-3", "sam")

    assert [p.id for p in manager.get_patches()] == ["p-2", "p-3", "p-1"]
    assert [p.id for p in manager.get_patches(component="geo-team")] == ["p-2", "p-1"]
    assert [p.id for p in manager.get_patches(status=PatchStatus.IN_PROGRESS)] == ["p-3"]
    assert [p.id for p in manager.get_patches(assigned_to="sam")] == ["p-3"]
    assert [p.id for p in manager.get_patches(cycle_number=2)] == ["p-2"]
    assert [p.id for p in manager.get_patches(phase=BuildPhase.UI_COMPONENTS)] == ["p-3"]


def test_get_build_blockers(manager):
    """Test blockers are open patches in the critical band"""
    manager.create_patch(_patch_item("p-1", priority=10))
    manager.create_patch(_patch_item("p-2", priority=5))
    manager.create_patch(_patch_item("p-3", priority=120))
    manager.update_status("p-2", PatchStatus.WONT_FIX)

    assert [p.id for p in manager.get_build_blockers()] == ["p-1"]


def test_queue_summary_reconciles(manager, clock):
    """Test summary counts add up to the total"""
    manager.create_patch(_patch_item("p-1", priority=5, effort=Effort.LARGE))
    clock.advance(hours=2)
    manager.create_patch(_patch_item("p-2", priority=150, component="geo-team", effort=Effort.SMALL))
    manager.create_patch(_patch_item("p-3", priority=250, effort=Effort.XLARGE))
    manager.create_patch(_patch_item("p-4", priority=320, effort=Effort.TRIVIAL))
    manager.update_status("p-3", PatchStatus.COMPLETED)
    clock.advance(hours=1)

    summary = manager.get_queue_summary()

    assert summary.total_patches == 4
    assert sum(summary.by_status.values()) == summary.total_patches
    assert sum(summary.by_priority.values()) == summary.total_patches
    assert len(summary.by_status) == len(PatchStatus)
    assert summary.by_status[PatchStatus.PENDING] == 3
    assert summary.by_priority == {"critical": 1, "high": 1, "medium": 1, "low": 1}
    assert summary.by_component == {"platform-team": 3, "geo-team": 1}
    assert summary.oldest_patch.id == "p-1"
    assert summary.average_age == pytest.approx((3 + 1 + 1 + 1) / 4)
    assert summary.estimated_total_hours == 8 + 2 + 0.5


def test_empty_queue_summary(manager):
    """Test an empty manager summarizes to zeros"""
    summary = manager.get_queue_summary()

    assert summary.total_patches == 0
    assert summary.average_age == 0.0
    assert summary.oldest_patch is None
    assert summary.estimated_total_hours == 0


def test_velocity_window(manager, clock):
    """Test velocity counts creations and completions inside the window"""
    manager.create_patch(_patch_item("old"))
    clock.advance(days=10)
    for i in range(4):
        manager.create_patch(_patch_item(f"new-{i}"))
    clock.advance(hours=4)
    manager.update_status("old", PatchStatus.COMPLETED)
    manager.update_status("new-0", PatchStatus.COMPLETED)

    week = manager.get_velocity("week")
    sprint = manager.get_velocity("sprint")

    assert week.created == 4
    assert week.completed == 2
    assert week.net_change == -2
    assert week.trend == "stable"
    assert week.average_resolution_time == pytest.approx((244 + 4) / 2)
    assert sprint.created == 5
    assert sprint.trend == "slowing"


def test_velocity_accelerating(manager, clock):
    """Test completing old work faster than new arrives accelerates"""
    for i in range(3):
        manager.create_patch(_patch_item(f"p-{i}"))
    clock.advance(days=2)
    for i in range(3):
        manager.update_status(f"p-{i}", PatchStatus.COMPLETED)

    velocity = manager.get_velocity("day")

    assert velocity.created == 0
    assert velocity.completed == 3
    assert velocity.trend == "accelerating"


def test_velocity_unknown_period(manager):
    """Test unknown windows are rejected"""
    with pytest.raises(ValueError):
        manager.get_velocity("quarter")


def test_events_sent_to_sink(clock):
    """Test transitions emit patch events"""
    sink = EventSink()
    manager = PatchManager(sink=sink, clock=clock)
    manager.create_patch(_patch_item())

    manager.assign("patch-1", "dana")

    assert [e["event_type"] for e in sink.events] == ["patch_status_change", "patch_assigned"]
    assert sink.events[0]["output_data"]["new_status"] == "in_progress"
    assert sink.events[0]["input_data"]["patch_id"] == "patch-1"


def test_sink_failures_do_not_abort_transitions(clock):
    """Test failed event writes are kept and the transition still applies"""
    manager = PatchManager(sink=EventSink(fail=True), clock=clock)
    manager.create_patch(_patch_item())

    patch = manager.update_status("patch-1", PatchStatus.REVIEW)

    assert patch.status == PatchStatus.REVIEW
    assert len(manager.failed_events) == 1
    assert manager.failed_events[0]["event_type"] == "patch_status_change"


def test_managed_patch_to_dict(manager):
    """Test managed patches serialize with their history"""
    manager.create_patch(_patch_item())

    data = manager.get_patch("patch-1").to_dict()

    assert data["status"] == "pending"
    assert data["status_history"][0]["note"] == "Created from triage"
