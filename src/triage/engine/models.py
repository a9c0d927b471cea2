"""Core data models for the feedback triage cycle."""
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class BuildPhase(str, Enum):
    """Named stages of the development pipeline, in build order."""

    DATABASE_FOUNDATION = "database_foundation"
    AGENT_INTEGRATION = "agent_integration"
    API_ROUTES = "api_routes"
    UI_COMPONENTS = "ui_components"
    EMPLOYEE_MANAGEMENT = "employee_management"
    CAPTURE_PIPELINE = "capture_pipeline"
    ANALYTICS_FORECASTING = "analytics_forecasting"
    AUDIT_DOCUMENTATION = "audit_documentation"
    PARTNERSHIP_FEATURES = "partnership_features"
    POLISH_PRODUCTION = "polish_production"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Category(str, Enum):
    BUG = "bug"
    UX_ISSUE = "ux_issue"
    PERFORMANCE = "performance"
    FEATURE_GAP = "feature_gap"
    DATA_QUALITY = "data_quality"
    SECURITY = "security"
    COMPLIANCE = "compliance"


class Destination(str, Enum):
    """Queue a feedback item is routed to."""

    BUILD_BLOCKER = "build_blocker"  # Must fix before proceeding
    PARALLEL_PATCH = "parallel_patch"  # Fix alongside the next phase
    BACKLOG = "backlog"  # Polish phase
    LEARNING_EVENT = "learning_event"  # Every item, counted only


class FeedbackStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    WONT_FIX = "wont_fix"
    DEFERRED = "deferred"


class CycleStatus(str, Enum):
    PASSED = "passed"
    BLOCKED = "blocked"
    NEEDS_PATCHES = "needs_patches"
    IN_PROGRESS = "in_progress"


class Effort(str, Enum):
    TRIVIAL = "trivial"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    XLARGE = "xlarge"


class PatchStatus(str, Enum):
    PENDING = "pending"  # Awaiting developer pickup
    IN_PROGRESS = "in_progress"
    REVIEW = "review"  # PR submitted
    TESTING = "testing"
    COMPLETED = "completed"  # Merged and verified
    BLOCKED = "blocked"
    WONT_FIX = "wont_fix"
    DEFERRED = "deferred"  # Moved to a future cycle


BUILD_PHASES: list[BuildPhase] = list(BuildPhase)

# Most urgent first
SEVERITY_ORDER: list[Severity] = [
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
]

TERMINAL_PATCH_STATUSES = {PatchStatus.COMPLETED, PatchStatus.WONT_FIX}


def severity_rank(severity: Severity) -> int:
    """Urgency rank of a severity; higher is more urgent."""
    return len(SEVERITY_ORDER) - SEVERITY_ORDER.index(severity)


def classify_destination(severity: Severity) -> Destination:
    """Route a severity to its queue.

    critical -> build_blocker, high -> parallel_patch, anything else -> backlog.
    """
    if severity == Severity.CRITICAL:
        return Destination.BUILD_BLOCKER
    if severity == Severity.HIGH:
        return Destination.PARALLEL_PATCH
    return Destination.BACKLOG


def next_phase(phase: BuildPhase) -> BuildPhase | None:
    """Successor of a phase, or None at the final phase."""
    index = BUILD_PHASES.index(phase)
    if index < len(BUILD_PHASES) - 1:
        return BUILD_PHASES[index + 1]
    return None


def to_jsonable(value: Any) -> Any:
    """Convert records, enums and timestamps into JSON-compatible values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {
            (k.value if isinstance(k, Enum) else k): to_jsonable(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return value


def _parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


@dataclass
class FeedbackItem:
    """One observed anomaly from a self-test or execution"""
    id: str
    cycle_number: int
    phase: BuildPhase
    agent_source: str
    task_type: str
    category: Category
    severity: Severity
    description: str
    expected_behavior: str = ""
    actual_behavior: str = ""
    reproduction_steps: list[str] = field(default_factory=list)
    input_data: dict[str, Any] = field(default_factory=dict)
    output_data: dict[str, Any] = field(default_factory=dict)
    status: FeedbackStatus = FeedbackStatus.OPEN
    resolution: str | None = None
    prevention_strategy: str | None = None
    patched_in_cycle: int | None = None
    added_to_test_suite: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    resolved_at: datetime | None = None

    @property
    def destination(self) -> Destination:
        """Coarse destination derived from the raw severity"""
        return classify_destination(self.severity)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization"""
        data = to_jsonable(self)
        data["destination"] = self.destination.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "FeedbackItem":
        """Load from dict"""
        data = {k: v for k, v in data.items() if k != "destination"}
        data["phase"] = BuildPhase(data["phase"])
        data["category"] = Category(data["category"])
        data["severity"] = Severity(data["severity"])
        data["status"] = FeedbackStatus(data.get("status", "open"))
        data["created_at"] = _parse_time(data.get("created_at")) or datetime.now()
        data["resolved_at"] = _parse_time(data.get("resolved_at"))
        return cls(**data)


@dataclass
class PatchItem:
    """Remediation work derived from a feedback item"""
    id: str
    feedback_id: str
    cycle_number: int
    phase: BuildPhase
    priority: int  # Lower is more urgent
    component: str
    description: str
    estimated_effort: Effort
    suggested_fix: str
    status: PatchStatus = PatchStatus.PENDING
    assigned_to: str | None = None
    completed_at: datetime | None = None
    commit_hash: str | None = None
    build_version: str | None = None

    def to_dict(self) -> dict:
        return to_jsonable(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PatchItem":
        data = dict(data)
        data["phase"] = BuildPhase(data["phase"])
        data["estimated_effort"] = Effort(data["estimated_effort"])
        data["status"] = PatchStatus(data.get("status", "pending"))
        data["completed_at"] = _parse_time(data.get("completed_at"))
        return cls(**data)


@dataclass
class CycleResult:
    """Summary of one build cycle"""
    cycle_number: int
    phase: BuildPhase
    status: CycleStatus
    health_score: float  # tests passed / tests run * 100
    tests_run: int
    tests_passed: int
    tests_failed: int
    feedback_items: list[FeedbackItem]
    by_severity: dict[Severity, int]
    by_category: dict[Category, int]
    by_destination: dict[Destination, int]
    patches: list[PatchItem]
    build_blockers: list[str]
    recommendation: str
    can_proceed: bool
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    next_phase: BuildPhase | None = None

    def to_dict(self) -> dict:
        data = to_jsonable(self)
        data["feedback_items"] = [item.to_dict() for item in self.feedback_items]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CycleResult":
        return cls(
            cycle_number=data["cycle_number"],
            phase=BuildPhase(data["phase"]),
            status=CycleStatus(data["status"]),
            health_score=data["health_score"],
            tests_run=data["tests_run"],
            tests_passed=data["tests_passed"],
            tests_failed=data["tests_failed"],
            feedback_items=[FeedbackItem.from_dict(f) for f in data["feedback_items"]],
            by_severity={Severity(k): v for k, v in data["by_severity"].items()},
            by_category={Category(k): v for k, v in data["by_category"].items()},
            by_destination={Destination(k): v for k, v in data["by_destination"].items()},
            patches=[PatchItem.from_dict(p) for p in data["patches"]],
            build_blockers=list(data["build_blockers"]),
            recommendation=data["recommendation"],
            can_proceed=data["can_proceed"],
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"]),
            duration_ms=data["duration_ms"],
            next_phase=BuildPhase(data["next_phase"]) if data.get("next_phase") else None,
        )


@dataclass(frozen=True)
class TriageDecision:
    """Verdict for one feedback item from a single triage pass"""
    feedback_id: str
    original_severity: Severity
    adjusted_severity: Severity
    priority: int  # Lower is more urgent
    destination: Destination
    rationale: str
    auto_escalated: bool
    estimated_resolution_hours: float
    blocks_others: bool
    escalation_reason: str | None = None
    suggested_owner: str | None = None
    dependencies: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass(frozen=True)
class IssuePattern:
    """A cluster of related feedback items"""
    pattern_id: str
    description: str
    affected_count: int
    affected_agents: tuple[str, ...]
    suggested_root_cause: str
    suggested_fix: str
    consolidated_priority: int

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass
class TriageReport:
    """Output of one triage pass"""
    cycle_number: int
    phase: BuildPhase
    timestamp: datetime
    total_issues: int
    build_blockers: int
    parallel_patches: int
    backlog_items: int
    auto_escalations: int
    escalation_reasons: list[str]
    blocker_queue: list[TriageDecision]
    patch_queue: list[TriageDecision]
    backlog_queue: list[TriageDecision]
    patterns: list[IssuePattern]
    recommendations: list[str]
    estimated_blocker_resolution_hours: float
    estimated_patch_resolution_hours: float

    def to_dict(self) -> dict:
        return to_jsonable(self)
