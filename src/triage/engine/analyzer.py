"""Feedback analysis: agent health, cross-cycle trends and root causes.

Trends fit an ordinary least-squares line of a metric against cycle number
over the retained history. For count metrics (feedback, critical issues) a
rising line means the build is declining; for the health score a rising
line means it is improving.
"""
import logging
import math
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from triage.config.defaults import AGENT_ROSTER
from triage.config.schema import AnalysisSettings
from triage.engine.models import (
    BuildPhase,
    Category,
    CycleResult,
    FeedbackItem,
    FeedbackStatus,
    Severity,
    to_jsonable,
)
from triage.engine.patterns import (
    cluster_by_agent,
    cluster_by_category,
    cluster_by_keyword,
    group_by,
)

logger = logging.getLogger(__name__)


@dataclass
class TaskExecution:
    """One agent task execution observed by the host"""
    agent_id: str
    success: bool
    execution_time_ms: float = 0


@dataclass
class AgentMetrics:
    agent_id: str
    total_tasks: int
    successful_tasks: int
    failed_tasks: int
    success_rate: float
    avg_execution_time_ms: float
    p95_execution_time_ms: float
    feedback_count: int
    critical_count: int
    high_count: int
    health_score: float


@dataclass
class DataPoint:
    cycle: int
    value: float


@dataclass
class TrendAnalysis:
    metric: str
    direction: str  # "improving" | "stable" | "declining"
    current_value: float
    previous_value: float
    change_percent: float
    slope: float
    data_points: list[DataPoint]
    forecast: float
    confidence: float


@dataclass
class RootCauseAnalysis:
    root_cause_id: str
    description: str
    affected_items: list[str]
    likelihood: float
    evidence: list[str]
    suggested_fix: str
    estimated_impact: str  # "high" | "medium" | "low"


@dataclass
class Correlation:
    factor1: str
    factor2: str
    correlation: float
    description: str


@dataclass
class CycleComparison:
    previous_cycle: int
    feedback_delta: int
    health_delta: float
    new_issues_resolved: int
    recurring_issues: int


@dataclass
class FeedbackAnalysisReport:
    cycle_number: int
    phase: BuildPhase
    analyzed_at: datetime
    agent_metrics: list[AgentMetrics]
    overall_health_score: float
    trends: list[TrendAnalysis]
    root_causes: list[RootCauseAnalysis]
    correlations: list[Correlation] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)
    cycle_comparison: CycleComparison | None = None

    def to_dict(self) -> dict:
        return to_jsonable(self)


def percentile(values: list[float], p: float) -> float:
    """Nearest-rank percentile, 0 for no values"""
    if not values:
        return 0
    ordered = sorted(values)
    index = math.ceil((p / 100) * len(ordered)) - 1
    return ordered[max(0, index)]


def linear_regression(points: list[DataPoint]) -> tuple[float, float]:
    """Least-squares slope and intercept of value against cycle"""
    n = len(points)
    sum_x = sum(p.cycle for p in points)
    sum_y = sum(p.value for p in points)
    sum_xy = sum(p.cycle * p.value for p in points)
    sum_x2 = sum(p.cycle * p.cycle for p in points)

    denominator = n * sum_x2 - sum_x * sum_x
    slope = (n * sum_xy - sum_x * sum_y) / denominator if denominator else 0.0
    intercept = (sum_y - slope * sum_x) / n if n else 0.0
    return slope, intercept


class FeedbackAnalyzer:
    """Computes agent health, trends and root causes over feedback batches"""

    def __init__(
        self,
        settings: AnalysisSettings | None = None,
        agents: list[str] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings or AnalysisSettings()
        self.agents = list(agents or AGENT_ROSTER)
        self.history: deque[CycleResult] = deque(maxlen=self.settings.history_capacity)
        self._clock = clock

    def add_cycle_result(self, result: CycleResult) -> None:
        """Add a cycle to history; the oldest is evicted at capacity"""
        self.history.append(result)

    def load_history(self, results: list[CycleResult]) -> None:
        for result in results:
            self.add_cycle_result(result)

    def analyze(
        self,
        feedback_items: list[FeedbackItem],
        cycle_number: int,
        phase: BuildPhase,
        task_records: list[TaskExecution] | None = None,
    ) -> FeedbackAnalysisReport:
        """Analyze the current batch against history"""
        agent_metrics = self.calculate_agent_metrics(feedback_items, task_records or [])
        trends = self.analyze_trends(feedback_items, cycle_number)
        root_causes = self.analyze_root_causes(feedback_items)
        overall_health = self.calculate_overall_health(agent_metrics, feedback_items)

        return FeedbackAnalysisReport(
            cycle_number=cycle_number,
            phase=phase,
            analyzed_at=self._clock(),
            agent_metrics=agent_metrics,
            overall_health_score=overall_health,
            trends=trends,
            root_causes=root_causes,
            correlations=self.find_correlations(feedback_items),
            insights=self.generate_insights(agent_metrics, trends, root_causes, feedback_items),
            cycle_comparison=self.compare_to_previous_cycle(
                cycle_number, feedback_items, overall_health
            ),
        )

    def calculate_agent_metrics(
        self,
        feedback_items: list[FeedbackItem],
        task_records: list[TaskExecution],
    ) -> list[AgentMetrics]:
        """Per-agent health, least healthy first"""
        by_agent = group_by(feedback_items, lambda f: f.agent_source)
        tasks_by_agent: dict[str, list[TaskExecution]] = {}
        for task in task_records:
            tasks_by_agent.setdefault(task.agent_id.upper(), []).append(task)

        metrics = []
        for agent_id in self.agents:
            agent_feedback = by_agent.get(agent_id, [])
            tasks = tasks_by_agent.get(agent_id, [])

            total_tasks = len(tasks)
            successful = sum(1 for t in tasks if t.success)
            times = [t.execution_time_ms for t in tasks if t.execution_time_ms > 0]

            critical_count = sum(1 for f in agent_feedback if f.severity == Severity.CRITICAL)
            high_count = sum(1 for f in agent_feedback if f.severity == Severity.HIGH)
            health = 100 - 25 * critical_count - 10 * high_count - 2 * len(agent_feedback)

            metrics.append(AgentMetrics(
                agent_id=agent_id,
                total_tasks=total_tasks,
                successful_tasks=successful,
                failed_tasks=total_tasks - successful,
                success_rate=(successful / total_tasks) * 100 if total_tasks else 0.0,
                avg_execution_time_ms=sum(times) / len(times) if times else 0.0,
                p95_execution_time_ms=percentile(times, 95),
                feedback_count=len(agent_feedback),
                critical_count=critical_count,
                high_count=high_count,
                health_score=max(0, health),
            ))

        return sorted(metrics, key=lambda m: m.health_score)

    def analyze_trends(self, feedback_items: list[FeedbackItem], cycle_number: int) -> list[TrendAnalysis]:
        """Trends for feedback volume, critical issues and health score"""
        trends = []

        feedback_counts = [DataPoint(h.cycle_number, len(h.feedback_items)) for h in self.history]
        feedback_counts.append(DataPoint(cycle_number, len(feedback_items)))
        if len(feedback_counts) >= 2:
            trends.append(self.calculate_trend("Total Feedback Items", feedback_counts))

        critical_counts = [
            DataPoint(h.cycle_number, h.by_severity.get(Severity.CRITICAL, 0)) for h in self.history
        ]
        critical_counts.append(DataPoint(
            cycle_number, sum(1 for f in feedback_items if f.severity == Severity.CRITICAL)
        ))
        if len(critical_counts) >= 2:
            trends.append(self.calculate_trend("Critical Issues", critical_counts))

        # The current batch has no test-based health score yet
        health_scores = [DataPoint(h.cycle_number, h.health_score) for h in self.history]
        if len(health_scores) >= 2:
            trends.append(self.calculate_trend("Health Score", health_scores, higher_is_better=True))

        return trends

    def calculate_trend(
        self,
        metric: str,
        data_points: list[DataPoint],
        higher_is_better: bool = False,
    ) -> TrendAnalysis:
        """Fit a regression line and classify its direction"""
        n = len(data_points)
        current = data_points[-1].value if data_points else 0
        previous = data_points[-2].value if n >= 2 else 0
        change_percent = ((current - previous) / previous) * 100 if previous else 0.0

        slope, intercept = linear_regression(data_points) if n >= 2 else (0.0, current)
        next_cycle = data_points[-1].cycle + 1 if data_points else 1
        forecast = max(0.0, slope * next_cycle + intercept)

        if abs(slope) < self.settings.stable_slope:
            direction = "stable"
        elif (slope > 0) == higher_is_better:
            direction = "improving"
        else:
            direction = "declining"

        return TrendAnalysis(
            metric=metric,
            direction=direction,
            current_value=current,
            previous_value=previous,
            change_percent=change_percent,
            slope=slope,
            data_points=data_points[-self.settings.trend_window:],
            forecast=forecast,
            confidence=min(95, 50 + n * 5) if n >= 2 else 0,
        )

    def analyze_root_causes(self, feedback_items: list[FeedbackItem]) -> list[RootCauseAnalysis]:
        """Score agent, category and keyword clusters as likely root causes"""
        root_causes = []

        for agent, members in cluster_by_agent(feedback_items):
            root_causes.append(self._root_cause(
                f"agent-instability-{agent}",
                f"{agent} agent showing multiple issues",
                members,
                f"Review {agent} implementation and add integration tests",
            ))

        for category, members in cluster_by_category(feedback_items):
            root_causes.append(self._root_cause(
                f"systemic-{category}",
                f"Systemic {category} issues across agents",
                members,
                _CATEGORY_FIXES.get(category, f"Review {category} handling across codebase"),
            ))

        for keyword, members in cluster_by_keyword(feedback_items):
            root_causes.append(self._root_cause(
                f"pattern-{keyword}",
                f'Multiple "{keyword}" related issues',
                members,
                f'Investigate and fix "{keyword}" pattern across codebase',
            ))

        return sorted(root_causes, key=lambda r: r.likelihood, reverse=True)

    def _root_cause(
        self,
        root_cause_id: str,
        description: str,
        members: list[FeedbackItem],
        suggested_fix: str,
    ) -> RootCauseAnalysis:
        return RootCauseAnalysis(
            root_cause_id=root_cause_id,
            description=description,
            affected_items=[m.id for m in members],
            likelihood=min(95, 50 + 15 * len(members)),
            evidence=[m.description for m in members],
            suggested_fix=suggested_fix,
            estimated_impact=(
                "high" if any(m.severity == Severity.CRITICAL for m in members) else "medium"
            ),
        )

    def find_correlations(self, feedback_items: list[FeedbackItem]) -> list[Correlation]:
        """Agent/category and severity/category co-occurrence, strongest first"""
        correlations = []

        agent_category: dict[tuple[str, str], int] = {}
        severity_category: dict[tuple[str, str], int] = {}
        for item in feedback_items:
            key = (item.agent_source, item.category.value)
            agent_category[key] = agent_category.get(key, 0) + 1
            key = (item.severity.value, item.category.value)
            severity_category[key] = severity_category.get(key, 0) + 1

        for (agent, category), count in agent_category.items():
            if count >= 2:
                correlations.append(Correlation(
                    factor1=agent,
                    factor2=category,
                    correlation=min(0.95, count * 0.2),
                    description=f"{agent} frequently has {category} issues ({count} occurrences)",
                ))

        for (severity, category), count in severity_category.items():
            if count >= 3:
                correlations.append(Correlation(
                    factor1=severity,
                    factor2=category,
                    correlation=min(0.9, count * 0.15),
                    description=f"{category} issues tend to be {severity} severity",
                ))

        correlations.sort(key=lambda c: c.correlation, reverse=True)
        return correlations[:10]

    def generate_insights(
        self,
        agent_metrics: list[AgentMetrics],
        trends: list[TrendAnalysis],
        root_causes: list[RootCauseAnalysis],
        feedback_items: list[FeedbackItem],
    ) -> list[str]:
        insights = []

        unhealthy = [a for a in agent_metrics if a.health_score < self.settings.unhealthy_threshold]
        if unhealthy:
            insights.append(
                f"{len(unhealthy)} agent(s) below health threshold: "
                + ", ".join(a.agent_id for a in unhealthy)
            )

        critical_agent = next((a for a in agent_metrics if a.critical_count > 0), None)
        if critical_agent:
            insights.append(
                f"{critical_agent.agent_id} has {critical_agent.critical_count} critical issue(s)"
            )

        for trend in trends:
            if trend.metric == "Health Score" and trend.direction == "declining":
                insights.append(
                    f"Health score trending down: {trend.change_percent:.1f}% change"
                )
            if trend.metric == "Critical Issues" and trend.direction == "improving":
                insights.append(
                    f"Critical issues improving: {abs(trend.change_percent):.1f}% reduction"
                )

        high_impact = next(
            (r for r in root_causes if r.estimated_impact == "high" and r.likelihood > 70), None
        )
        if high_impact:
            insights.append(f"High-impact root cause identified: {high_impact.description}")

        if feedback_items:
            critical = sum(1 for f in feedback_items if f.severity == Severity.CRITICAL)
            critical_percent = critical / len(feedback_items) * 100
            if critical_percent > 20:
                insights.append(
                    f"{critical_percent:.0f}% of issues are critical - consider build pause"
                )

        slow = [a for a in agent_metrics if a.avg_execution_time_ms > 3000]
        if slow:
            insights.append("Slow agents detected: " + ", ".join(
                f"{a.agent_id} ({a.avg_execution_time_ms / 1000:.1f}s avg)" for a in slow
            ))

        perfect = [a for a in agent_metrics if a.health_score == 100]
        if perfect:
            insights.append("Perfect health: " + ", ".join(a.agent_id for a in perfect))

        return insights

    def compare_to_previous_cycle(
        self,
        cycle_number: int,
        feedback_items: list[FeedbackItem],
        overall_health: float,
    ) -> CycleComparison | None:
        previous = next((h for h in self.history if h.cycle_number == cycle_number - 1), None)
        if previous is None:
            return None

        previous_health = self.calculate_overall_health(
            self.calculate_agent_metrics(previous.feedback_items, []), previous.feedback_items
        )
        previous_descriptions = {f.description for f in previous.feedback_items}
        current_descriptions = {f.description for f in feedback_items}

        return CycleComparison(
            previous_cycle=previous.cycle_number,
            feedback_delta=len(feedback_items) - len(previous.feedback_items),
            health_delta=overall_health - previous_health,
            new_issues_resolved=sum(
                1 for f in previous.feedback_items if f.status == FeedbackStatus.RESOLVED
            ),
            recurring_issues=len(current_descriptions & previous_descriptions),
        )

    def calculate_overall_health(
        self,
        metrics: list[AgentMetrics],
        feedback_items: list[FeedbackItem],
    ) -> float:
        """Mean agent health less batch-wide critical and high penalties"""
        if not metrics:
            return 0.0
        average = sum(m.health_score for m in metrics) / len(metrics)
        critical = sum(1 for f in feedback_items if f.severity == Severity.CRITICAL)
        high = sum(1 for f in feedback_items if f.severity == Severity.HIGH)
        return max(0.0, min(100.0, average - critical * 10 - high * 5))


_CATEGORY_FIXES = {
    Category.PERFORMANCE.value: "Profile system, check database queries, review caching",
    Category.DATA_QUALITY.value: "Review data validation, add schema constraints",
}
