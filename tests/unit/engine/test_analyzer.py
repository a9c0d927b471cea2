"""Tests for the feedback analyzer"""
from datetime import datetime

import pytest

from triage.config.defaults import AGENT_ROSTER
from triage.config.schema import AnalysisSettings
from triage.engine.analyzer import (
    DataPoint,
    FeedbackAnalyzer,
    TaskExecution,
    linear_regression,
    percentile,
)
from triage.engine.models import (
    BuildPhase,
    Category,
    CycleResult,
    CycleStatus,
    Destination,
    FeedbackStatus,
    Severity,
)


@pytest.fixture
def make_history(make_feedback):
    """Factory for stored cycle results."""

    def _make(cycle_number, feedback_count=0, critical=0, health=100.0, items=None):
        if items is None:
            items = [
                make_feedback(
                    severity=Severity.CRITICAL if i < critical else Severity.LOW,
                    cycle_number=cycle_number,
                )
                for i in range(feedback_count)
            ]
        by_severity = {s: 0 for s in Severity}
        for item in items:
            by_severity[item.severity] += 1
        return CycleResult(
            cycle_number=cycle_number,
            phase=BuildPhase.API_ROUTES,
            status=CycleStatus.PASSED,
            health_score=health,
            tests_run=10,
            tests_passed=10,
            tests_failed=0,
            feedback_items=items,
            by_severity=by_severity,
            by_category={c: 0 for c in Category},
            by_destination={d: 0 for d in Destination},
            patches=[],
            build_blockers=[],
            recommendation="",
            can_proceed=True,
            started_at=datetime(2024, 1, 1),
            completed_at=datetime(2024, 1, 1),
            duration_ms=0,
        )

    return _make


def _points(values, start=1):
    return [DataPoint(cycle=start + i, value=v) for i, v in enumerate(values)]


def test_linear_regression_exact_line():
    """Test slope and intercept of a perfect line"""
    slope, intercept = linear_regression(_points([3, 5, 7, 9]))

    assert slope == pytest.approx(2.0)
    assert intercept == pytest.approx(1.0)


def test_linear_regression_single_cycle():
    """Test a zero denominator yields a flat line"""
    slope, _ = linear_regression([DataPoint(4, 10), DataPoint(4, 12)])
    assert slope == 0.0


def test_percentile():
    """Test nearest-rank percentile"""
    assert percentile([], 95) == 0
    assert percentile([100, 200, 300, 400], 95) == 400
    assert percentile([100, 200, 300, 400], 50) == 200


def test_increasing_count_metric_is_declining():
    """Test more issues over time reads as declining"""
    trend = FeedbackAnalyzer().calculate_trend("Total Feedback Items", _points([2, 4, 6, 8]))

    assert trend.direction == "declining"
    assert trend.slope == pytest.approx(2.0)


def test_decreasing_count_metric_is_improving():
    """Test fewer issues over time reads as improving"""
    trend = FeedbackAnalyzer().calculate_trend("Critical Issues", _points([8, 6, 4, 2]))
    assert trend.direction == "improving"


def test_flat_metric_is_stable():
    """Test a slope under the stable threshold is stable"""
    trend = FeedbackAnalyzer().calculate_trend("Total Feedback Items", _points([5, 5.2, 5.1, 5.4]))
    assert trend.direction == "stable"


def test_health_metric_direction_is_literal():
    """Test a rising health score reads as improving"""
    analyzer = FeedbackAnalyzer()

    rising = analyzer.calculate_trend("Health Score", _points([70, 80, 90]), higher_is_better=True)
    falling = analyzer.calculate_trend("Health Score", _points([90, 80, 70]), higher_is_better=True)

    assert rising.direction == "improving"
    assert falling.direction == "declining"


def test_forecast_and_confidence():
    """Test forecast is the next-cycle regression value"""
    trend = FeedbackAnalyzer().calculate_trend("Total Feedback Items", _points([3, 5, 7, 9]))

    assert trend.forecast == pytest.approx(11.0)
    assert trend.confidence == 70
    assert trend.current_value == 9
    assert trend.previous_value == 7
    assert trend.change_percent == pytest.approx((9 - 7) / 7 * 100)


def test_forecast_floored_at_zero():
    """Test a steep decline never forecasts negative counts"""
    trend = FeedbackAnalyzer().calculate_trend("Critical Issues", _points([9, 5, 1]))
    assert trend.forecast == 0.0


def test_confidence_capped():
    """Test confidence tops out at 95"""
    trend = FeedbackAnalyzer().calculate_trend("Total Feedback Items", _points(list(range(20))))
    assert trend.confidence == 95
    assert len(trend.data_points) == 10


def test_change_percent_from_zero():
    """Test a zero previous value reports no change percent"""
    trend = FeedbackAnalyzer().calculate_trend("Critical Issues", _points([0, 3]))
    assert trend.change_percent == 0.0


def test_agent_health_scores(make_feedback):
    """Test health penalties per critical, high and total feedback"""
    items = [
        make_feedback("SENTINEL", Category.BUG, Severity.CRITICAL),
        make_feedback("SENTINEL", Category.BUG, Severity.HIGH),
        make_feedback("ORACLE", Category.UX_ISSUE, Severity.LOW),
    ]

    metrics = {m.agent_id: m for m in FeedbackAnalyzer().calculate_agent_metrics(items, [])}

    assert metrics["SENTINEL"].health_score == 100 - 25 - 10 - 4
    assert metrics["ORACLE"].health_score == 98
    assert metrics["NEXUS"].health_score == 100


def test_roster_always_reported():
    """Test every roster agent gets metrics even with no feedback"""
    metrics = FeedbackAnalyzer().calculate_agent_metrics([], [])

    assert {m.agent_id for m in metrics} == set(AGENT_ROSTER)
    assert len(metrics) == 10
    assert all(m.health_score == 100 for m in metrics)
    assert all(m.success_rate == 0 for m in metrics)


def test_health_floored_at_zero(make_feedback):
    """Test health never goes negative"""
    items = [make_feedback("NEXUS", Category.BUG, Severity.CRITICAL) for _ in range(5)]

    metrics = FeedbackAnalyzer().calculate_agent_metrics(items, [])

    assert metrics[0].agent_id == "NEXUS"
    assert metrics[0].health_score == 0


def test_task_execution_stats():
    """Test success rate and timing from task records"""
    tasks = [
        TaskExecution("nexus", True, 1000),
        TaskExecution("NEXUS", True, 3000),
        TaskExecution("NEXUS", False, 0),
        TaskExecution("NEXUS", False, 2000),
    ]

    metrics = {m.agent_id: m for m in FeedbackAnalyzer().calculate_agent_metrics([], tasks)}
    nexus = metrics["NEXUS"]

    assert nexus.total_tasks == 4
    assert nexus.successful_tasks == 2
    assert nexus.failed_tasks == 2
    assert nexus.success_rate == 50.0
    assert nexus.avg_execution_time_ms == 2000.0
    assert nexus.p95_execution_time_ms == 3000


def test_history_capacity_evicts_oldest(make_history):
    """Test only the newest cycles are retained"""
    analyzer = FeedbackAnalyzer()

    for n in range(1, 56):
        analyzer.add_cycle_result(make_history(n))

    assert len(analyzer.history) == 50
    assert analyzer.history[0].cycle_number == 6


def test_analyze_trends_uses_history(make_history, make_feedback):
    """Test trends combine history with the current batch"""
    analyzer = FeedbackAnalyzer()
    analyzer.load_history([
        make_history(1, feedback_count=2, health=70.0),
        make_history(2, feedback_count=4, critical=1, health=80.0),
    ])

    items = [make_feedback() for _ in range(6)]
    trends = {t.metric: t for t in analyzer.analyze_trends(items, 3)}

    assert trends["Total Feedback Items"].direction == "declining"
    assert [p.value for p in trends["Total Feedback Items"].data_points] == [2, 4, 6]
    assert trends["Critical Issues"].current_value == 0
    assert trends["Health Score"].direction == "improving"


def test_no_trends_without_history(make_feedback):
    """Test a single cycle has nothing to trend"""
    assert FeedbackAnalyzer().analyze_trends([make_feedback()], 1) == []


def test_root_causes(make_feedback):
    """Test clusters become root causes ranked by likelihood"""
    items = [
        make_feedback("NEXUS", Category.BUG, Severity.CRITICAL, "routing failed"),
        make_feedback("NEXUS", Category.BUG, Severity.LOW, "handoff failed"),
        make_feedback("NEXUS", Category.UX_ISSUE, Severity.LOW, "log noisy"),
        make_feedback("ORACLE", Category.PERFORMANCE, Severity.LOW, "chart slow"),
    ]

    causes = FeedbackAnalyzer().analyze_root_causes(items)

    assert [c.root_cause_id for c in causes] == ["agent-instability-NEXUS", "pattern-failed"]
    assert causes[0].likelihood == 95
    assert causes[0].estimated_impact == "high"
    assert causes[1].likelihood == 80
    assert causes[1].evidence == ["routing failed", "handoff failed"]


def test_systemic_category_fix(make_feedback):
    """Test known categories get a specific suggested fix"""
    items = [
        make_feedback(agent, Category.PERFORMANCE, Severity.LOW, f"{agent} lag")
        for agent in ["NEXUS", "ORACLE", "CAPTURE", "DIPLOMAT"]
    ]

    causes = FeedbackAnalyzer().analyze_root_causes(items)

    assert causes[0].root_cause_id == "systemic-performance"
    assert causes[0].suggested_fix.startswith("Profile system")
    assert causes[0].estimated_impact == "medium"


def test_correlations(make_feedback):
    """Test agent/category and severity/category pairs"""
    items = [make_feedback("NEXUS", Category.BUG, Severity.HIGH, f"bug {i}") for i in range(3)]

    correlations = FeedbackAnalyzer().find_correlations(items)

    assert correlations[0].factor1 == "NEXUS"
    assert correlations[0].correlation == pytest.approx(0.6)
    assert correlations[1].factor1 == "high"
    assert correlations[1].correlation == pytest.approx(0.45)


def test_overall_health(make_feedback):
    """Test overall health subtracts batch-wide penalties"""
    items = [
        make_feedback("NEXUS", Category.BUG, Severity.CRITICAL),
        make_feedback("ORACLE", Category.BUG, Severity.HIGH),
    ]
    analyzer = FeedbackAnalyzer()
    metrics = analyzer.calculate_agent_metrics(items, [])

    health = analyzer.calculate_overall_health(metrics, items)

    average = (100 * 8 + (100 - 25 - 2) + (100 - 10 - 2)) / 10
    assert health == pytest.approx(average - 10 - 5)


def test_compare_to_previous_cycle(make_history, make_feedback):
    """Test comparison against the immediately preceding cycle"""
    previous_items = [
        make_feedback(description="Axis label cut off", status=FeedbackStatus.RESOLVED),
        make_feedback(description="Export button hidden"),
    ]
    analyzer = FeedbackAnalyzer()
    analyzer.add_cycle_result(make_history(4, items=previous_items, health=90.0))

    comparison = analyzer.compare_to_previous_cycle(
        5, [make_feedback(description="Export button hidden")], overall_health=95.0
    )

    assert comparison.previous_cycle == 4
    assert comparison.feedback_delta == -1
    assert comparison.health_delta == pytest.approx(95.0 - 99.6)
    assert comparison.new_issues_resolved == 1
    assert comparison.recurring_issues == 1


def test_health_delta_ignores_test_pass_rate(make_history, make_feedback):
    """Test the health delta compares agent health, not test pass rates"""
    batch = [make_feedback("NEXUS", Category.BUG, Severity.HIGH, "Route handler crash")]
    analyzer = FeedbackAnalyzer()
    analyzer.add_cycle_result(make_history(4, items=list(batch), health=20.0))
    metrics = analyzer.calculate_agent_metrics(batch, [])

    comparison = analyzer.compare_to_previous_cycle(
        5, batch, overall_health=analyzer.calculate_overall_health(metrics, batch)
    )

    assert comparison.health_delta == pytest.approx(0.0)


def test_no_comparison_without_previous_cycle(make_history):
    """Test no comparison when cycle n-1 is not in history"""
    analyzer = FeedbackAnalyzer()
    analyzer.add_cycle_result(make_history(2))

    assert analyzer.compare_to_previous_cycle(4, [], 100.0) is None


def test_analyze_report(scenario_a_batch, clock):
    """Test the full analysis report"""
    analyzer = FeedbackAnalyzer(settings=AnalysisSettings(unhealthy_threshold=75), clock=clock)

    report = analyzer.analyze(scenario_a_batch, 1, BuildPhase.AGENT_INTEGRATION)

    assert report.analyzed_at == clock.now
    assert report.agent_metrics[0].agent_id == "SENTINEL"
    assert report.cycle_comparison is None
    assert report.trends == []
    assert "1 agent(s) below health threshold: SENTINEL" in report.insights
    assert "SENTINEL has 1 critical issue(s)" in report.insights
    assert report.to_dict()["phase"] == "agent_integration"
