"""Output formatting using Rich for cycle, triage and patch reports."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from triage.engine.analyzer import FeedbackAnalysisReport
from triage.engine.models import CycleResult, CycleStatus, Severity, TriageReport
from triage.engine.patches import PatchQueueSummary

# Custom theme for triage
TRIAGE_THEME = Theme(
    {
        "severity.critical": "red bold",
        "severity.high": "yellow",
        "severity.medium": "blue",
        "severity.low": "dim",
        "success": "green",
        "error": "red bold",
        "warning": "yellow",
        "info": "blue",
        "metadata": "dim",
    }
)

STATUS_STYLES = {
    CycleStatus.PASSED: "success",
    CycleStatus.NEEDS_PATCHES: "warning",
    CycleStatus.BLOCKED: "error",
    CycleStatus.IN_PROGRESS: "info",
}

TREND_STYLES = {
    "improving": "success",
    "stable": "info",
    "declining": "error",
}


class OutputFormatter:
    """Handles all output formatting for triage."""

    def __init__(self, color: bool = True, verbose: bool = False) -> None:
        self.console = Console(theme=TRIAGE_THEME, force_terminal=color, no_color=not color)
        self.verbose = verbose

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[error]Error: {message}[/error]")

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[success]{message}[/success]")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        self.console.print(f"[warning]{message}[/warning]")

    def print_cycle_result(self, result: CycleResult) -> None:
        """Print the cycle summary panel and severity counts."""
        style = STATUS_STYLES[result.status]
        next_phase = result.next_phase.value if result.next_phase else "-"
        self.console.print(Panel(
            f"[{style}]{result.status.value.upper()}[/{style}]  "
            f"health {result.health_score:.1f}%  "
            f"tests {result.tests_passed}/{result.tests_run}\n"
            f"{result.recommendation}\n"
            f"[metadata]next phase: {next_phase}  duration: {result.duration_ms}ms[/metadata]",
            title=f"Cycle {result.cycle_number}: {result.phase.value}",
            border_style=style,
        ))

        table = Table(title="Feedback by Severity")
        table.add_column("Severity")
        table.add_column("Count", justify="right")
        for severity in Severity:
            table.add_row(
                f"[severity.{severity.value}]{severity.value}[/severity.{severity.value}]",
                str(result.by_severity.get(severity, 0)),
            )
        self.console.print(table)

    def print_triage_report(self, report: TriageReport) -> None:
        """Print the queues and recommendations of a triage pass."""
        self.console.print(
            f"[bold]Triage:[/bold] {report.total_issues} issue(s), "
            f"[severity.critical]{report.build_blockers} blocker(s)[/severity.critical], "
            f"[severity.high]{report.parallel_patches} patch(es)[/severity.high], "
            f"{report.backlog_items} backlog"
        )

        decisions = report.blocker_queue + report.patch_queue
        if decisions:
            table = Table(title="Patch Queue")
            table.add_column("Priority", justify="right")
            table.add_column("Feedback", style="cyan")
            table.add_column("Severity")
            table.add_column("Owner")
            table.add_column("Hours", justify="right")
            table.add_column("Rationale")

            for decision in decisions:
                severity = decision.adjusted_severity.value
                table.add_row(
                    str(decision.priority),
                    decision.feedback_id,
                    f"[severity.{severity}]{severity}[/severity.{severity}]",
                    decision.suggested_owner or "-",
                    f"{decision.estimated_resolution_hours:g}",
                    decision.rationale,
                )
            self.console.print(table)

        if self.verbose and report.patterns:
            patterns = Table(title="Patterns")
            patterns.add_column("Pattern", style="cyan", no_wrap=True)
            patterns.add_column("Items", justify="right")
            patterns.add_column("Agents")
            patterns.add_column("Root Cause")
            for pattern in report.patterns:
                patterns.add_row(
                    pattern.pattern_id,
                    str(pattern.affected_count),
                    ", ".join(pattern.affected_agents),
                    pattern.suggested_root_cause,
                )
            self.console.print(patterns)

        if report.recommendations:
            self.console.print(Panel(
                "\n".join(f"- {r}" for r in report.recommendations),
                title="Recommendations",
                border_style="info",
            ))

    def print_analysis(self, analysis: FeedbackAnalysisReport) -> None:
        """Print agent health, trends and insights."""
        self.console.print(f"[bold]Overall health:[/bold] {analysis.overall_health_score:.1f}")

        table = Table(title="Agent Health")
        table.add_column("Agent", style="cyan")
        table.add_column("Health", justify="right")
        table.add_column("Feedback", justify="right")
        table.add_column("Critical", justify="right")
        table.add_column("High", justify="right")
        for metrics in analysis.agent_metrics:
            table.add_row(
                metrics.agent_id,
                f"{metrics.health_score:.0f}",
                str(metrics.feedback_count),
                str(metrics.critical_count),
                str(metrics.high_count),
            )
        self.console.print(table)

        if analysis.trends:
            trends = Table(title="Trends")
            trends.add_column("Metric")
            trends.add_column("Direction")
            trends.add_column("Current", justify="right")
            trends.add_column("Forecast", justify="right")
            trends.add_column("Confidence", justify="right")
            for trend in analysis.trends:
                style = TREND_STYLES.get(trend.direction, "info")
                trends.add_row(
                    trend.metric,
                    f"[{style}]{trend.direction}[/{style}]",
                    f"{trend.current_value:g}",
                    f"{trend.forecast:.1f}",
                    f"{trend.confidence:.0f}%",
                )
            self.console.print(trends)

        for insight in analysis.insights:
            self.console.print(f"[metadata]*[/metadata] {insight}")

    def print_queue_summary(self, summary: PatchQueueSummary) -> None:
        """Print open patch counts by status and priority band."""
        table = Table(title=f"Patch Queue ({summary.total_patches})")
        table.add_column("Status")
        table.add_column("Count", justify="right")
        for status, count in summary.by_status.items():
            if count:
                table.add_row(status.value, str(count))
        self.console.print(table)

        bands = ", ".join(f"{band} {count}" for band, count in summary.by_priority.items())
        self.console.print(
            f"[metadata]{bands}; ~{summary.estimated_total_hours:g}h remaining[/metadata]"
        )

    def print_phase_list(self, phases: list[tuple[str, int, list[str]]]) -> None:
        """Print build phases.

        Args:
            phases: List of (phase, parallel_patch_threshold, features) tuples.
        """
        table = Table(title="Build Phases")
        table.add_column("#", justify="right")
        table.add_column("Phase", style="cyan", no_wrap=True)
        table.add_column("High Threshold", justify="right")
        table.add_column("Features")

        for index, (phase, threshold, features) in enumerate(phases, start=1):
            table.add_row(str(index), phase, str(threshold), ", ".join(features))

        self.console.print(table)


# Global formatter instance
_formatter: OutputFormatter | None = None


def get_formatter(color: bool = True, verbose: bool = False) -> OutputFormatter:
    """Get or create the global formatter instance."""
    global _formatter
    if _formatter is None:
        _formatter = OutputFormatter(color=color, verbose=verbose)
    return _formatter
