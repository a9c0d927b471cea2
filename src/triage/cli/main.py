"""Main CLI entry point for triage."""

import json
import logging
from pathlib import Path
from typing import Any

import click

from triage.config.manager import ConfigManager
from triage.engine.analyzer import FeedbackAnalyzer
from triage.engine.cycle import BuildCycle, create_phase_config
from triage.engine.models import BUILD_PHASES, BuildPhase, to_jsonable
from triage.engine.patches import PatchManager
from triage.engine.persistence import JsonlFeedbackSink
from triage.engine.triage import TriageSystem
from triage.errors import TriageError
from triage.output.formatter import get_formatter

logger = logging.getLogger(__name__)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.option("--no-color", is_flag=True, help="Disable colors")
@click.version_option(package_name="feedback-triage")
def cli(
    verbose: bool,
    no_color: bool,
) -> None:
    """Triage - feedback triage and patch lifecycle for build cycles.

    \b
    Examples:
        triage run feedback.json --cycle 3 --phase api_routes
        triage run feedback.json --cycle 3 --phase api_routes --json
        triage phases
        triage config show
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Initialize formatter
    get_formatter(color=not no_color, verbose=verbose)


def _load_feedback(path: Path) -> list[dict[str, Any]]:
    """Read feedback entries from a JSON list or an object with "feedback"."""
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"{path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("feedback", [])
    if not isinstance(data, list):
        raise click.BadParameter(f"{path} must contain a list of feedback entries")
    return data


@cli.command()
@click.argument("feedback_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-c", "--cycle", "cycle_number", type=int, required=True, help="Cycle number")
@click.option(
    "-p", "--phase",
    type=click.Choice([p.value for p in BUILD_PHASES]),
    required=True,
    help="Build phase",
)
@click.option("--tests-run", type=int, default=0, help="Tests executed this cycle")
@click.option("--tests-passed", type=int, default=0, help="Tests passed this cycle")
@click.option("--data-dir", type=click.Path(file_okay=False, path_type=Path), help="Event log directory")
@click.option("--json", "output_json", is_flag=True, help="JSON output")
def run(
    feedback_file: Path,
    cycle_number: int,
    phase: str,
    tests_run: int,
    tests_passed: int,
    data_dir: Path | None,
    output_json: bool,
) -> None:
    """Run one build cycle over a feedback file."""
    formatter = get_formatter()

    try:
        config = ConfigManager.get_config()
    except TriageError as e:
        formatter.print_error(str(e))
        raise SystemExit(1)

    if tests_passed > tests_run:
        raise click.BadParameter("--tests-passed cannot exceed --tests-run")

    entries = _load_feedback(feedback_file)

    cycle = BuildCycle(create_phase_config(cycle_number, BuildPhase(phase), config.cycle))
    try:
        cycle.add_feedback_items(entries)
    except (TypeError, ValueError) as e:
        formatter.print_error(f"Invalid feedback entry: {e}")
        raise SystemExit(1)

    result = cycle.generate_result(tests_run=tests_run, tests_passed=tests_passed)

    triage_system = TriageSystem()
    report = triage_system.triage_all(result.feedback_items, cycle_number, result.phase)

    if data_dir is None and config.storage.data_dir:
        data_dir = config.get_data_dir()
    sink = JsonlFeedbackSink(data_dir) if data_dir is not None else None

    analyzer = FeedbackAnalyzer(settings=config.analysis)
    if sink is not None:
        try:
            analyzer.load_history(sink.load_cycle_results(limit=config.analysis.history_capacity))
        except TriageError as e:
            logger.warning("Cycle history not loaded: %s", e)
            formatter.print_warning(f"Cycle history not loaded: {e}")
    analysis = analyzer.analyze(result.feedback_items, cycle_number, result.phase)

    patch_manager = PatchManager(sink=sink)
    patch_manager.import_from_triage(report)
    summary = patch_manager.get_queue_summary()

    if sink is not None:
        for persisted in (cycle.log_learning_events(sink), cycle.persist_feedback(sink)):
            if not persisted.ok:
                formatter.print_warning(
                    f"{len(persisted.failures)} of {persisted.attempted} record(s) were not persisted"
                )
        try:
            sink.save_cycle_result(result)
        except TriageError as e:
            logger.warning("Cycle history not saved: %s", e)
            formatter.print_warning(f"Cycle history not saved: {e}")

    if output_json:
        payload = {
            "cycle": result.to_dict(),
            "triage": report.to_dict(),
            "analysis": analysis.to_dict(),
            "patch_queue": to_jsonable(summary),
        }
        click.echo(json.dumps(payload, indent=2, default=str))
        return

    formatter.print_cycle_result(result)
    formatter.print_triage_report(report)
    formatter.print_analysis(analysis)
    formatter.print_queue_summary(summary)

    if sink is not None:
        formatter.print_success(f"Cycle {cycle_number} recorded in {sink.data_dir}")


@cli.command()
def phases() -> None:
    """List build phases and their thresholds."""
    config = ConfigManager.get_config()
    formatter = get_formatter()

    rows = []
    for phase in BUILD_PHASES:
        settings = config.cycle.for_phase(phase)
        rows.append((phase.value, settings.parallel_patch_threshold, settings.features))

    formatter.print_phase_list(rows)


@cli.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Show current configuration."""
    config = ConfigManager.get_config()
    formatter = get_formatter()

    config_dict = config.model_dump(mode="json")
    formatter.console.print_json(json.dumps(config_dict, indent=2))


if __name__ == "__main__":
    cli()
