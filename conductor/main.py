from __future__ import annotations

import json
import logging
import uuid

import click

from conductor.config import ConductorConfig
from conductor.core import ConductorCore, Interpretation
from conductor.memory.models import ActiveTest
from conductor.models import HealthStatus, PerformanceMetrics, SystemHealth, TestType
from conductor.monitor.snapshot import SystemMonitor

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging. INFO by default, DEBUG if verbose."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _banner(title: str) -> None:
    click.echo(f"\n{'='*60}")
    click.echo(f"  {title}")
    click.echo(f"{'='*60}")


def _print_interpretation(result: Interpretation) -> None:
    command, analysis, action = result.command, result.analysis, result.action
    risk = analysis.risk_assessment

    _banner("Parsed Command")
    click.echo(f"  Intents:     {', '.join(i.value for i in command.intents)}")
    click.echo(f"  Services:    {', '.join(command.services)}")
    click.echo(f"  Test types:  {', '.join(t.value for t in command.test_types)}")
    click.echo(f"  Confidence:  {command.confidence:.2f}")
    if command.defaulted:
        click.echo(f"  Defaulted:   {', '.join(sorted(command.defaulted))}")

    _banner("Analysis")
    click.echo(f"  Risk:        {risk.level.value} (score {risk.score:.2f})")
    for factor in risk.risk_factors:
        click.echo(f"    - {factor}")
    click.echo(f"  Blast radius: {analysis.dependency_info.blast_radius}")
    click.echo(f"  Estimate:    {analysis.performance_prediction.estimated_minutes:.1f} min")
    click.echo(f"  Confidence:  {analysis.confidence:.2f}")

    _banner("Decision")
    click.echo(f"  Action:      {action.action_type.value}")
    click.echo(f"  Priority:    {action.priority.value}")
    if action.execution_strategy is not None:
        click.echo(f"  Strategy:    {action.execution_strategy.value}")
    if action.estimated_time:
        click.echo(f"  Est. time:   {action.estimated_time}")
    click.echo(f"  {action.description}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Conductor: turns operator commands into prioritized test actions."""
    _setup_logging(verbose)


@cli.command()
@click.argument("text")
def parse(text: str) -> None:
    """Parse a command and print the structured result."""
    core = ConductorCore()
    command = core.parser.parse(text)
    click.echo(command.model_dump_json(indent=2))


@cli.command()
@click.argument("services", nargs=-1, required=True)
@click.option("--test-type", "-t", "test_types", multiple=True,
              type=click.Choice([t.value for t in TestType]), help="Test type to include")
def deps(services: tuple[str, ...], test_types: tuple[str, ...]) -> None:
    """Show the dependency closure and blast radius of SERVICES."""
    core = ConductorCore()
    info = core.dependencies.analyze(list(services), [TestType(t) for t in test_types])

    _banner("Dependency Analysis")
    click.echo(f"  Targets:          {', '.join(services)}")
    click.echo(f"  Affected:         {', '.join(info.affected_services)}")
    click.echo(f"  Blast radius:     {info.blast_radius}")
    click.echo(f"  Severity:         {info.severity_level.value}")
    click.echo(f"  Critical path:    {' -> '.join(info.critical_path) or '-'}")
    click.echo(f"  Isolation points: {', '.join(info.isolation_points) or '-'}")
    for factor in info.risk_factors:
        click.echo(f"    - {factor}")


@cli.command()
@click.argument("text")
@click.option("--cpu", type=float, default=0.0, help="Current CPU usage percent")
@click.option("--memory", type=float, default=0.0, help="Current memory usage percent")
@click.option("--health", type=click.Choice([h.value for h in HealthStatus]),
              default=HealthStatus.HEALTHY.value, help="Current system health")
@click.option("--active-tests", type=int, default=0, help="Number of tests already running")
@click.option("--json", "as_json", is_flag=True, help="Print the decision as JSON")
def interpret(
    text: str,
    cpu: float,
    memory: float,
    health: str,
    active_tests: int,
    as_json: bool,
) -> None:
    """Interpret TEXT against a given system snapshot and print the decision."""
    monitor = SystemMonitor(
        health=SystemHealth(status=HealthStatus(health)),
        metrics=PerformanceMetrics(cpu_usage=cpu, memory_usage=memory),
    )
    core = ConductorCore(monitor=monitor)
    for _ in range(active_tests):
        core.record_active_test(ActiveTest(
            test_id=f"cli-{uuid.uuid4().hex[:8]}",
            service_name="unknown",
            test_type=TestType.UNIT_TEST,
        ))

    result = core.interpret_full(text)
    if as_json:
        click.echo(result.action.model_dump_json(indent=2))
    else:
        _print_interpretation(result)


@cli.command()
@click.option("--snapshot", type=click.Path(dir_okay=False), default=None,
              help="Write a JSON snapshot of memory here on exit")
def shell(snapshot: str | None) -> None:
    """Read commands from stdin, one per line, and learn from each decision.

    Lines starting with ':' are meta commands: :insights, :stats, :quit.
    """
    config = ConductorConfig()
    core = ConductorCore(config=config)

    handled = 0
    with core:
        stdin = click.get_text_stream("stdin")
        for raw in stdin:
            line = raw.strip()
            if not line:
                continue
            if line in (":quit", ":q"):
                break
            if line == ":insights":
                insights = core.insights()
                _banner(f"Insights ({len(insights.insights)})")
                for entry in insights.insights:
                    click.echo(f"  {entry}")
                continue
            if line == ":stats":
                click.echo(json.dumps(core.memory.get_statistics(), indent=2))
                continue

            result = core.interpret_full(line)
            core.learn_from_interaction(result.command, result.analysis, result.action)
            handled += 1
            action = result.action
            click.echo(
                f"[{action.priority.value.upper()}] {action.action_type.value}: "
                f"{action.description}"
            )
    logger.info("Shell session ended after %d commands", handled)

    if snapshot:
        if core.memory.save_snapshot(snapshot):
            click.echo(f"Memory snapshot written to {snapshot}")
        else:
            click.echo(f"Could not write memory snapshot to {snapshot}", err=True)


if __name__ == "__main__":
    cli()
