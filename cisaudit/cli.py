"""
Command-line interface for cisaudit
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import AuditConfig, load_config
from .errors import ConfigError, ControlLoadError
from .rules.engine import RuleEngine
from .rules.models import ExitCode
from .report.console import ConsoleReporter
from .report.json_reporter import JSONReporter
from .report.sarif import SARIFReporter

app = typer.Typer(
    name="cisaudit",
    help="Declarative CIS benchmark compliance auditing for the local host",
    add_completion=False
)

# Reports go to stdout; status and logs go to stderr
console = Console(stderr=True)


class OutputFormat(str, Enum):
    CONSOLE = "console"
    JSON = "json"
    SARIF = "sarif"
    TEXT = "text"


class ListFormat(str, Enum):
    TABLE = "table"
    JSON = "json"
    IDS = "ids"


def configure_logging(level: str) -> None:
    """Route the package logger through rich on stderr"""
    logger = logging.getLogger("cisaudit")
    logger.handlers.clear()
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


def version_callback(value: bool):
    if value:
        typer.echo(f"cisaudit version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True,
        help="Show version and exit"
    )
):
    """Declarative CIS benchmark compliance auditing for the local host"""
    pass


def _load_engine(config: AuditConfig) -> RuleEngine:
    engine = RuleEngine(config=config)
    engine.load_rules_from_directory(config.rules_dir)
    return engine


@app.command()
def scan(
    rules_dir: Optional[str] = typer.Option(
        None, "--rules", "-r",
        help="Directory containing control files (default: rules/docker)"
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c",
        help="YAML configuration file"
    ),
    output_format: OutputFormat = typer.Option(
        OutputFormat.CONSOLE, "--format", "-f",
        help="Output format: console, json, sarif, text"
    ),
    output_file: Optional[str] = typer.Option(
        None, "--output", "-o",
        help="Output file (default: stdout)"
    ),
    control_ids: Optional[List[str]] = typer.Option(
        None, "--control", help="Specific controls to run (can be repeated)"
    ),
    exclude_ids: Optional[List[str]] = typer.Option(
        None, "--exclude", help="Controls to exclude (can be repeated)"
    ),
    tags: Optional[List[str]] = typer.Option(
        None, "--tag", "-t", help="Only run controls with this tag (can be repeated)"
    ),
    min_impact: Optional[float] = typer.Option(
        None, "--min-impact", min=0.0, max=1.0,
        help="Only run controls with at least this impact"
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Per-command timeout in seconds"
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", "-w", help="Controls evaluated in parallel"
    ),
    empty_enumeration: Optional[str] = typer.Option(
        None, "--empty-enumeration",
        help="Outcome when an enumeration finds nothing: pass or skip"
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Only show controls that did not pass"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Enable debug logging"
    ),
    color: bool = typer.Option(
        True, "--color/--no-color",
        help="Enable/disable colored output"
    )
):
    """Audit the local host against the loaded controls"""
    try:
        config = load_config(config_file).with_overrides(
            rules_dir=rules_dir,
            command_timeout=timeout,
            workers=workers,
            empty_enumeration=empty_enumeration,
            log_level="DEBUG" if verbose else None
        )
        configure_logging(config.log_level)
        engine = _load_engine(config)
    except (ConfigError, ControlLoadError) as e:
        console.print(f"❌ Error: {e}", markup=False)
        raise typer.Exit(int(ExitCode.LOAD_ERROR))

    if not engine.controls:
        console.print(f"No controls loaded from {config.rules_dir}")
        raise typer.Exit(int(ExitCode.LOAD_ERROR))

    if not quiet:
        console.print(f"✅ Loaded {len(engine.controls)} controls from {config.rules_dir}")

    report = engine.run(
        control_ids=control_ids,
        exclude_ids=exclude_ids,
        tags=tags,
        min_impact=min_impact
    )

    if output_format == OutputFormat.CONSOLE:
        reporter = ConsoleReporter(use_colors=color, quiet=quiet, show_passed=not quiet)
        reporter.print_control_stats(engine.get_statistics())
        reporter.print_report(report)
        if output_file:
            reporter.export_text(report, output_file)

    elif output_format == OutputFormat.TEXT:
        text = ConsoleReporter(quiet=quiet, show_passed=not quiet).render(report)
        _write_output(text, output_file)

    elif output_format == OutputFormat.JSON:
        _write_output(JSONReporter(pretty=True).format_results_string(report), output_file)

    elif output_format == OutputFormat.SARIF:
        _write_output(SARIFReporter().create_sarif_string(report), output_file)

    if output_file and not quiet:
        console.print(f"📁 Results exported to {output_file}")

    raise typer.Exit(int(report.exit_code))


def _write_output(text: str, output_file: Optional[str]) -> None:
    if output_file:
        with open(output_file, 'w') as f:
            f.write(text)
    else:
        typer.echo(text)


@app.command()
def controls(
    rules_dir: str = typer.Option(
        "rules/docker", "--rules", "-r",
        help="Directory containing control files"
    ),
    format: ListFormat = typer.Option(
        ListFormat.TABLE, "--format", "-f",
        help="Output format: table, json, ids"
    ),
    tag: Optional[str] = typer.Option(
        None, "--tag", "-t",
        help="Filter by tag"
    )
):
    """List available controls"""
    try:
        engine = _load_engine(AuditConfig(rules_dir=rules_dir))
    except ControlLoadError as e:
        console.print(f"❌ Error: {e}", markup=False)
        raise typer.Exit(int(ExitCode.LOAD_ERROR))

    filtered_controls = engine.controls
    if tag:
        filtered_controls = [c for c in filtered_controls if tag in c.tags]

    if not filtered_controls:
        console.print("No controls match the specified filters")
        raise typer.Exit(0)

    if format == ListFormat.TABLE:
        table = Table(title=f"Controls ({len(filtered_controls)} controls)")
        table.add_column("ID", style="bold", no_wrap=True)
        table.add_column("Title")
        table.add_column("Impact", justify="right")
        table.add_column("Checks", justify="right")
        table.add_column("Tags")

        for control in filtered_controls:
            checks = "manual" if control.informational else str(len(control.assertions))
            table.add_row(
                control.id,
                control.title,
                f"{control.impact:.1f}",
                checks,
                ", ".join(control.tags)
            )

        Console().print(table)

    elif format == ListFormat.JSON:
        controls_data = []
        for control in filtered_controls:
            controls_data.append({
                "id": control.id,
                "title": control.title,
                "impact": control.impact,
                "tags": control.tags,
                "references": control.references,
                "informational": control.informational,
                "assertions": len(control.assertions),
                "description": control.description
            })

        typer.echo(json.dumps(controls_data, indent=2))

    elif format == ListFormat.IDS:
        for control in filtered_controls:
            typer.echo(control.id)


@app.command()
def validate(
    rules_dir: str = typer.Argument(..., help="Directory containing control files"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed validation info")
):
    """Validate control files"""
    rules_path = Path(rules_dir)
    if not rules_path.is_dir():
        console.print(f"Rules directory not found: {rules_dir}")
        raise typer.Exit(int(ExitCode.LOAD_ERROR))

    yaml_files = sorted(list(rules_path.glob("**/*.yaml")) + list(rules_path.glob("**/*.yml")))

    if not yaml_files:
        console.print(f"No YAML files found in {rules_dir}")
        raise typer.Exit(int(ExitCode.LOAD_ERROR))

    console.print(f"🔍 Validating {len(yaml_files)} control files...")

    # shared engine: duplicate ids across files are load errors, as in scan
    engine = RuleEngine()
    valid_files = 0
    total_controls = 0
    errors = []

    for yaml_file in yaml_files:
        try:
            count = engine.load_rules_from_file(str(yaml_file))
        except ControlLoadError as e:
            errors.append(str(e))
            if verbose:
                console.print(f"❌ {e}", markup=False)
            continue

        valid_files += 1
        total_controls += count
        if verbose:
            console.print(f"✅ {yaml_file.name}: {count} controls")

    console.print("\n📊 Validation Summary:")
    console.print(f"   Valid files: {valid_files}/{len(yaml_files)}")
    console.print(f"   Total controls: {total_controls}")

    if errors:
        console.print(f"   Errors: {len(errors)}")
        if not verbose:
            console.print("\n❌ Errors found:")
            for error in errors[:5]:
                console.print(f"   {error}", markup=False)
            if len(errors) > 5:
                console.print(f"   ... and {len(errors) - 5} more (use --verbose to see all)")
        raise typer.Exit(int(ExitCode.LOAD_ERROR))

    console.print("✅ All control files are valid!")


if __name__ == "__main__":
    app()
