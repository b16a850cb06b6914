"""
Console reporter for terminal output with colors and formatting
"""

import io
from typing import Any, Dict
from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich import box
from rich.markup import escape

from ..facts.models import display_value
from ..rules.models import AuditReport, AssertionResult, ControlResult, Outcome


class ConsoleReporter:
    """Rich console reporter for audit reports"""

    def __init__(self, use_colors: bool = True, quiet: bool = False, show_passed: bool = True,
                 console: Console = None):
        self.console = console or Console(no_color=not use_colors, highlight=use_colors)
        self.quiet = quiet
        self.show_passed = show_passed

        self.outcome_colors = {
            Outcome.PASS: "green",
            Outcome.FAIL: "red",
            Outcome.ERROR: "yellow",
            Outcome.SKIPPED: "dim"
        }

        self.outcome_symbols = {
            Outcome.PASS: "✔",
            Outcome.FAIL: "✘",
            Outcome.ERROR: "⚠",
            Outcome.SKIPPED: "○"
        }

    def print_report(self, report: AuditReport) -> None:
        """Print the full report: summary, per-control lines and failure details"""
        self._write_report(self.console, report)

    def render(self, report: AuditReport) -> str:
        """Render the report as plain text"""
        buffer = io.StringIO()
        self._write_report(Console(file=buffer, force_terminal=False, no_color=True, width=120), report)
        return buffer.getvalue()

    def export_text(self, report: AuditReport, file_path: str) -> None:
        """Export the report to a plain text file"""
        with open(file_path, 'w') as f:
            f.write(self.render(report))

    def _write_report(self, console: Console, report: AuditReport) -> None:
        if not self.quiet:
            self._print_summary(console, report)
        self._print_controls(console, report)
        self._print_failures(console, report)
        self._print_errors(console, report)
        if not self.quiet:
            self._print_verdict(console, report)

    def _print_summary(self, console: Console, report: AuditReport) -> None:
        counts = report.counts()

        table = Table(title="📊 Audit Summary", box=box.ROUNDED)
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="right")

        table.add_row("Controls Evaluated", f"{len(report.results)}/{report.controls_selected}")
        table.add_row("", "")

        for outcome in [Outcome.PASS, Outcome.FAIL, Outcome.SKIPPED]:
            symbol = self.outcome_symbols[outcome]
            color = self.outcome_colors[outcome]
            table.add_row(f"{symbol} {outcome.value.title()}", Text(str(counts[outcome.value]), style=color))

        undetermined = len([r for r in report.results if r.has_errors])
        if undetermined:
            table.add_row(
                f"{self.outcome_symbols[Outcome.ERROR]} With Errors",
                Text(str(undetermined), style=self.outcome_colors[Outcome.ERROR])
            )

        console.print(table)
        console.print()

    def _print_controls(self, console: Console, report: AuditReport) -> None:
        for result in report.results:
            if result.outcome == Outcome.PASS and not self.show_passed:
                continue
            console.print(self._control_line(result), soft_wrap=True)

    def _control_line(self, result: ControlResult) -> Text:
        outcome = result.outcome
        color = self.outcome_colors[outcome]
        label = outcome.value.upper()
        if outcome == Outcome.FAIL and not result.has_violations:
            # failed only because facts could not be resolved
            label = "ERROR"
            color = self.outcome_colors[Outcome.ERROR]

        line = Text()
        line.append(f"{self.outcome_symbols[outcome]} ", style=color)
        line.append(f"{label:<7}", style=f"bold {color}")
        line.append(f" {result.control_id:<18}", style="bold")
        line.append(f" impact {result.impact:.1f}  ", style="dim")
        line.append(result.title)
        if result.skip_reason:
            line.append(f"  ({result.skip_reason})", style="dim")
        return line

    def _print_failures(self, console: Console, report: AuditReport) -> None:
        violations = [r for r in report.results if r.has_violations]
        if not violations:
            return

        console.print(f"\n✘ [bold red]Violations ({len(violations)} controls)[/bold red]")
        for result in violations:
            console.print(f"\n  [bold]{escape(result.control_id)}[/bold] {escape(result.title)} (impact {result.impact:.1f})")
            for assertion in result.assertions:
                if assertion.outcome == Outcome.FAIL:
                    self._print_assertion(console, assertion)

    def _print_errors(self, console: Console, report: AuditReport) -> None:
        undetermined = [r for r in report.results if r.has_errors]
        if not undetermined:
            return

        console.print(f"\n⚠  [bold yellow]Could not determine compliance ({len(undetermined)} controls)[/bold yellow]")
        for result in undetermined:
            console.print(f"\n  [bold]{escape(result.control_id)}[/bold] {escape(result.title)}")
            for assertion in result.assertions:
                if assertion.outcome == Outcome.ERROR:
                    self._print_assertion(console, assertion)

    def _print_assertion(self, console: Console, assertion: AssertionResult) -> None:
        entity = f" [{assertion.entity}]" if assertion.entity else ""
        console.print(f"     • {assertion.subject}{entity}", markup=False, highlight=False, soft_wrap=True)
        if assertion.outcome == Outcome.FAIL:
            console.print(
                f"       expected {assertion.expectation}, got {display_value(assertion.actual)}",
                markup=False, highlight=False, soft_wrap=True
            )
        else:
            console.print(f"       error: {assertion.message}", markup=False, highlight=False, soft_wrap=True)

    def _print_verdict(self, console: Console, report: AuditReport) -> None:
        if report.interrupted:
            console.print("\n⏹  [bold]Run interrupted; results are partial[/bold]")
        elif report.has_violations:
            console.print("\n✘ [red]Compliance violations found[/red]")
        elif report.has_errors:
            console.print("\n⚠  [yellow]No violations confirmed, but some checks could not run[/yellow]")
        else:
            console.print("\n✅ [green]All applicable controls passed[/green]")
        console.print(f"[dim]⏱️  {len(report.results)} controls in {report.duration_ms:.1f}ms[/dim]")

    def print_control_stats(self, engine_stats: Dict[str, Any]) -> None:
        """Print rule engine statistics"""
        if self.quiet:
            return

        total = engine_stats.get('total_controls', 0)
        informational = engine_stats.get('informational_controls', 0)
        self.console.print(f"\n📋 Loaded {total} controls ({informational} informational)")
