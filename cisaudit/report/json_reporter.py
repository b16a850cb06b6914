"""
JSON reporter for machine-readable output
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict

from .. import __version__
from ..facts.models import to_jsonable
from ..rules.models import AssertionResult, AuditReport, ControlResult, Outcome


class JSONReporter:
    """JSON output formatter for audit reports"""

    def __init__(self, pretty: bool = True):
        self.pretty = pretty

    def export_results(self, report: AuditReport, output_file: str,
                       include_passed: bool = True) -> None:
        """Export an audit report to a JSON file"""
        with open(output_file, 'w') as f:
            f.write(self.format_results_string(report, include_passed))

    def format_results_string(self, report: AuditReport, include_passed: bool = True) -> str:
        """Format an audit report as JSON string"""
        output_data = self._format_results(report, include_passed)

        if self.pretty:
            return json.dumps(output_data, indent=2, default=self._json_serializer)
        else:
            return json.dumps(output_data, default=self._json_serializer)

    def _format_results(self, report: AuditReport, include_passed: bool = True) -> Dict[str, Any]:
        """Format an audit report into JSON structure"""
        counts = report.counts()

        output_data = {
            "scan_info": {
                "tool": "cisaudit",
                "version": __version__,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "started_at": report.started_at.isoformat(),
                "finished_at": report.finished_at.isoformat(),
                "duration_ms": report.duration_ms,
                "controls_selected": report.controls_selected,
                "controls_evaluated": len(report.results),
                "interrupted": report.interrupted
            },
            "summary": {
                "controls_by_outcome": counts,
                "has_violations": report.has_violations,
                "has_errors": report.has_errors,
                "exit_code": int(report.exit_code)
            },
            "results": []
        }

        for result in report.results:
            if result.outcome == Outcome.PASS and not include_passed:
                continue
            output_data["results"].append(self._format_control(result))

        return output_data

    def _format_control(self, result: ControlResult) -> Dict[str, Any]:
        control_data = {
            "control_id": result.control_id,
            "title": result.title,
            "outcome": result.outcome.value,
            "impact": result.impact,
            "tags": result.tags,
            "has_errors": result.has_errors,
            "duration_ms": result.duration_ms,
            "assertions": [self._format_assertion(a) for a in result.assertions]
        }

        if result.skip_reason:
            control_data["skip_reason"] = result.skip_reason

        if result.references:
            control_data["references"] = result.references

        return control_data

    @staticmethod
    def _format_assertion(assertion: AssertionResult) -> Dict[str, Any]:
        assertion_data = {
            "subject": assertion.subject,
            "operator": assertion.operator.value if assertion.operator else None,
            "expected": to_jsonable(assertion.expected),
            "expectation": assertion.expectation,
            "actual": to_jsonable(assertion.actual),
            "outcome": assertion.outcome.value
        }

        if assertion.message:
            assertion_data["message"] = assertion.message

        if assertion.entity is not None:
            assertion_data["entity"] = assertion.entity

        return assertion_data

    def _json_serializer(self, obj: Any) -> Any:
        """Custom JSON serializer for special types"""
        if isinstance(obj, datetime):
            return obj.isoformat()
        return str(obj)
