"""
SARIF (Static Analysis Results Interchange Format) 2.1.0 reporter
"""

import json
from pathlib import Path
from typing import Any, Dict, List

from .. import __version__
from ..facts.models import display_value
from ..rules.models import AssertionResult, AuditReport, ControlResult, Outcome


class SARIFReporter:
    """SARIF 2.1.0 reporter for audit reports

    Every evaluated control becomes a rule; every failed assertion becomes a
    result. Assertions that could not be evaluated are reported as tool
    execution notifications, since they say nothing about compliance.
    """

    def __init__(self):
        self.sarif_version = "2.1.0"
        self.tool_name = "cisaudit"
        self.tool_version = __version__

    def export_sarif(self, report: AuditReport, output_file: str) -> None:
        """Export an audit report to SARIF format"""
        with open(output_file, 'w') as f:
            json.dump(self._create_sarif_document(report), f, indent=2)

    def create_sarif_string(self, report: AuditReport) -> str:
        """Create SARIF document as string"""
        return json.dumps(self._create_sarif_document(report), indent=2)

    def _create_sarif_document(self, report: AuditReport) -> Dict[str, Any]:
        rule_index = {result.control_id: index for index, result in enumerate(report.results)}

        return {
            "$schema": "https://json.schemastore.org/sarif-2.1.0.json",
            "version": self.sarif_version,
            "runs": [
                {
                    "tool": self._create_tool_component(report.results),
                    "invocations": [self._create_invocation(report)],
                    "results": self._create_results(report.results, rule_index)
                }
            ]
        }

    def _create_tool_component(self, results: List[ControlResult]) -> Dict[str, Any]:
        driver = {
            "name": self.tool_name,
            "version": self.tool_version,
            "fullName": "CIS benchmark host compliance auditor",
            "rules": [self._create_rule_definition(result) for result in results]
        }
        return {"driver": driver}

    def _create_rule_definition(self, result: ControlResult) -> Dict[str, Any]:
        rule_def = {
            "id": result.control_id,
            "name": result.control_id,
            "shortDescription": {
                "text": result.title
            },
            "defaultConfiguration": {
                "level": self._impact_to_sarif_level(result.impact)
            },
            "properties": {
                "tags": ["compliance"] + list(result.tags),
                "impact": result.impact
            }
        }

        urls = [ref for ref in result.references if ref.startswith(("http://", "https://"))]
        if urls:
            rule_def["helpUri"] = urls[0]

        return rule_def

    def _create_invocation(self, report: AuditReport) -> Dict[str, Any]:
        notifications = []
        for result in report.results:
            for assertion in result.assertions:
                if assertion.outcome == Outcome.ERROR:
                    notifications.append({
                        "level": "warning",
                        "message": {
                            "text": f"{result.control_id}: {assertion.subject}: {assertion.message}"
                        },
                        "associatedRule": {"id": result.control_id}
                    })

        invocation = {
            "executionSuccessful": not report.interrupted and not report.has_errors,
            "startTimeUtc": report.started_at.isoformat(),
            "endTimeUtc": report.finished_at.isoformat(),
            "workingDirectory": {
                "uri": Path.cwd().as_uri()
            },
            "properties": {
                "controlsSelected": report.controls_selected,
                "controlsEvaluated": len(report.results),
                "interrupted": report.interrupted
            }
        }

        if notifications:
            invocation["toolExecutionNotifications"] = notifications

        return invocation

    def _create_results(self, results: List[ControlResult],
                        rule_index: Dict[str, int]) -> List[Dict[str, Any]]:
        sarif_results = []

        for result in results:
            for assertion in result.assertions:
                if assertion.outcome != Outcome.FAIL:
                    continue
                sarif_result = {
                    "ruleId": result.control_id,
                    "ruleIndex": rule_index[result.control_id],
                    "level": self._impact_to_sarif_level(result.impact),
                    "message": {
                        "text": self._failure_message(assertion)
                    },
                    "properties": {
                        "subject": assertion.subject,
                        "expectation": assertion.expectation,
                        "actual": display_value(assertion.actual)
                    }
                }

                if assertion.entity is not None:
                    sarif_result["properties"]["entity"] = assertion.entity

                sarif_results.append(sarif_result)

        return sarif_results

    @staticmethod
    def _failure_message(assertion: AssertionResult) -> str:
        entity = f" [{assertion.entity}]" if assertion.entity else ""
        return (f"{assertion.subject}{entity}: expected {assertion.expectation}, "
                f"got {display_value(assertion.actual)}")

    def _impact_to_sarif_level(self, impact: float) -> str:
        """Convert control impact to SARIF level"""
        if impact >= 0.7:
            return "error"
        if impact >= 0.4:
            return "warning"
        return "note"
