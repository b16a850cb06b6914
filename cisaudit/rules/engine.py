"""
Rule engine for loading controls and evaluating them against the host
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
import yaml
from pydantic import ValidationError

from ..config import AuditConfig, EnumerationPolicy
from ..errors import ControlLoadError, FactError, PredicateError
from ..facts.provider import FactProvider
from ..facts.subjects import EachSubject
from .evaluator import PredicateEvaluator
from .models import (
    Assertion, AssertionResult, AuditReport, Control, ControlResult, ControlSet,
    Outcome, aggregate_outcome,
)

logger = logging.getLogger(__name__)

RULE_FILE_PATTERNS = ("*.yaml", "*.yml")


class RuleEngine:
    """Engine for loading and executing compliance controls"""

    def __init__(self, config: Optional[AuditConfig] = None,
                 provider_factory: Optional[Callable[[], FactProvider]] = None,
                 rules_directory: Optional[str] = None):
        self.config = config or AuditConfig()
        self.controls: List[Control] = []
        self.evaluator = PredicateEvaluator()
        self.provider_factory = provider_factory or self._default_provider

        if rules_directory:
            self.load_rules_from_directory(rules_directory)

    def _default_provider(self) -> FactProvider:
        return FactProvider(
            command_timeout=self.config.command_timeout,
            os_release_path=self.config.os_release_path
        )

    # Loading

    def load_rules_from_directory(self, directory: str) -> int:
        """Load all YAML control files from a directory, in file name order"""
        rules_path = Path(directory)
        if not rules_path.is_dir():
            raise ControlLoadError(f"Rules directory not found: {directory}")

        files = sorted({f for pattern in RULE_FILE_PATTERNS for f in rules_path.glob(f"**/{pattern}")})
        loaded_count = 0
        for yaml_file in files:
            loaded_count += self.load_rules_from_file(str(yaml_file))
        return loaded_count

    def load_rules_from_file(self, file_path: str) -> int:
        """Load controls from a single YAML file

        Accepts a control set document (with ``controls``), a single control,
        or a list of controls. Any problem is a ControlLoadError.
        """
        try:
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ControlLoadError(f"Cannot read rule file: {e}", file_path) from e
        except yaml.YAMLError as e:
            raise ControlLoadError(f"Invalid YAML: {e}", file_path) from e

        try:
            if isinstance(data, dict) and 'controls' in data:
                controls = self._flatten_control_set(ControlSet.model_validate(data))
            elif isinstance(data, dict):
                controls = [Control.model_validate(data)]
            elif isinstance(data, list):
                controls = [Control.model_validate(item) for item in data]
            else:
                raise ControlLoadError("Expected a control, a list of controls or a control set", file_path)
        except ValidationError as e:
            raise ControlLoadError(f"Invalid control definition: {e}", file_path) from e

        for control in controls:
            self.add_control(control, source=file_path)

        logger.info("Loaded %d controls from %s", len(controls), file_path)
        return len(controls)

    def load_control_set(self, control_set: ControlSet) -> int:
        """Add every control of an in-memory control set"""
        controls = self._flatten_control_set(control_set)
        for control in controls:
            self.add_control(control)
        return len(controls)

    def add_control(self, control: Control, source: Optional[str] = None) -> None:
        """Add a single control, rejecting duplicate ids"""
        if self.get_control_by_id(control.id) is not None:
            raise ControlLoadError(f"Duplicate control id: {control.id}", source)
        self.controls.append(control)

    def get_control_by_id(self, control_id: str) -> Optional[Control]:
        """Get a control by its ID"""
        for control in self.controls:
            if control.id == control_id:
                return control
        return None

    @staticmethod
    def _flatten_control_set(control_set: ControlSet) -> List[Control]:
        # profile guards run before each control's own guards
        if not control_set.applicability:
            return list(control_set.controls)
        return [
            control.model_copy(update={
                "applicability": list(control_set.applicability) + list(control.applicability)
            })
            for control in control_set.controls
        ]

    # Running

    def run(self, control_ids: Optional[List[str]] = None,
            exclude_ids: Optional[List[str]] = None,
            tags: Optional[List[str]] = None,
            min_impact: Optional[float] = None,
            on_result: Optional[Callable[[ControlResult], None]] = None) -> AuditReport:
        """Evaluate the selected controls and return the report

        Controls are scheduled in declaration order on a bounded worker pool
        and share one fact provider (and its cache) for the whole run. An
        interrupt cancels pending controls and returns the partial report.
        """
        active_controls = self._filter_controls(control_ids, exclude_ids, tags, min_impact)
        provider = self.provider_factory()
        started_at = datetime.now(timezone.utc)
        results: List[ControlResult] = []
        interrupted = False

        logger.info("Evaluating %d controls with %d workers", len(active_controls), self.config.workers)
        executor = ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="cisaudit")
        try:
            futures = [executor.submit(self.evaluate_control, control, provider)
                       for control in active_controls]
            for future in as_completed(futures):
                result = future.result()
                results.append(result)
                if on_result:
                    on_result(result)
        except KeyboardInterrupt:
            interrupted = True
            logger.warning("Interrupted; %d of %d controls evaluated", len(results), len(active_controls))
        finally:
            executor.shutdown(wait=not interrupted, cancel_futures=interrupted)

        return AuditReport(
            results=results,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            interrupted=interrupted,
            controls_selected=len(active_controls)
        )

    def evaluate_control(self, control: Control, provider: FactProvider) -> ControlResult:
        """Run one control through its states: applicability, assertions, aggregation"""
        start_time = time.time()
        try:
            applicable, skip_reason = self._check_applicability(control, provider)
            if not applicable:
                logger.debug("Skipping %s: %s", control.id, skip_reason)
                return self._control_result(control, Outcome.SKIPPED, [], start_time, skip_reason)

            if control.informational:
                return self._control_result(
                    control, Outcome.SKIPPED, [], start_time,
                    "Informational control; requires manual review"
                )

            assertion_results: List[AssertionResult] = []
            for assertion in control.assertions:
                assertion_results.extend(self.evaluate_assertion(control.id, assertion, provider))

            outcome = aggregate_outcome(assertion_results)
            skip_reason = "No checks ran" if outcome == Outcome.SKIPPED else None
            return self._control_result(control, outcome, assertion_results, start_time, skip_reason)

        except Exception as e:
            logger.exception("Unexpected error evaluating control %s", control.id)
            failure = AssertionResult(
                control_id=control.id,
                subject="control evaluation",
                expectation="evaluation completes",
                outcome=Outcome.ERROR,
                message=f"Internal error: {e}"
            )
            return self._control_result(control, Outcome.FAIL, [failure], start_time)

    def evaluate_assertion(self, control_id: str, assertion: Assertion,
                           provider: FactProvider) -> List[AssertionResult]:
        """Evaluate one assertion; enumeration subjects yield one result per entity"""
        subject = assertion.subject
        if not isinstance(subject, EachSubject):
            return [self._check(control_id, assertion, subject, provider)]

        try:
            entities = provider.enumerate(subject)
        except FactError as e:
            return [self._result(control_id, assertion, subject.describe(), Outcome.ERROR, message=str(e))]

        if not entities:
            if self.config.empty_enumeration == EnumerationPolicy.SKIP:
                return [self._result(
                    control_id, assertion, subject.describe(), Outcome.SKIPPED,
                    message="No entities enumerated; check did not run"
                )]
            # vacuous truth: with nothing enumerated there is nothing to violate
            return [self._result(
                control_id, assertion, subject.describe(), Outcome.PASS,
                message="Vacuous pass: no entities enumerated"
            )]

        return [
            self._check(control_id, assertion, subject.bind(entity), provider, entity=entity)
            for entity in entities
        ]

    def _check(self, control_id: str, assertion: Assertion, subject: Any,
               provider: FactProvider, entity: Optional[str] = None) -> AssertionResult:
        description = assertion.description or subject.describe()
        try:
            value = provider.resolve(subject)
        except FactError as e:
            return self._result(control_id, assertion, description, Outcome.ERROR,
                                message=str(e), entity=entity)

        actual = self.evaluator.actual_for(assertion, value)
        try:
            passed = self.evaluator.evaluate(assertion, value)
        except (FactError, PredicateError) as e:
            return self._result(control_id, assertion, description, Outcome.ERROR,
                                actual=actual, message=str(e), entity=entity)

        outcome = Outcome.PASS if passed else Outcome.FAIL
        message = "" if passed else f"expected {assertion.expected_text()}"
        return self._result(control_id, assertion, description, outcome,
                            actual=actual, message=message, entity=entity)

    def _check_applicability(self, control: Control, provider: FactProvider) -> Tuple[bool, Optional[str]]:
        """All guards must pass; a guard that cannot be resolved means not applicable"""
        for guard in control.applicability:
            for result in self.evaluate_assertion(control.id, guard, provider):
                if result.outcome == Outcome.ERROR:
                    return False, f"Applicability could not be determined: {result.message}"
                if result.outcome != Outcome.PASS:
                    return False, f"Not applicable: {guard.describe()}"
        return True, None

    def _filter_controls(self, control_ids: Optional[List[str]] = None,
                         exclude_ids: Optional[List[str]] = None,
                         tags: Optional[List[str]] = None,
                         min_impact: Optional[float] = None) -> List[Control]:
        """Filter controls based on criteria, keeping declaration order"""
        filtered_controls = self.controls

        if control_ids:
            unknown = [cid for cid in control_ids if self.get_control_by_id(cid) is None]
            if unknown:
                logger.warning("Unknown control ids: %s", ", ".join(unknown))
            filtered_controls = [c for c in filtered_controls if c.id in control_ids]

        if exclude_ids:
            filtered_controls = [c for c in filtered_controls if c.id not in exclude_ids]

        if tags:
            filtered_controls = [c for c in filtered_controls if set(tags) & set(c.tags)]

        if min_impact is not None:
            filtered_controls = [c for c in filtered_controls if c.impact >= min_impact]

        return filtered_controls

    @staticmethod
    def _result(control_id: str, assertion: Assertion, subject: str, outcome: Outcome,
                actual: Any = None, message: str = "", entity: Optional[str] = None) -> AssertionResult:
        return AssertionResult(
            control_id=control_id,
            subject=subject,
            operator=assertion.operator,
            expected=assertion.expected,
            expectation=assertion.expected_text(),
            actual=actual,
            outcome=outcome,
            message=message,
            entity=entity
        )

    @staticmethod
    def _control_result(control: Control, outcome: Outcome, assertions: List[AssertionResult],
                        start_time: float, skip_reason: Optional[str] = None) -> ControlResult:
        return ControlResult(
            control_id=control.id,
            title=control.title,
            impact=control.impact,
            tags=list(control.tags),
            references=list(control.references),
            outcome=outcome,
            skip_reason=skip_reason,
            assertions=assertions,
            duration_ms=(time.time() - start_time) * 1000
        )

    def get_statistics(self) -> Dict[str, Any]:
        """Get statistics about loaded controls"""
        if not self.controls:
            return {'total_controls': 0}

        tag_counts: Dict[str, int] = {}
        for control in self.controls:
            for tag in control.tags:
                tag_counts[tag] = tag_counts.get(tag, 0) + 1

        return {
            'total_controls': len(self.controls),
            'informational_controls': len([c for c in self.controls if c.informational]),
            'total_assertions': sum(len(c.assertions) for c in self.controls),
            'average_impact': sum(c.impact for c in self.controls) / len(self.controls),
            'tag_counts': tag_counts,
            'control_ids': [control.id for control in self.controls]
        }
