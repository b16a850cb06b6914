"""
Data models for controls, assertions and evaluation results
"""

import re
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..facts.models import Capability, Principal
from ..facts.subjects import Subject


class Operator(str, Enum):
    """Assertion operators"""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    MATCHES = "matches"
    NOT_MATCHES = "not_matches"
    CONTAINS = "contains"
    IS_EMPTY = "is_empty"
    EXISTS = "exists"
    HAS_MODE = "has_mode"
    OWNED_BY = "owned_by"
    GROUPED_INTO = "grouped_into"


class Outcome(str, Enum):
    """Result granularity at assertion and control level"""
    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"
    SKIPPED = "skipped"


class ExitCode(IntEnum):
    """Process exit codes"""
    OK = 0
    VIOLATIONS = 1
    UNDETERMINED = 2
    LOAD_ERROR = 3
    INTERRUPTED = 130


class ModeSpec(BaseModel):
    """Permission to test: a capability, optionally for one principal"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    capability: Capability = Field(..., description="read, write or execute")
    by: Optional[Principal] = Field(None, description="owner, group or other (any when omitted)")

    def describe(self) -> str:
        return f"{self.capability.value} by {self.by.value if self.by else 'anyone'}"


class Assertion(BaseModel):
    """A single expected-vs-actual comparison"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    subject: Subject = Field(..., description="Fact reference")
    operator: Operator = Field(..., description="Comparison to apply")
    expected: Any = Field(None, description="Operator-specific literal (null means absent)")
    mode: Optional[ModeSpec] = Field(None, description="Permission spec for has_mode")
    pattern: bool = Field(default=False, description="contains: treat expected as a regex")
    negate: bool = Field(default=False, description="Invert the result ('should not')")
    description: Optional[str] = Field(None, description="Human description of the check")

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value

    @model_validator(mode="after")
    def _check_operands(self) -> "Assertion":
        if self.operator == Operator.HAS_MODE and self.mode is None:
            raise ValueError("has_mode requires 'mode'")
        if self.operator != Operator.HAS_MODE and self.mode is not None:
            raise ValueError(f"'mode' is only valid with has_mode, not {self.operator.value}")
        if self.operator in (Operator.OWNED_BY, Operator.GROUPED_INTO):
            if not isinstance(self.expected, str) or not self.expected:
                raise ValueError(f"{self.operator.value} requires a user or group name")
        regex = self.operator in (Operator.MATCHES, Operator.NOT_MATCHES) or (
            self.operator == Operator.CONTAINS and self.pattern
        )
        if regex:
            if not isinstance(self.expected, str):
                raise ValueError(f"{self.operator.value} requires a regex string")
            try:
                re.compile(self.expected)
            except re.error as e:
                raise ValueError(f"Invalid regex {self.expected!r}: {e}")
        return self

    def expected_text(self) -> str:
        """Expectation rendered for reports"""
        prefix = "not " if self.negate else ""
        if self.operator == Operator.HAS_MODE:
            return f"{prefix}{self.mode.describe()}"
        if self.operator in (Operator.IS_EMPTY, Operator.EXISTS):
            return f"{prefix}{self.operator.value.replace('_', ' ')}"
        if self.operator == Operator.CONTAINS and self.pattern:
            return f"{prefix}contains match /{self.expected}/"
        if self.operator in (Operator.MATCHES, Operator.NOT_MATCHES):
            return f"{prefix}{self.operator.value.replace('_', ' ')} /{self.expected}/"
        expected = "absent" if self.expected is None else repr(self.expected)
        if isinstance(self.expected, bool):
            expected = "true" if self.expected else "false"
        return f"{prefix}{self.operator.value.replace('_', ' ')} {expected}"

    def describe(self) -> str:
        if self.description:
            return self.description
        return f"{self.subject.describe()} {self.expected_text()}"


class Control(BaseModel):
    """A named compliance check: applicability guard, assertions and metadata"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, description="Unique control identifier")
    title: str = Field(..., description="Human-readable control title")
    description: Optional[str] = Field(None, description="Detailed control description")
    impact: float = Field(default=0.5, ge=0.0, le=1.0, description="Severity weight (informational)")
    references: List[str] = Field(default_factory=list, description="External references")
    tags: List[str] = Field(default_factory=list, description="Control tags")
    applicability: List[Assertion] = Field(default_factory=list, description="Guards; all must pass")
    assertions: List[Assertion] = Field(default_factory=list, description="Checks, in evaluation order")
    informational: bool = Field(default=False, description="Guidance only, no automated checks")

    @model_validator(mode="after")
    def _require_assertions(self) -> "Control":
        if not self.assertions and not self.informational:
            raise ValueError(f"control {self.id} has no assertions and is not marked informational")
        return self


class ControlSet(BaseModel):
    """Collection of controls sharing a profile-wide applicability guard"""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Control set name")
    version: str = Field(default="0.0.0", description="Control set version")
    description: Optional[str] = Field(None, description="Control set description")
    applicability: List[Assertion] = Field(default_factory=list, description="Guards applied to every control")
    controls: List[Control] = Field(..., description="Controls")

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, (int, float)) else value

    @model_validator(mode="after")
    def _unique_ids(self) -> "ControlSet":
        seen = set()
        for control in self.controls:
            if control.id in seen:
                raise ValueError(f"duplicate control id: {control.id}")
            seen.add(control.id)
        return self

    def get_control_by_id(self, control_id: str) -> Optional[Control]:
        for control in self.controls:
            if control.id == control_id:
                return control
        return None


class AssertionResult(BaseModel):
    """Outcome of one assertion (or of one entity of a fanned-out assertion)"""
    model_config = ConfigDict(frozen=True)

    control_id: str = Field(..., description="Owning control")
    subject: str = Field(..., description="Subject description")
    operator: Optional[Operator] = Field(None, description="Operator applied")
    expected: Any = Field(None, description="Expected literal")
    expectation: str = Field(..., description="Expectation rendered as text")
    actual: Any = Field(None, description="Resolved value, for diagnostics")
    outcome: Outcome = Field(..., description="pass, fail, error or skipped")
    message: str = Field(default="", description="Diagnostic message")
    entity: Optional[str] = Field(None, description="Entity id for enumerated subjects")


class ControlResult(BaseModel):
    """Aggregated outcome of one control"""
    model_config = ConfigDict(frozen=True)

    control_id: str = Field(..., description="Control identifier")
    title: str = Field(..., description="Control title")
    impact: float = Field(..., description="Control impact")
    tags: List[str] = Field(default_factory=list, description="Control tags")
    references: List[str] = Field(default_factory=list, description="Control references")
    outcome: Outcome = Field(..., description="Aggregated outcome")
    skip_reason: Optional[str] = Field(None, description="Why the control was skipped")
    assertions: List[AssertionResult] = Field(default_factory=list, description="Per-assertion results")
    duration_ms: float = Field(default=0.0, description="Evaluation time in milliseconds")

    @property
    def has_errors(self) -> bool:
        return any(a.outcome == Outcome.ERROR for a in self.assertions)

    @property
    def has_violations(self) -> bool:
        return any(a.outcome == Outcome.FAIL for a in self.assertions)

    @property
    def failed_assertions(self) -> List[AssertionResult]:
        """Assertions that failed or could not be evaluated"""
        return [a for a in self.assertions if a.outcome in (Outcome.FAIL, Outcome.ERROR)]


def aggregate_outcome(assertions: List[AssertionResult]) -> Outcome:
    """fail if any assertion failed or errored, skipped if none ran, otherwise pass"""
    if any(a.outcome in (Outcome.FAIL, Outcome.ERROR) for a in assertions):
        return Outcome.FAIL
    if assertions and all(a.outcome == Outcome.SKIPPED for a in assertions):
        return Outcome.SKIPPED
    return Outcome.PASS


def control_sort_key(control_id: str) -> List[Any]:
    """Natural sort key so that cis-docker-3.10 follows cis-docker-3.9"""
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", control_id)]


class AuditReport(BaseModel):
    """All control results of one evaluation run, ordered by control id"""
    model_config = ConfigDict(frozen=True)

    results: List[ControlResult] = Field(..., description="Control results")
    started_at: datetime = Field(..., description="Run start (UTC)")
    finished_at: datetime = Field(..., description="Run end (UTC)")
    interrupted: bool = Field(default=False, description="Run aborted before all controls finished")
    controls_selected: int = Field(default=0, description="Controls scheduled for evaluation")

    @field_validator("results")
    @classmethod
    def _ordered(cls, results: List[ControlResult]) -> List[ControlResult]:
        return sorted(results, key=lambda r: control_sort_key(r.control_id))

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def counts(self) -> Dict[str, int]:
        """Number of controls per outcome"""
        counts = {outcome.value: 0 for outcome in Outcome}
        for result in self.results:
            counts[result.outcome.value] += 1
        return counts

    @property
    def has_violations(self) -> bool:
        return any(r.has_violations for r in self.results)

    @property
    def has_errors(self) -> bool:
        return any(r.has_errors for r in self.results)

    @property
    def exit_code(self) -> ExitCode:
        if self.interrupted:
            return ExitCode.INTERRUPTED
        if self.has_violations:
            return ExitCode.VIOLATIONS
        if self.has_errors:
            return ExitCode.UNDETERMINED
        return ExitCode.OK

    def get_result(self, control_id: str) -> Optional[ControlResult]:
        for result in self.results:
            if result.control_id == control_id:
                return result
        return None
