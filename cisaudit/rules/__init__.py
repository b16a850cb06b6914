"""
Control definitions, predicate evaluation and the rule engine
"""

from .engine import RuleEngine
from .evaluator import PredicateEvaluator
from .models import Assertion, AuditReport, Control, ControlResult, ControlSet, Operator, Outcome

__all__ = [
    "RuleEngine", "PredicateEvaluator", "Assertion", "AuditReport", "Control",
    "ControlResult", "ControlSet", "Operator", "Outcome",
]
