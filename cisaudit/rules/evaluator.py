"""
Predicate evaluation: applies assertion operators to resolved fact values
"""

import re
from typing import Any

from ..errors import FactError, PredicateError
from ..facts.models import FileFacts, Permissions, is_absent, to_jsonable
from .models import Assertion, Operator

_FILE_OPERATORS = (Operator.HAS_MODE, Operator.OWNED_BY, Operator.GROUPED_INTO)


class PredicateEvaluator:
    """Evaluates assertions against already resolved values

    Pure: no fact resolution and no side effects. Raises FactError when a
    file predicate presumes a file that does not exist, and PredicateError
    when the operator does not apply to the value's type.
    """

    def evaluate(self, assertion: Assertion, value: Any) -> bool:
        """Check whether a value satisfies an assertion"""
        result = self._dispatch(assertion, value)
        return not result if assertion.negate else result

    def actual_for(self, assertion: Assertion, value: Any) -> Any:
        """The part of a value worth showing next to a failed expectation"""
        if isinstance(value, FileFacts):
            if assertion.operator == Operator.EXISTS or not value.exists:
                return value.exists
            if assertion.operator == Operator.HAS_MODE:
                return value.permissions.octal if value.permissions else None
            if assertion.operator == Operator.OWNED_BY:
                return value.owner
            if assertion.operator == Operator.GROUPED_INTO:
                return value.group
        return to_jsonable(value)

    def _dispatch(self, assertion: Assertion, value: Any) -> bool:
        operator = assertion.operator
        if operator == Operator.EQUALS:
            return self._equals(value, assertion.expected)
        elif operator == Operator.NOT_EQUALS:
            return not self._equals(value, assertion.expected)
        elif operator == Operator.MATCHES:
            return self._matches(value, assertion.expected)
        elif operator == Operator.NOT_MATCHES:
            return not self._matches(value, assertion.expected)
        elif operator == Operator.CONTAINS:
            return self._contains(value, assertion.expected, assertion.pattern)
        elif operator == Operator.IS_EMPTY:
            return self._is_empty(value)
        elif operator == Operator.EXISTS:
            return self._exists(value)
        elif operator in _FILE_OPERATORS:
            return self._check_file(assertion, value)
        raise PredicateError(f"Unsupported operator: {operator}")

    def _equals(self, actual: Any, expected: Any) -> bool:
        """Structural equality; absent only equals the explicit absent literal"""
        if isinstance(actual, FileFacts):
            raise PredicateError("equals needs a file attribute; set 'field' on the file subject")
        if is_absent(actual) or is_absent(expected):
            return is_absent(actual) and is_absent(expected)
        # True == 1 in Python, but not in a configuration file
        if isinstance(actual, bool) != isinstance(expected, bool):
            return False
        return actual == expected

    def _matches(self, actual: Any, pattern: str) -> bool:
        """Regex search (not full match) against a string fact"""
        if is_absent(actual):
            return False
        return re.search(pattern, self._as_text(actual)) is not None

    def _contains(self, actual: Any, expected: Any, pattern: bool) -> bool:
        if is_absent(actual):
            return False
        if isinstance(actual, str):
            if pattern:
                return re.search(expected, actual) is not None
            return isinstance(expected, str) and expected in actual
        if isinstance(actual, dict):
            elements = list(actual.keys())
        elif isinstance(actual, (list, tuple)):
            elements = list(actual)
        else:
            raise PredicateError(f"contains needs a sequence, mapping or string, got {type(actual).__name__}")

        if pattern:
            return any(
                re.search(expected, self._as_text(element)) is not None
                for element in elements if not is_absent(element)
            )
        return any(self._equals(element, expected) for element in elements)

    def _is_empty(self, actual: Any) -> bool:
        if is_absent(actual):
            return True
        if isinstance(actual, (str, list, tuple, dict)):
            return len(actual) == 0
        raise PredicateError(f"is_empty needs a sequence, mapping or string, got {type(actual).__name__}")

    def _exists(self, actual: Any) -> bool:
        if isinstance(actual, FileFacts):
            return actual.exists
        return not is_absent(actual)

    def _check_file(self, assertion: Assertion, actual: Any) -> bool:
        if isinstance(actual, Permissions) and assertion.operator == Operator.HAS_MODE:
            return actual.allows(assertion.mode.capability, assertion.mode.by)
        if not isinstance(actual, FileFacts):
            raise PredicateError(f"{assertion.operator.value} needs a file subject")
        if not actual.exists:
            raise FactError(f"{actual.path} does not exist")

        if assertion.operator == Operator.HAS_MODE:
            if actual.permissions is None:
                raise FactError(f"No permission information for {actual.path}")
            return actual.permissions.allows(assertion.mode.capability, assertion.mode.by)
        elif assertion.operator == Operator.OWNED_BY:
            return actual.owner == assertion.expected
        return actual.group == assertion.expected

    @staticmethod
    def _as_text(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (str, int, float)):
            return str(value)
        raise PredicateError(f"Pattern operators need a string, got {type(value).__name__}")
