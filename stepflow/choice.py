"""Branching for Choice states."""

from __future__ import annotations

import fnmatch
import operator
import re
from typing import Any, Callable, Dict, Optional, Protocol

from .contracts import State
from .paths import query
from .utils.timestamps import parse_timestamp


class ChoiceEvaluator(Protocol):
    """Decides which state follows a Choice state."""

    def evaluate(self, state: State, input: Any) -> Optional[str]:
        """Return the next state name, or ``None`` if nothing matched."""


_COMPARISON = re.compile(
    r"^(?P<kind>String|Numeric|Boolean|Timestamp)"
    r"(?P<op>Equals|LessThanEquals|GreaterThanEquals|LessThan|GreaterThan)"
    r"(?P<path>Path)?$"
)

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "Equals": operator.eq,
    "LessThan": operator.lt,
    "GreaterThan": operator.gt,
    "LessThanEquals": operator.le,
    "GreaterThanEquals": operator.ge,
}

_RULE_KEYS = {"Variable", "Next", "Comment"}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce(kind: str, value: Any) -> Any:
    """Return ``value`` as a comparable of ``kind``, or ``None`` if it is not one."""
    if kind == "String":
        return value if isinstance(value, str) else None
    if kind == "Numeric":
        return value if _is_number(value) else None
    if kind == "Boolean":
        return value if isinstance(value, bool) else None
    return parse_timestamp(value)


def _string_matches(value: str, pattern: str) -> bool:
    # Only "*" is a wildcard; "\*" is a literal star, "[" and "?" are literal.
    pattern = pattern.replace("[", "[[]").replace("?", "[?]").replace("\\*", "[*]")
    return fnmatch.fnmatchcase(value, pattern)


class RuleChoiceEvaluator:
    """Evaluates ``Choices`` rules in order and falls back to ``Default``."""

    def evaluate(self, state: State, input: Any) -> Optional[str]:
        for rule in state.choices or []:
            if self.matches(rule, input):
                return rule["Next"]
        return state.default

    def matches(self, rule: Dict[str, Any], input: Any) -> bool:
        if "And" in rule:
            return all(self.matches(r, input) for r in rule["And"])
        if "Or" in rule:
            return any(self.matches(r, input) for r in rule["Or"])
        if "Not" in rule:
            return not self.matches(rule["Not"], input)

        variable = rule.get("Variable")
        if variable is None:
            raise ValueError(f"Choice rule has no 'Variable': {rule}")
        found = query(input, variable)

        if "IsPresent" in rule:
            return bool(found) == rule["IsPresent"]
        if not found:
            return False
        value = found[0]

        for key, expected in rule.items():
            if key not in _RULE_KEYS:
                return self._test(key, value, expected, input)
        raise ValueError(f"Choice rule has no comparison: {rule}")

    def _test(self, key: str, value: Any, expected: Any, input: Any) -> bool:
        if key == "IsNull":
            return (value is None) == expected
        if key == "IsNumeric":
            return _is_number(value) == expected
        if key == "IsString":
            return isinstance(value, str) == expected
        if key == "IsBoolean":
            return isinstance(value, bool) == expected
        if key == "IsTimestamp":
            return (parse_timestamp(value) is not None) == expected
        if key == "StringMatches":
            return isinstance(value, str) and _string_matches(value, expected)

        match = _COMPARISON.match(key)
        if match is None:
            raise ValueError(f"Unsupported choice comparison '{key}'")

        if match.group("path"):
            found = query(input, expected)
            if not found:
                return False
            expected = found[0]

        kind = match.group("kind")
        left, right = _coerce(kind, value), _coerce(kind, expected)
        if left is None or right is None:
            return False
        if kind == "Boolean" and match.group("op") != "Equals":
            raise ValueError(f"Unsupported choice comparison '{key}'")
        return _OPERATORS[match.group("op")](left, right)
