"""Input and output processing for state data.

Implements the four transforms applied around every state:

* ``InputPath`` selects the part of the state input handed to the work.
* ``Parameters`` rebuilds that input from literals and ``.$`` path references.
* ``ResultPath`` weaves the work's result back into the original state input.
* ``OutputPath`` selects the part of that combined value passed on.

Paths use a restricted JSONPath syntax: ``$`` for the root, dotted or
bracketed segments for addressing (``$.a.b``, ``$['a b']``, ``$.items[0]``)
and ``$$`` for the context object. Wildcards and filters are not supported.

Null and omitted are different for every path field, so callers pass
:data:`OMITTED` when a field is absent from the state definition.
"""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, List, Optional, Union

from .errors import (
    InvalidInputPathError,
    InvalidOutputPathError,
    InvalidParametersError,
    InvalidResultPathError,
    PathSyntaxError,
)

Segment = Union[str, int]

ROOT = "$"
CONTEXT_ROOT = "$$"
PARAMETER_SUFFIX = ".$"

_SEGMENT = re.compile(
    r"""\.(?P<name>[^.\[\]]+)"""
    r"""|\[(?P<index>-?\d+)\]"""
    r"""|\[(?P<quote>['"])(?P<key>.*?)(?P=quote)\]"""
)


class _Omitted:
    """Marker for a path field that does not appear in the definition."""

    _instance: Optional["_Omitted"] = None

    def __new__(cls) -> "_Omitted":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return "OMITTED"

    def __bool__(self) -> bool:
        return False


OMITTED = _Omitted()
_MISSING = object()


def parse_path(path: str) -> List[Segment]:
    """Split ``path`` into segments, keeping the root marker first.

    ``"$.a[0]['b c']"`` becomes ``["$", "a", 0, "b c"]``. A path without a
    leading ``$`` is read relative to the root.
    """
    if not isinstance(path, str) or not path:
        raise PathSyntaxError(f"Invalid path {path!r}")

    if path.startswith(CONTEXT_ROOT):
        segments: List[Segment] = [CONTEXT_ROOT]
        rest = path[2:]
    elif path.startswith(ROOT):
        segments = [ROOT]
        rest = path[1:]
    else:
        segments = [ROOT]
        rest = path if path.startswith((".", "[")) else f".{path}"

    pos = 0
    while pos < len(rest):
        match = _SEGMENT.match(rest, pos)
        if match is None:
            raise PathSyntaxError(f"Invalid path {path!r} at position {pos}")
        if match.group("name") is not None:
            segments.append(match.group("name"))
        elif match.group("index") is not None:
            segments.append(int(match.group("index")))
        else:
            segments.append(match.group("key"))
        pos = match.end()

    return segments


def query(data: Any, path: str, context: Optional[Dict[str, Any]] = None) -> List[Any]:
    """Evaluate ``path`` against ``data``.

    Returns a list holding the matched value, or an empty list when nothing
    matches. ``$$`` paths are resolved against ``context``.
    """
    segments = parse_path(path)
    if segments[0] == CONTEXT_ROOT:
        if context is None:
            return []
        current = context
    else:
        current = data

    for segment in segments[1:]:
        current = _child(current, segment)
        if current is _MISSING:
            return []
    return [current]


def _child(container: Any, segment: Segment) -> Any:
    if isinstance(segment, int):
        if isinstance(container, list) and -len(container) <= segment < len(container):
            return container[segment]
        return _MISSING
    if isinstance(container, dict) and segment in container:
        return container[segment]
    return _MISSING


def apply_input_path(input: Any, input_path: Any = OMITTED) -> Any:
    """Select the portion of ``input`` handed to the state's work."""
    if input_path is OMITTED:
        input_path = ROOT
    if input_path is None:
        return {}

    matches = query(input, input_path)
    if not matches:
        raise InvalidInputPathError(
            f"Invalid InputPath '{input_path}': The Input path references an invalid value."
        )
    return copy.deepcopy(matches[0])


def apply_parameters(
    input: Any,
    parameters: Any = OMITTED,
    context: Optional[Dict[str, Any]] = None,
) -> Any:
    """Build the effective input from a ``Parameters`` template."""
    if parameters is OMITTED or parameters is None:
        return input
    return _resolve_parameters(input, parameters, context)


def _resolve_parameters(input: Any, params: Any, context: Optional[Dict[str, Any]]) -> Any:
    if isinstance(params, list):
        return [_resolve_parameters(input, item, context) for item in params]
    if not isinstance(params, dict):
        return copy.deepcopy(params)

    resolved: Dict[str, Any] = {}
    for key, value in params.items():
        if key.endswith(PARAMETER_SUFFIX):
            if not isinstance(value, str):
                raise InvalidParametersError(
                    f"The value for the field '{key}' must be a path, got {value!r}"
                )
            matches = query(input, value, context)
            if not matches:
                raise InvalidParametersError(
                    f"The JSONPath '{value}' specified for the field '{key}' "
                    "could not be found in the input"
                )
            resolved[key[: -len(PARAMETER_SUFFIX)]] = copy.deepcopy(matches[0])
        else:
            resolved[key] = _resolve_parameters(input, value, context)
    return resolved


def apply_result_path(input: Any, result_path: Any, result: Any) -> Any:
    """Merge a state's ``result`` into its original ``input``."""
    if result_path is OMITTED or result_path == ROOT:
        return result
    if result_path is None:
        return input

    segments = parse_path(result_path)
    if segments[0] == CONTEXT_ROOT:
        raise InvalidResultPathError(
            f"Invalid ResultPath '{result_path}': the context object is read-only"
        )
    if len(segments) > 1:
        segments = segments[1:]

    if not isinstance(input, (dict, list)):
        raise InvalidResultPathError(
            f"Unable to apply ResultPath '{result_path}' to input {input!r}"
        )
    output = copy.deepcopy(input)

    current = output
    for segment, following in zip(segments, segments[1:]):
        child = _child(current, segment) if _is_addressable(current, segment) else _MISSING
        if child is _MISSING:
            child = [] if isinstance(following, int) else {}
            _put(current, segment, child, result_path)
        elif not isinstance(child, (dict, list)):
            raise InvalidResultPathError(
                f"Unable to apply ResultPath '{result_path}': "
                f"'{segment}' holds a {type(child).__name__}"
            )
        current = child

    _put(current, segments[-1], result, result_path)
    return output


def _is_addressable(container: Any, segment: Segment) -> bool:
    return isinstance(container, dict) or (
        isinstance(container, list) and isinstance(segment, int)
    )


def _put(container: Any, segment: Segment, value: Any, result_path: str) -> None:
    if isinstance(container, dict):
        container[segment if isinstance(segment, str) else str(segment)] = value
        return
    if isinstance(container, list) and isinstance(segment, int) and segment >= 0:
        while len(container) <= segment:
            container.append(None)
        container[segment] = value
        return
    raise InvalidResultPathError(
        f"Unable to apply ResultPath '{result_path}' at segment {segment!r}"
    )


def apply_output_path(
    data: Any, output_path: Any = OMITTED, state_name: Optional[str] = None
) -> Any:
    """Select the portion of ``data`` passed to the next state."""
    if output_path is None:
        return {}

    path = output_path or ROOT
    matches = query(data, path)
    # Only a missing match is an error; a matched 0, false or "" is valid output.
    if not matches:
        raise InvalidOutputPathError(state_name, path)
    return matches[0]
