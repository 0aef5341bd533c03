"""
Activity predicates: when should a unit be mounted for a location.
"""

from __future__ import annotations

import re
from typing import Any, Callable, List, Pattern

from switchyard.errors import RegistrationError
from switchyard.navigation import Location

ActivityFn = Callable[[Location], bool]

_DYNAMIC_SEGMENT = "[^/]+/?"


def _path_regex(path: str, exact_match: bool) -> Pattern[str]:
    if not path.startswith("/"):
        path = "/" + path

    regex = "^"
    last_index = 0
    in_dynamic = False

    def append(index: int) -> None:
        nonlocal regex, last_index, in_dynamic
        regex += _DYNAMIC_SEGMENT if in_dynamic else re.escape(path[last_index:index])

        if index == len(path):
            if in_dynamic:
                if exact_match:
                    regex += "$"
            else:
                suffix = "" if exact_match else ".*"
                if regex.endswith("/"):
                    regex = f"{regex}{suffix}$"
                else:
                    regex = f"{regex}(/{suffix})?(#.*)?$"

        in_dynamic = not in_dynamic
        last_index = index

    for index, char in enumerate(path):
        start_of_dynamic = not in_dynamic and char == ":"
        end_of_dynamic = in_dynamic and char == "/"
        if start_of_dynamic or end_of_dynamic:
            append(index)

    append(len(path))
    return re.compile(regex, re.IGNORECASE)


def path_to_active_when(path: str, exact_match: bool = False) -> ActivityFn:
    """
    Build a predicate matching locations under ``path``.

    ``:name`` segments match any single path segment. Matching ignores
    case, the query string and (unless exact) anything below the path.
    """
    regex = _path_regex(path, exact_match)

    def active_when(location: Location) -> bool:
        if isinstance(location, str):
            location = Location.parse(location)
        return regex.match(location.route) is not None

    active_when.__name__ = f"active_when({path!r})"
    return active_when


def sanitize_active_when(value: Any) -> ActivityFn:
    """Accept a path, a predicate, or a list of either."""
    candidates: List[Any] = list(value) if isinstance(value, (list, tuple)) else [value]
    if not candidates:
        raise RegistrationError("active_when must not be empty")

    predicates: List[ActivityFn] = []
    for candidate in candidates:
        if isinstance(candidate, str):
            predicates.append(path_to_active_when(candidate))
        elif callable(candidate):
            predicates.append(candidate)
        else:
            raise RegistrationError(
                "active_when must be a path string, a function, or a list of them"
            )

    if len(predicates) == 1:
        return predicates[0]

    def any_active(location: Location) -> bool:
        return any(predicate(location) for predicate in predicates)

    return any_active
