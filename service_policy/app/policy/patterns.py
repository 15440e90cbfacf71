"""
Resource pattern matching.

Patterns are path templates:

- ``*`` or ``{name}`` matches exactly one path segment
- ``**`` matches any number of trailing or intermediate segments (including none)
- a ``*`` inside a segment matches any characters within that segment

``/api/v1/finance/**`` therefore matches ``/api/v1/finance`` and
``/api/v1/finance/invoices/42``.
"""

import re
from functools import lru_cache
from typing import Pattern, Tuple


def normalize_resource(resource: str) -> str:
    """Strip a trailing slash (except on the root path)."""
    if len(resource) > 1 and resource.endswith("/"):
        return resource.rstrip("/") or "/"
    return resource


@lru_cache(maxsize=4096)
def compile_pattern(pattern: str) -> Pattern[str]:
    segments = [s for s in normalize_resource(pattern).split("/") if s]
    regex = "^"
    for segment in segments:
        if segment == "**":
            regex += "(?:/[^/]+)*"
        elif segment == "*" or (segment.startswith("{") and segment.endswith("}")):
            regex += "/[^/]+"
        else:
            regex += "/" + "[^/]*".join(re.escape(part) for part in segment.split("*"))
    if not segments:
        regex += "/"
    return re.compile(regex + "$")


def matches(pattern: str, resource: str) -> bool:
    """True when the concrete ``resource`` path matches ``pattern``."""
    return compile_pattern(pattern).match(normalize_resource(resource)) is not None


def specificity(pattern: str) -> Tuple[int, int, int]:
    """Sort key ranking more specific patterns higher.

    Literal segments outrank single-segment wildcards, which outrank ``**``.
    """
    literal = single = 0
    segments = [s for s in pattern.split("/") if s]
    for segment in segments:
        if segment == "**":
            continue
        if segment == "*" or segment.startswith("{") or "*" in segment:
            single += 1
        else:
            literal += 1
    return literal, single, len(segments)
