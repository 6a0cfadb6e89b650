"""Glob filters for source host/service matching (core domain)."""

from __future__ import annotations

import re
from typing import List, Optional


def compile_glob(pattern: str) -> re.Pattern:
    """Translate one glob into an anchored, case-insensitive regex.

    ``*`` matches any run of characters and ``?`` exactly one character;
    everything else is literal.
    """

    escaped = re.escape(pattern.strip())
    translated = escaped.replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(f"^{translated}$", re.IGNORECASE)


def compile_filter(raw_filter: Optional[str]) -> List[re.Pattern]:
    """Split a comma separated filter into compiled globs.

    An empty list means the group has no filter at all.
    """

    if not raw_filter:
        return []
    return [compile_glob(part) for part in raw_filter.split(",") if part.strip()]


def filter_allows(raw_filter: Optional[str], value: Optional[str]) -> bool:
    """Return True when ``value`` passes the filter.

    A missing filter or a missing value always passes; otherwise the value
    must match at least one of the globs.
    """

    patterns = compile_filter(raw_filter)
    if not patterns or not value:
        return True
    return any(pattern.match(value) for pattern in patterns)
