"""Page-range selection used by the split and extract endpoints.

A page spec is a comma separated list of 1-based pages and ``a-b`` ranges,
e.g. ``"1-3,5,8-9"``. Parsing is permissive: parts that are malformed or
fall outside the document contribute nothing instead of raising.
"""

import re
from typing import List, Optional

# Leading integer only: "3abc" is 3, "1.5" is 1
_LEADING_INT = re.compile(r"\s*([+-]?[0-9]+)")


def _to_int(text: str) -> Optional[int]:
    match = _LEADING_INT.match(text)
    if match is None:
        return None
    return int(match.group(1))


def resolve(spec: Optional[str], total_pages: int) -> List[int]:
    """
    Resolve a page spec into zero-based page indices.

    Args:
        spec: Page spec string; empty or None selects every page
        total_pages: Number of pages in the document

    Returns:
        Indices in the order ``spec`` lists them, ascending within each
        range. Duplicates are preserved.
    """
    if not spec:
        return list(range(total_pages))

    indices: List[int] = []
    for part in spec.split(","):
        part = part.strip()
        if "-" in part:
            bounds = part.split("-")
            start, end = _to_int(bounds[0]), _to_int(bounds[1])
            if start is None or end is None:
                continue
            for page in range(max(1, start), min(total_pages, end) + 1):
                indices.append(page - 1)
        else:
            page = _to_int(part)
            if page is not None and 1 <= page <= total_pages:
                indices.append(page - 1)
    return indices


def split_groups(spec: Optional[str], total_pages: int) -> List[List[int]]:
    """Resolve ``spec`` for a split: every selected page becomes its own document."""
    return [[index] for index in resolve(spec, total_pages)]
