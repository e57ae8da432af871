"""Template inheritance: merge a child's blocks into its base template.

A child names its base on the first line::

    [extends base.html]
    [!title]About us[~title]

Each child block replaces the same-named block of the base, pairing the
i-th occurrence in the child with the i-th occurrence in the base. Surplus
occurrences on either side are ignored (the base keeps its own content).
"""
from __future__ import annotations

import re
from typing import List, Optional, Tuple

from .blocks import locate_blocks, strip_markers

DEFAULT_DOCTYPE = "<!DOCTYPE html>"

EXTENDS_PATTERN = re.compile(
    r"^\[\s*extends\s+([^\]]+?)\s*\][^\r\n]*(?:\r\n|\n|\r|$)",
    re.IGNORECASE,
)


def split_extends(content: str) -> Tuple[Optional[str], str]:
    """Return ``(base_name, body)``; base_name is None without a directive.

    The whole directive line, including anything after the closing bracket,
    is removed from the body.
    """
    match = EXTENDS_PATTERN.match(content)
    if not match:
        return None, content
    return match.group(1).strip(), content[match.end():]


def merge_blocks(base: str, child: str) -> str:
    """Replace base blocks with the positionally paired child blocks."""
    base_blocks = locate_blocks(base)
    child_blocks = locate_blocks(child)

    replacements: List[Tuple[int, int, str]] = []
    for name, child_occurrences in child_blocks.items():
        base_occurrences = base_blocks.get(name, [])
        for base_occ, child_occ in zip(base_occurrences, child_occurrences):
            replacements.append((base_occ.start, base_occ.end, child_occ.inner_content))

    result = base
    for start, end, inner in sorted(replacements, key=lambda r: r[0], reverse=True):
        result = result[:start] + inner + result[end:]
    return result


def ensure_doctype(html: str, doctype: str = DEFAULT_DOCTYPE) -> str:
    """Prepend ``doctype`` unless the trimmed document already starts with one."""
    if not doctype or html.strip().lower().startswith("<!doctype"):
        return html
    return f"{doctype}\n{html}"


def compose_template(base: str, child: str = "", *, doctype: str = DEFAULT_DOCTYPE) -> str:
    """Merge ``child`` into ``base``, strip leftover markers and ensure a doctype.

    Variable and expression syntax passes through untouched.
    """
    merged = merge_blocks(base, child) if child else base
    return ensure_doctype(strip_markers(merged), doctype)


__all__ = [
    "DEFAULT_DOCTYPE",
    "EXTENDS_PATTERN",
    "compose_template",
    "ensure_doctype",
    "merge_blocks",
    "split_extends",
]
