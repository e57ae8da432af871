"""Block scanning for template inheritance.

Block syntax:
    [!name] default content [~name]

Matching is positional and ignores nesting: every open tag is
paired with the first textually-following close tag of the same name, even
when other tags sit in between. Use ``structure.validate_structure`` for a
strict balance check.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List

OPEN_TAG = "[!"
CLOSE_TAG_TEMPLATE = "[~{name}]"

# Any open or close marker, as written.
TEMPLATE_TAG_PATTERN = re.compile(r"\[!([^\]]*?)\]|\[~([^\]]*?)\]")


@dataclass(frozen=True)
class BlockOccurrence:
    """One ``[!name]...[~name]`` region.

    ``start`` is the index of the open tag, ``end`` the index just past the
    close tag, so ``content[start:end]`` is the full tagged span.
    """

    start: int
    end: int
    inner_content: str


def locate_blocks(content: str) -> Dict[str, List[BlockOccurrence]]:
    """Map block names to their occurrences in document order.

    Open tags without a following close tag are skipped. Never raises.
    """
    blocks: Dict[str, List[BlockOccurrence]] = {}
    index = 0

    while index < len(content):
        start = content.find(OPEN_TAG, index)
        if start == -1:
            break
        open_end = content.find("]", start)
        if open_end == -1:
            break

        name = content[start + 2:open_end].strip()
        close_tag = CLOSE_TAG_TEMPLATE.format(name=name)
        close_start = content.find(close_tag, open_end + 1)
        if close_start == -1:
            index = open_end + 1
            continue

        end = close_start + len(close_tag)
        blocks.setdefault(name, []).append(
            BlockOccurrence(start=start, end=end, inner_content=content[open_end + 1:close_start])
        )
        index = end

    return blocks


def strip_markers(content: str) -> str:
    """Remove every block open/close marker, leaving other text untouched."""
    return TEMPLATE_TAG_PATTERN.sub("", content)


__all__ = ["BlockOccurrence", "locate_blocks", "strip_markers", "TEMPLATE_TAG_PATTERN"]
