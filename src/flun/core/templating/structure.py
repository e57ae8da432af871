"""Strict structural validation of block tags.

Independent of the lenient scanner in ``blocks``: keeps an explicit stack of
open tags and reports every mismatch instead of stopping at the first one.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

INVALID_NAME_CHARS = ("[", "]", "{", "}", "~")


@dataclass(frozen=True)
class StructureError:
    line: int
    message: str

    def __str__(self) -> str:
        return f"line {self.line}: {self.message}"

    def to_dict(self) -> Dict[str, object]:
        return {"line": self.line, "message": self.message}


@dataclass(frozen=True)
class _OpenTag:
    name: str
    line: int


def _parse_tag(
    content: str,
    index: int,
    kind: str,
    line: int,
    errors: List[StructureError],
) -> Tuple[Optional[str], int]:
    """Parse the tag starting at ``index``.

    Returns ``(name, end_index)``. ``name`` is None for a malformed tag;
    ``end_index`` is -1 when the closing bracket is missing.
    """
    end = content.find("]", index)
    if end == -1:
        errors.append(StructureError(line, f"{kind} tag is missing its closing bracket"))
        return None, -1

    raw_name = content[index + 2:end]
    if raw_name.strip() == "":
        errors.append(StructureError(line, f"empty {kind} tag name"))
        return None, end

    found = [c for c in INVALID_NAME_CHARS if c in raw_name]
    if found:
        errors.append(
            StructureError(line, f"tag name '{raw_name}' contains invalid characters {','.join(found)}")
        )
        return None, end

    return raw_name.strip(), end


def validate_structure(content: str) -> List[StructureError]:
    """Check that every ``[!name]`` is closed by a matching ``[~name]``.

    Records mismatched closes, unmatched closes, blocks still open at end of
    input, and malformed tag names. Collection continues past errors; a tag
    missing its closing bracket ends the scan.
    """
    stack: List[_OpenTag] = []
    errors: List[StructureError] = []
    line = 1
    i = 0

    while i < len(content):
        char = content[i]
        if char == "\n":
            line += 1
        elif content.startswith("[!", i):
            name, end = _parse_tag(content, i, "open", line, errors)
            if end == -1:
                break
            if name is not None:
                stack.append(_OpenTag(name, line))
            line += content.count("\n", i, end)
            i = end
        elif content.startswith("[~", i):
            name, end = _parse_tag(content, i, "close", line, errors)
            if end == -1:
                break
            if name is not None:
                if not stack:
                    errors.append(StructureError(line, f"unexpected close tag '{name}'"))
                elif stack[-1].name == name:
                    stack.pop()
                else:
                    errors.append(
                        StructureError(
                            line, f"mismatched tag: expected '{stack[-1].name}' but found '{name}'"
                        )
                    )
            line += content.count("\n", i, end)
            i = end
        i += 1

    for tag in stack:
        errors.append(StructureError(tag.line, f"unclosed block '{tag.name}'"))

    return errors


__all__ = ["StructureError", "validate_structure"]
