"""Conditional transformer for dynamic content.

Syntax:
    {{if expr}}...{{endif}}
    {{if expr}}...{{else}}...{{endif}}
    {{if expr}}...{{else if expr}}...{{else}}...{{endif}}
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from flun.core.templating.sandbox import is_truthy

from .base import ContentTransformer, TransformContext

logger = logging.getLogger(__name__)


@dataclass
class _Branch:
    condition: Optional[str]  # None for the else branch
    body_start: int
    body_end: int = -1


@dataclass
class _IfBlock:
    start: int
    branches: List[_Branch] = field(default_factory=list)


class ConditionalProcessor(ContentTransformer):
    """Resolve ``{{if}}`` blocks, outermost first.

    The first branch whose condition is truthy is kept verbatim; if none is,
    the else branch (or nothing) is kept. When a kept branch still contains a
    nested ``{{if``, another conditional-only pass runs, up to
    ``context.max_conditional_passes``.
    """

    TAG_PATTERN = re.compile(
        r"\{\{\s*(?:"
        r"if\s+(?P<if>[^}]*?)"
        r"|else\s+if\s+(?P<elseif>[^}]*?)"
        r"|(?P<else>else)"
        r"|(?P<endif>endif)"
        r")\s*\}\}"
    )
    NESTED_IF_PATTERN = re.compile(r"\{\{\s*if\s")

    def transform(self, content: str, context: TransformContext) -> str:
        result = content
        for _ in range(context.max_conditional_passes):
            result, nested = self._process_once(result, context)
            if not nested:
                break
        return result

    def _process_once(self, content: str, context: TransformContext) -> Tuple[str, bool]:
        """Resolve every top-level if block once.

        Returns the new content and whether any kept branch holds a nested if.
        """
        pieces: List[str] = []
        pos = 0
        depth = 0
        block: Optional[_IfBlock] = None
        nested = False

        for match in self.TAG_PATTERN.finditer(content):
            if match.group("if") is not None:
                if depth == 0:
                    block = _IfBlock(start=match.start())
                    block.branches.append(_Branch(match.group("if").strip(), match.end()))
                depth += 1
            elif depth == 0 or block is None:
                # Stray else/endif outside any block stays as text.
                continue
            elif match.group("endif") is not None:
                depth -= 1
                if depth == 0:
                    block.branches[-1].body_end = match.start()
                    kept = self._choose_branch(content, block, context)
                    nested = nested or bool(self.NESTED_IF_PATTERN.search(kept))
                    pieces.append(content[pos:block.start])
                    pieces.append(kept)
                    pos = match.end()
                    block = None
            elif depth == 1:
                block.branches[-1].body_end = match.start()
                condition = match.group("elseif")
                block.branches.append(
                    _Branch(condition.strip() if condition is not None else None, match.end())
                )

        pieces.append(content[pos:])
        return "".join(pieces), nested

    def _choose_branch(self, content: str, block: _IfBlock, context: TransformContext) -> str:
        for branch in block.branches:
            if branch.condition is None:
                return content[branch.body_start:branch.body_end]
            # evaluate() logs failures and yields None, which is falsy.
            if is_truthy(context.evaluator.evaluate(branch.condition, context.variables)):
                return content[branch.body_start:branch.body_end]
        return ""


__all__ = ["ConditionalProcessor"]
