"""Recursive ``[include path]`` resolution.

Includes are spliced in place. Paths starting with ``/`` resolve under the
template root; other paths resolve relative to the including file. Every
failure (escaping the root, cycles, unreadable files) drops the directive
with a warning and leaves the rest of the document intact.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Set, Tuple

from .context import EngineContext

logger = logging.getLogger(__name__)

# Quoted form first so it wins and can be left alone.
INCLUDE_PATTERN = re.compile(
    r"""(["'])\[include\s+([^\]]+)\](["'])|\[include\s+([\s\S]+?)\]""",
    re.IGNORECASE,
)


class IncludeResolver:
    """Resolve include directives against a fixed template root.

    Example:
        resolver = IncludeResolver(Path("templates"))
        html = resolver.resolve_includes("<body>[include partials/nav.html]</body>", "index.html")
    """

    def __init__(self, template_root: Path, engine_context: Optional[EngineContext] = None) -> None:
        self.template_root = Path(template_root).resolve()
        self.engine_context = engine_context

    def relative_path(self, path: Path) -> str:
        return path.relative_to(self.template_root).as_posix()

    def resolve_target(self, raw: str, current_path: str) -> Optional[Path]:
        """Return the absolute target for ``raw`` or None if it leaves the root."""
        target = raw.strip()
        if target.startswith("/"):
            candidate = self.template_root / target.lstrip("/")
        else:
            current_dir = (self.template_root / current_path).parent if current_path else self.template_root
            candidate = current_dir / target
        resolved = candidate.resolve()
        try:
            resolved.relative_to(self.template_root)
        except ValueError:
            return None
        return resolved

    def resolve_includes(
        self,
        content: str,
        current_path: str = "",
        visited: Optional[Set[Path]] = None,
    ) -> str:
        """Splice every include in ``content``.

        Args:
            content: Text containing ``[include ...]`` directives
            current_path: Root-relative path of the file ``content`` came from
            visited: Absolute paths already on the current inclusion chain

        Returns:
            Content with includes expanded (failed ones removed)
        """
        chain: Set[Path] = set(visited or ())
        current_abs = (self.template_root / current_path).resolve() if current_path else None
        if current_abs is not None:
            chain.add(current_abs)

        matches = list(INCLUDE_PATTERN.finditer(content))
        replacements: List[Tuple[int, int, str]] = []
        for match in reversed(matches):
            if match.group(1) and match.group(3):
                continue
            raw = match.group(4) if match.group(4) is not None else match.group(2)
            replacements.append((match.start(), match.end(), self._expand(raw, current_path, chain)))

        # Collected back to front; reassemble in document order.
        pieces: List[str] = []
        pos = 0
        for start, end, text in reversed(replacements):
            pieces.append(content[pos:start])
            pieces.append(text)
            pos = end
        pieces.append(content[pos:])
        return "".join(pieces)

    def _expand(self, raw: str, current_path: str, chain: Set[Path]) -> str:
        target = self.resolve_target(raw, current_path)
        if target is None:
            logger.warning("Include path escapes the template root: %s (from %s)", raw.strip(), current_path or "<root>")
            return ""
        if target in chain:
            logger.warning("Circular include skipped: %s (from %s)", raw.strip(), current_path or "<root>")
            return ""

        try:
            text = target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read include %s: %s", target, exc)
            return ""

        relative = self.relative_path(target)
        if self.engine_context is not None:
            self.engine_context.record_included(relative)
        return self.resolve_includes(text, relative, chain | {target})


__all__ = ["INCLUDE_PATTERN", "IncludeResolver"]
