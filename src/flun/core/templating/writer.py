"""Output writing that records its own writes for file watchers."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from .context import RecentWrites

logger = logging.getLogger(__name__)


class TemplateFileWriter:
    """Write rendered pages and remember them in a ``RecentWrites`` record."""

    def __init__(self, recent_writes: RecentWrites) -> None:
        self.recent_writes = recent_writes

    def write_text(self, path: Union[str, Path], content: str) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        self.recent_writes.record(target)
        logger.debug("Wrote %s (%d chars)", target, len(content))
        return target


__all__ = ["TemplateFileWriter"]
