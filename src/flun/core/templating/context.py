"""Engine-wide state passed explicitly to the components that need it.

``EngineContext`` owns what would otherwise be process globals: the loaded
feature registry (variables and user functions), the included-files
registry with its compilation-mode flag, and the record of recently written
output paths. Never share one context across concurrent compilation passes.
"""
from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set, Union

from .transformers.functions import FunctionRegistry

logger = logging.getLogger(__name__)

DEFAULT_RECENT_WRITE_TTL = 1.5


class RecentWrites:
    """Short-lived record of paths this process just wrote.

    File watchers consult it to ignore change events caused by the engine's
    own output. Entries expire ``ttl_seconds`` after being recorded.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_RECENT_WRITE_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _normalize(path: Union[str, Path]) -> str:
        return str(Path(path).resolve())

    def record(self, path: Union[str, Path]) -> None:
        with self._lock:
            self._entries[self._normalize(path)] = self._clock()

    def _prune(self) -> None:
        cutoff = self._clock() - self.ttl_seconds
        for key in [k for k, stamp in self._entries.items() if stamp < cutoff]:
            del self._entries[key]

    def contains(self, path: Union[str, Path]) -> bool:
        """True when ``path`` was recorded less than ``ttl_seconds`` ago."""
        with self._lock:
            self._prune()
            return self._normalize(path) in self._entries

    def __contains__(self, path: Union[str, Path]) -> bool:
        return self.contains(path)

    def __len__(self) -> int:
        with self._lock:
            self._prune()
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class EngineContext:
    """Feature registry, include tracking and write tracking for one engine.

    Usage:
        ctx = EngineContext()
        ctx.set_compilation_mode(True)   # clears included files
        ...                              # renders record included paths
        ctx.get_included_files()         # {"partials/header.html", ...}
        ctx.set_compilation_mode(False)
    """

    def __init__(
        self,
        *,
        customize_dir: Optional[Path] = None,
        recent_write_ttl: float = DEFAULT_RECENT_WRITE_TTL,
    ) -> None:
        self.customize_dir = Path(customize_dir) if customize_dir else None
        self.variables: Dict[str, Any] = {}
        self.functions = FunctionRegistry()
        self.included_files: Set[str] = set()
        self.compilation_mode = False
        self.recent_writes = RecentWrites(recent_write_ttl)

    # ---------- compilation mode / included files ----------

    def set_compilation_mode(self, mode: bool) -> None:
        """Toggle compilation mode; entering it clears the included-files registry."""
        if mode:
            self.included_files.clear()
        self.compilation_mode = bool(mode)

    def record_included(self, path: str) -> None:
        """Record a root-relative included path (only in compilation mode)."""
        if self.compilation_mode:
            self.included_files.add(path)

    def get_included_files(self) -> Set[str]:
        return set(self.included_files)

    # ---------- features ----------

    def replace_features(self, variables: Dict[str, Any], functions: FunctionRegistry) -> None:
        """Swap in a freshly loaded feature registry."""
        self.variables = variables
        self.functions = functions

    def reload_features(self, *, create: bool = False) -> None:
        """Reload user features from ``customize_dir``."""
        from .features import load_user_features

        if self.customize_dir is None:
            logger.debug("No customize directory configured; keeping empty feature registry")
            self.replace_features({}, FunctionRegistry())
            return
        load_user_features(self.customize_dir, self, create=create)

    def reset(self) -> None:
        """Drop all state: features, included files, mode and recent writes."""
        self.replace_features({}, FunctionRegistry())
        self.included_files.clear()
        self.compilation_mode = False
        self.recent_writes.clear()


__all__ = ["DEFAULT_RECENT_WRITE_TTL", "EngineContext", "RecentWrites"]
