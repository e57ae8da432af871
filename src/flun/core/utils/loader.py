"""Dynamic module loading for user feature files.

Feature modules are plain ``*.py`` files in the project's customize
directory. They are executed in isolation and never registered in
``sys.modules`` so a reload always sees fresh code.
"""
from __future__ import annotations

import importlib.util
import logging
from pathlib import Path
from types import ModuleType
from typing import Iterable, Optional, Set

logger = logging.getLogger(__name__)


def iter_python_files(
    dirs: Iterable[Path],
    exclude: Optional[Set[str]] = None,
) -> Iterable[Path]:
    """Yield all *.py files from existing directories in order.

    Args:
        dirs: Directories to search (in order)
        exclude: Set of filenames to exclude (default: {"__init__.py"})

    Yields:
        Paths to Python files
    """
    if exclude is None:
        exclude = {"__init__.py"}

    for d in dirs:
        if not d or not d.exists():
            continue
        for path in sorted(d.glob("*.py")):
            if path.is_file() and path.name not in exclude:
                yield path


def load_module_from_path(
    path: Path,
    namespace: str = "flun.features",
) -> Optional[ModuleType]:
    """Dynamically load a Python module from file without adding to sys.modules.

    Args:
        path: Path to the .py file
        namespace: Module namespace prefix for the loaded module

    Returns:
        Loaded module or None on failure
    """
    module_name = f"{namespace}.{path.stem.replace('-', '_')}"
    try:
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec and spec.loader:
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)  # type: ignore[attr-defined]
            return module
    except Exception as e:
        logger.warning("Failed to load module %s: %s", path, e)
    return None


__all__ = ["iter_python_files", "load_module_from_path"]
