"""Loading of user feature modules from the customize directory.

A feature module is any ``*.py`` file (except ``__init__.py``) that defines
one or both of:

    functions = {"slug": slugify}      # callable as {{user: <stem>.slug(...)}}
    variables = {"site_name": "Flun"}  # merged into every render

Modules are loaded in sorted order; later files win on variable clashes.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Tuple

from flun.core.utils import iter_python_files, load_module_from_path

from .context import EngineContext
from .transformers.functions import FunctionRegistry

logger = logging.getLogger(__name__)


def collect_features(customize_dir: Path) -> Tuple[Dict[str, Any], FunctionRegistry]:
    """Load every feature module in ``customize_dir``.

    Returns:
        The merged variables and a registry of ``<stem>.<name>`` functions
    """
    variables: Dict[str, Any] = {}
    registry = FunctionRegistry()

    for path in iter_python_files([customize_dir]):
        module = load_module_from_path(path)
        if module is None:
            continue

        functions = getattr(module, "functions", None)
        if isinstance(functions, Mapping):
            for name, func in functions.items():
                if callable(func):
                    registry.add(f"{path.stem}.{name}", func)
                else:
                    logger.warning("Ignoring non-callable function %s in %s", name, path.name)

        module_vars = getattr(module, "variables", None)
        if isinstance(module_vars, Mapping):
            variables.update(module_vars)

        logger.debug("Loaded feature module %s", path.name)

    return variables, registry


def load_user_features(
    customize_dir: Path,
    engine_context: EngineContext,
    *,
    create: bool = False,
) -> EngineContext:
    """Reload the feature registry of ``engine_context`` from ``customize_dir``.

    Args:
        customize_dir: Directory holding feature modules
        engine_context: Context whose registry is replaced
        create: Create the directory when missing (compilation)

    Returns:
        The same engine context, for chaining
    """
    customize_dir = Path(customize_dir)
    if not customize_dir.is_dir():
        if create:
            customize_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Created customize directory %s", customize_dir)
        engine_context.replace_features({}, FunctionRegistry())
        return engine_context

    variables, registry = collect_features(customize_dir)
    engine_context.replace_features(variables, registry)
    logger.info(
        "Loaded %d user function(s) and %d variable(s) from %s",
        len(registry),
        len(variables),
        customize_dir,
    )
    return engine_context


__all__ = ["collect_features", "load_user_features"]
