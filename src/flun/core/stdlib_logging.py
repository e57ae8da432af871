from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_FLUN_HANDLER: logging.Handler | None = None
_CONFIGURED_TARGET: str | None = None


def _level_from_name(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(*, level: str = "INFO", log_path: Optional[Path] = None) -> None:
    """Attach a single flun handler to the ``flun`` logger.

    Writes to ``log_path`` when given, otherwise to stderr. Idempotent per
    target: calling again with the same target only updates the level.
    """
    global _FLUN_HANDLER, _CONFIGURED_TARGET

    target = str(Path(log_path).resolve()) if log_path else "<stderr>"
    logger = logging.getLogger("flun")
    logger.setLevel(_level_from_name(level))

    if _FLUN_HANDLER is not None and _CONFIGURED_TARGET == target:
        _FLUN_HANDLER.setLevel(_level_from_name(level))
        return

    if _FLUN_HANDLER is not None:
        logger.removeHandler(_FLUN_HANDLER)
        _FLUN_HANDLER.close()
        _FLUN_HANDLER = None

    if log_path:
        Path(target).parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(target, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(_level_from_name(level))
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)

    _FLUN_HANDLER = handler
    _CONFIGURED_TARGET = target


def reset_logging_for_tests() -> None:
    """Test-only: remove the flun handler."""
    global _FLUN_HANDLER, _CONFIGURED_TARGET
    if _FLUN_HANDLER is not None:
        logging.getLogger("flun").removeHandler(_FLUN_HANDLER)
        _FLUN_HANDLER.close()
    _FLUN_HANDLER = None
    _CONFIGURED_TARGET = None


__all__ = ["LOG_FORMAT", "configure_logging", "reset_logging_for_tests"]
