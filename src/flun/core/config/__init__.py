"""Layered configuration for flun (bundled YAML, project YAML, FLUN_* env)."""
from __future__ import annotations

from .manager import ConfigManager
from .templating import TemplatingConfig

__all__ = ["ConfigManager", "TemplatingConfig"]
