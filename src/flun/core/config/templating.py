"""Domain-specific configuration for the template engine.

Provides typed, cached access to the ``templating`` and ``logging``
sections of the merged configuration.
"""
from __future__ import annotations

from functools import cached_property
from pathlib import Path
from typing import Any, Dict, List, Optional

from .manager import ConfigManager


class TemplatingConfig:
    """Typed accessor over the ``templating`` configuration section.

    Usage:
        cfg = TemplatingConfig(project_root=Path("/path/to/site"))
        cfg.template_root  # /path/to/site/templates
        cfg.max_passes     # 10
    """

    def __init__(
        self,
        project_root: Optional[Path] = None,
        *,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize from an explicit config dict or by loading the layers.

        Args:
            project_root: Project directory holding flun.yaml, templates/ and customize/
            config: Pre-merged configuration (skips loading when given)
        """
        manager = ConfigManager(project_root)
        self.project_root = manager.project_root
        self._config = config if config is not None else manager.load_config()

    @cached_property
    def section(self) -> Dict[str, Any]:
        return self._config.get("templating", {}) or {}

    @cached_property
    def logging_section(self) -> Dict[str, Any]:
        return self._config.get("logging", {}) or {}

    def _resolve(self, value: str) -> Path:
        path = Path(value)
        return path if path.is_absolute() else self.project_root / path

    @cached_property
    def template_root(self) -> Path:
        return self._resolve(self.section.get("template_dir", "templates"))

    @cached_property
    def customize_dir(self) -> Path:
        return self._resolve(self.section.get("customize_dir", "customize"))

    @cached_property
    def output_dir(self) -> Path:
        return self._resolve(self.section.get("output_dir", "dist"))

    @cached_property
    def max_passes(self) -> int:
        return int(self.section.get("max_passes", 10))

    @cached_property
    def max_conditional_passes(self) -> int:
        return int(self.section.get("max_conditional_passes", 20))

    @cached_property
    def expression_timeout_seconds(self) -> float:
        return float(self.section.get("expression_timeout_seconds", 1.5))

    @cached_property
    def recent_write_ttl_seconds(self) -> float:
        return float(self.section.get("recent_write_ttl_seconds", 1.5))

    @cached_property
    def base_template_name(self) -> str:
        return str(self.section.get("base_template_name", "base.html"))

    @cached_property
    def entry_marker(self) -> str:
        return str(self.section.get("entry_marker", "<!-- @entry -->"))

    @cached_property
    def entry_priority(self) -> List[str]:
        return [str(p) for p in self.section.get("entry_priority", []) or []]

    @cached_property
    def doctype(self) -> str:
        return str(self.section.get("doctype", "<!DOCTYPE html>"))

    @cached_property
    def log_level(self) -> str:
        return str(self.logging_section.get("level", "INFO")).upper()

    @cached_property
    def log_file(self) -> Optional[Path]:
        value = self.logging_section.get("file")
        return self._resolve(value) if value else None


__all__ = ["TemplatingConfig"]
