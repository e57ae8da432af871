"""TemplateEngine: page rendering and site compilation.

Rendering a page runs three stages:

1. INCLUDES    - ``[include path]`` spliced in (child and base separately)
2. COMPOSITION - ``[extends base]`` blocks merged, markers stripped, doctype ensured
3. DYNAMIC     - loops, conditionals, user functions and variables to a fixpoint

Usage:
    engine = TemplateEngine.from_config(TemplatingConfig(project_root))
    html = engine.render_page("index.html", {"title": "Home"})
    engine.compile_templates()
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

from flun.core.config.templating import TemplatingConfig
from flun.core.exceptions import TemplateResolutionError, TemplateStructureError
from flun.core.stdlib_logging import configure_logging

from .compositor import DEFAULT_DOCTYPE, compose_template, split_extends
from .context import DEFAULT_RECENT_WRITE_TTL, EngineContext
from .includes import IncludeResolver
from .sandbox import DEFAULT_TIMEOUT_SECONDS, ExpressionEvaluator
from .structure import StructureError, validate_structure
from .transformers import DEFAULT_MAX_CONDITIONAL_PASSES, DEFAULT_MAX_PASSES, TransformContext, build_pipeline
from .writer import TemplateFileWriter

logger = logging.getLogger(__name__)

DEFAULT_BASE_TEMPLATE_NAME = "base.html"
DEFAULT_ENTRY_MARKER = "<!-- @entry -->"
DEFAULT_ENTRY_PRIORITY = ("index.html", "main.html", "home.html")


class TemplateEngine:
    """Facade over includes, composition and the dynamic-content pipeline."""

    def __init__(
        self,
        template_root: Union[str, Path],
        *,
        engine_context: Optional[EngineContext] = None,
        config: Optional[TemplatingConfig] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            template_root: Directory all template paths are relative to
            engine_context: Shared feature/include state (a fresh one if omitted)
            config: Typed settings; built-in defaults apply when omitted
        """
        self.template_root = Path(template_root).resolve()
        self.config = config
        self.engine_context = engine_context or EngineContext(
            recent_write_ttl=config.recent_write_ttl_seconds if config else DEFAULT_RECENT_WRITE_TTL
        )

        self.max_passes = config.max_passes if config else DEFAULT_MAX_PASSES
        self.max_conditional_passes = (
            config.max_conditional_passes if config else DEFAULT_MAX_CONDITIONAL_PASSES
        )
        self.base_template_name = config.base_template_name if config else DEFAULT_BASE_TEMPLATE_NAME
        self.entry_marker = config.entry_marker if config else DEFAULT_ENTRY_MARKER
        self.entry_priority = list(config.entry_priority if config else DEFAULT_ENTRY_PRIORITY)
        self.doctype = config.doctype if config else DEFAULT_DOCTYPE
        self.output_dir = config.output_dir if config else self.template_root.parent / "dist"

        self.evaluator = ExpressionEvaluator(
            config.expression_timeout_seconds if config else DEFAULT_TIMEOUT_SECONDS
        )
        self.pipeline = build_pipeline(self.max_passes)
        self.includes = IncludeResolver(self.template_root, self.engine_context)
        self.writer = TemplateFileWriter(self.engine_context.recent_writes)

    @classmethod
    def from_config(cls, config: TemplatingConfig) -> "TemplateEngine":
        """Build an engine (and its context) from a loaded configuration.

        Installs the configured log handler and loads user features from the
        configured customize directory.
        """
        configure_logging(level=config.log_level, log_path=config.log_file)
        context = EngineContext(
            customize_dir=config.customize_dir,
            recent_write_ttl=config.recent_write_ttl_seconds,
        )
        context.reload_features()
        return cls(config.template_root, engine_context=context, config=config)

    # ---------- reading ----------

    def read_template(self, template_file: str) -> str:
        """Read a root-relative template or raise TemplateResolutionError."""
        path = (self.template_root / template_file).resolve()
        try:
            path.relative_to(self.template_root)
        except ValueError:
            raise TemplateResolutionError(
                f"Template path escapes the template root: {template_file}", path=template_file
            ) from None
        if not path.is_file():
            raise TemplateResolutionError(f"Template not found: {template_file}", path=template_file)
        return path.read_text(encoding="utf-8")

    # ---------- static stages ----------

    def resolve_includes(
        self,
        content: str,
        current_path: str = "",
        visited: Optional[Set[Path]] = None,
    ) -> str:
        return self.includes.resolve_includes(content, current_path, visited)

    def render_template(self, template_file: str) -> str:
        """Resolve includes and inheritance for one page (no dynamic tags).

        Raises:
            TemplateResolutionError: If the page or its ``[extends]`` base is missing
        """
        base_name, child = split_extends(self.read_template(template_file))
        child = self.resolve_includes(child, template_file)
        if base_name is None:
            return compose_template(child, doctype=self.doctype)

        base_path = self.includes.resolve_target(base_name, template_file)
        if base_path is None or not base_path.is_file():
            raise TemplateResolutionError(
                f"Base template not found: {base_name} (extended by {template_file})",
                path=base_name,
                referenced_from=template_file,
            )
        base_file = self.includes.relative_path(base_path)
        base = self.resolve_includes(base_path.read_text(encoding="utf-8"), base_file)
        logger.debug("Composing %s onto %s", template_file, base_file)
        return compose_template(base, child, doctype=self.doctype)

    # ---------- dynamic stage ----------

    def build_transform_context(self, variables: Optional[Mapping[str, Any]] = None) -> TransformContext:
        merged: Dict[str, Any] = dict(self.engine_context.variables)
        merged.update(variables or {})
        return TransformContext(
            variables=merged,
            functions=self.engine_context.functions,
            evaluator=self.evaluator,
            pipeline=self.pipeline,
            max_conditional_passes=self.max_conditional_passes,
        )

    def process_dynamic_content(self, content: str, variables: Optional[Mapping[str, Any]] = None) -> str:
        """Run loops, conditionals, user functions and variables to a fixpoint.

        Feature variables are overlaid with ``variables`` (request values win).
        """
        return self.pipeline.execute(content, self.build_transform_context(variables))

    def render_page(self, template_file: str, variables: Optional[Mapping[str, Any]] = None) -> str:
        """Fully render one page; ``currentUrl`` defaults to ``/<template_file>``."""
        page_vars: Dict[str, Any] = {"currentUrl": f"/{template_file}"}
        page_vars.update(variables or {})
        return self.process_dynamic_content(self.render_template(template_file), page_vars)

    # ---------- discovery and validation ----------

    def validate_template_file(self, template_file: str, lenient: bool = False) -> List[StructureError]:
        """Check block tag balance of a template.

        Args:
            template_file: Root-relative template path
            lenient: Log errors instead of raising

        Returns:
            The structure errors found (empty when valid)

        Raises:
            TemplateStructureError: On errors, unless ``lenient``
        """
        errors = validate_structure(self.read_template(template_file))
        if errors and not lenient:
            raise TemplateStructureError(template_file, errors)
        for error in errors:
            logger.warning("%s: %s", template_file, error)
        return errors

    def get_available_templates(self) -> List[str]:
        """List page templates (``*.html`` except the base template name)."""
        if not self.template_root.is_dir():
            raise TemplateResolutionError(
                f"Template directory not found: {self.template_root}", path=str(self.template_root)
            )
        pages = sorted(
            p.relative_to(self.template_root).as_posix()
            for p in self.template_root.rglob("*")
            if p.is_file() and p.suffix.lower() == ".html" and p.name != self.base_template_name
        )
        if not pages:
            raise TemplateResolutionError(
                f"No templates found in {self.template_root}", path=str(self.template_root)
            )
        return pages

    def find_entry_file(self, pages: Iterable[str]) -> str:
        """Pick the entry page: marker, then priority names, then alphabetical."""
        candidates = list(pages)
        if not candidates:
            raise TemplateResolutionError("No pages to choose an entry file from")

        for page in candidates:
            try:
                if self.entry_marker in self.read_template(page):
                    return page
            except TemplateResolutionError:
                logger.warning("Skipping unreadable page while looking for entry marker: %s", page)
        for name in self.entry_priority:
            if name in candidates:
                return name
        return sorted(candidates)[0]

    # ---------- compilation ----------

    def compile_templates(
        self,
        output_dir: Optional[Union[str, Path]] = None,
        pages: Optional[Iterable[str]] = None,
    ) -> List[Path]:
        """Render every page and write it under ``output_dir``.

        Pages that other pages include are not written on their own.

        Returns:
            Paths of the written files
        """
        target_dir = Path(output_dir) if output_dir is not None else self.output_dir
        context = self.engine_context
        if context.customize_dir is not None:
            context.reload_features(create=True)

        context.set_compilation_mode(True)
        try:
            page_list = list(pages) if pages is not None else self.get_available_templates()
            rendered: Dict[str, str] = {}
            for page in page_list:
                self.validate_template_file(page)
                rendered[page] = self.render_page(page)

            included = context.get_included_files()
            written: List[Path] = []
            for page, html in rendered.items():
                if page in included:
                    logger.debug("Skipping %s: included by another page", page)
                    continue
                written.append(self.writer.write_text(target_dir / page, html))
        finally:
            context.set_compilation_mode(False)

        logger.info("Compiled %d page(s) into %s", len(written), target_dir)
        return written


__all__ = [
    "DEFAULT_BASE_TEMPLATE_NAME",
    "DEFAULT_ENTRY_MARKER",
    "DEFAULT_ENTRY_PRIORITY",
    "TemplateEngine",
]
