from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from flun.core.templating.structure import StructureError


class FlunError(Exception):
    """Base exception for the flun template engine."""

    context: Dict[str, Any]

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        if context is not None:
            # Store a shallow copy to avoid accidental mutation.
            self.context = dict(context)
        else:
            self.context = {}

    def to_json_error(self) -> Dict[str, Any]:
        """Return a JSON-serializable error payload."""
        return {
            "message": str(self),
            "code": self.__class__.__name__,
            "context": self.context,
        }


class ConfigurationError(FlunError, ValueError):
    """Raised when the layered configuration is invalid."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        FlunError.__init__(self, message, context=context)
        ValueError.__init__(self, message)


class TemplateStructureError(FlunError, ValueError):
    """Raised when a template has unbalanced or malformed block tags."""

    def __init__(
        self,
        template: str,
        errors: Sequence["StructureError"],
        *,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self.template = template
        self.errors: List["StructureError"] = list(errors)
        lines = "\n".join(str(e) for e in self.errors)
        message = f"Template {template} has structure errors:\n{lines}"
        ctx = dict(context or {})
        ctx.setdefault("template", template)
        ctx.setdefault("errors", [e.to_dict() for e in self.errors])
        FlunError.__init__(self, message, context=ctx)
        ValueError.__init__(self, message)


class TemplateResolutionError(FlunError, FileNotFoundError):
    """Raised when a page or its [extends] base template cannot be loaded."""

    def __init__(
        self,
        message: str = "",
        *,
        path: Optional[str] = None,
        referenced_from: Optional[str] = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if path is not None:
            ctx.setdefault("path", path)
        if referenced_from is not None:
            ctx.setdefault("referenced_from", referenced_from)
        FlunError.__init__(self, message, context=ctx)
        FileNotFoundError.__init__(self, message)


class ExpressionError(FlunError, ValueError):
    """Raised for syntax or runtime failures inside the expression sandbox."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        FlunError.__init__(self, message, context=context)
        ValueError.__init__(self, message)


class ExpressionTimeout(ExpressionError):
    """Raised when an expression exceeds its wall-clock budget."""


__all__ = [
    "FlunError",
    "ConfigurationError",
    "TemplateStructureError",
    "TemplateResolutionError",
    "ExpressionError",
    "ExpressionTimeout",
]
