"""User function transformer for dynamic content.

Lets templates call Python functions supplied by the site's customize
modules. Functions are looked up in a ``FunctionRegistry`` and their return
value is stringified into the page.

Syntax:
    {{user: name()}}                 - Call with no arguments
    {{user: module.name("a", 2)}}    - Call with literal arguments
    {{user: name({{title}}, count)}} - Arguments taken from the variables

Arguments are split on commas without quote awareness, so a quoted argument
that itself contains a comma is split in two.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional

from flun.core.templating.sandbox import is_unsafe_key, to_display_string

from .base import ContentTransformer, TransformContext

logger = logging.getLogger(__name__)

# Type for registered functions
FunctionType = Callable[..., Any]

_DROP = object()

_NUMBER_PATTERN = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_INTEGER_PATTERN = re.compile(r"[-+]?\d+")
_QUOTED_PATTERN = re.compile(r"""^["'](.*)["']$""", re.DOTALL)
_REFERENCE_PATTERN = re.compile(r"\{\{(\w+)\}\}")

_KEYWORD_ARGS: Dict[str, Any] = {"true": True, "false": False, "null": None}


class FunctionRegistry:
    """Registry for template-callable user functions.

    Functions can be registered using the @register decorator:

        registry = FunctionRegistry()

        @registry.register("site.greet")
        def greet(name: str) -> str:
            return f"Hello, {name}!"
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._functions: Dict[str, FunctionType] = {}

    def register(self, name: str) -> Callable[[FunctionType], FunctionType]:
        """Decorator to register a function.

        Args:
            name: Name to register the function under

        Returns:
            Decorator that registers the function
        """
        def decorator(func: FunctionType) -> FunctionType:
            self._functions[name] = func
            return func
        return decorator

    def add(self, name: str, func: FunctionType) -> None:
        """Add a function to the registry."""
        self._functions[name] = func

    def get(self, name: str) -> Optional[FunctionType]:
        """Get a function by name, or None if not registered."""
        return self._functions.get(name)

    def call(self, name: str, *args: Any) -> Any:
        """Invoke a registered function.

        Raises:
            KeyError: If no function is registered under ``name``
        """
        func = self._functions.get(name)
        if func is None:
            raise KeyError(name)
        return func(*args)

    def clear(self) -> None:
        self._functions.clear()

    def __contains__(self, name: str) -> bool:
        """Check if a function is registered."""
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    def list_functions(self) -> List[str]:
        """List all registered function names."""
        return list(self._functions.keys())


def parse_arguments(raw: str, variables: Mapping[str, Any]) -> List[Any]:
    """Classify comma-separated call arguments.

    Each trimmed, non-empty argument is tried as: a quoted literal, a
    ``{{name}}`` reference, ``true``/``false``/``null``/``undefined``, a
    number, and finally a bare name looked up in ``variables`` (falling back
    to the raw text). Unsafe names and ``undefined`` are dropped entirely,
    shifting later arguments left.
    """
    args: List[Any] = []
    for piece in raw.split(","):
        arg = piece.strip()
        if arg == "":
            continue
        value = _classify_argument(arg, variables)
        if value is not _DROP:
            args.append(value)
    return args


def _classify_argument(arg: str, variables: Mapping[str, Any]) -> Any:
    quoted = _QUOTED_PATTERN.match(arg)
    if quoted:
        return quoted.group(1)

    reference = _REFERENCE_PATTERN.search(arg)
    if reference:
        name = reference.group(1)
        if is_unsafe_key(name):
            logger.warning("Dropping unsafe variable reference in function argument: %s", name)
            return _DROP
        if name in variables:
            return variables[name]

    if arg in _KEYWORD_ARGS:
        return _KEYWORD_ARGS[arg]
    if arg == "undefined":
        return _DROP
    if _NUMBER_PATTERN.fullmatch(arg):
        return int(arg) if _INTEGER_PATTERN.fullmatch(arg) else float(arg)

    if is_unsafe_key(arg):
        logger.warning("Dropping unsafe variable name in function argument: %s", arg)
        return _DROP
    return variables[arg] if arg in variables else arg


class FunctionTransformer(ContentTransformer):
    """Replace ``{{user: name(args)}}`` with the stringified call result.

    Unknown functions and functions that raise are logged at ERROR and
    render as an empty string.
    """

    FUNCTION_PATTERN = re.compile(r"\{\{\s*user:\s*([^\s()]+?)\s*\(([^)]*)\)\s*\}\}")

    def transform(self, content: str, context: TransformContext) -> str:
        def replacer(match: re.Match[str]) -> str:
            name, raw_args = match.group(1), match.group(2)
            return self._call(name, raw_args, context)

        return self.FUNCTION_PATTERN.sub(replacer, content)

    def _call(self, name: str, raw_args: str, context: TransformContext) -> str:
        if is_unsafe_key(name) or any(is_unsafe_key(part) for part in name.split(".")):
            logger.warning("Refusing to call unsafe function name: %s", name)
            return ""

        registry = context.functions
        func = registry.get(name) if registry is not None else None
        if func is None:
            logger.error("User function not found: %s", name)
            return ""

        args = parse_arguments(raw_args, context.variables)
        try:
            result = func(*args)
        except Exception as exc:  # user code: any failure degrades to ''
            logger.error("User function %s failed: %s", name, exc)
            return ""
        return to_display_string(result)


__all__ = ["FunctionRegistry", "FunctionTransformer", "FunctionType", "parse_arguments"]
