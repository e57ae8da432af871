"""Template engine: block scanning, validation, includes, inheritance and
dynamic content.

Public entry points:
    TemplateEngine        - render pages and compile a site
    locate_blocks         - find [!name]...[~name] regions
    validate_structure    - strict tag balance check
    strip_markers         - remove block markers
    compose_template      - merge a child into its base
    ExpressionEvaluator   - sandboxed expression evaluation
"""
from __future__ import annotations

from .blocks import BlockOccurrence, locate_blocks, strip_markers
from .compositor import compose_template, split_extends
from .context import EngineContext, RecentWrites
from .engine import TemplateEngine
from .features import load_user_features
from .includes import IncludeResolver
from .sandbox import ExpressionEvaluator, UNSAFE_KEYS, get_by_path, to_display_string
from .structure import StructureError, validate_structure
from .transformers import FunctionRegistry, TransformContext, TransformerPipeline, build_pipeline
from .writer import TemplateFileWriter

__all__ = [
    "BlockOccurrence",
    "EngineContext",
    "ExpressionEvaluator",
    "FunctionRegistry",
    "IncludeResolver",
    "RecentWrites",
    "StructureError",
    "TemplateEngine",
    "TemplateFileWriter",
    "TransformContext",
    "TransformerPipeline",
    "UNSAFE_KEYS",
    "build_pipeline",
    "compose_template",
    "get_by_path",
    "load_user_features",
    "locate_blocks",
    "split_extends",
    "strip_markers",
    "to_display_string",
    "validate_structure",
]
