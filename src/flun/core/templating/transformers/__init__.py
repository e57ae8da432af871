"""Dynamic-content transformers (loops, conditionals, functions, variables)."""
from __future__ import annotations

from typing import Optional

from .base import (
    DEFAULT_MAX_CONDITIONAL_PASSES,
    DEFAULT_MAX_PASSES,
    ContentTransformer,
    TransformContext,
    TransformerPipeline,
)
from .conditionals import ConditionalProcessor
from .functions import FunctionRegistry, FunctionTransformer, parse_arguments
from .loops import LoopExpander
from .variables import VariableTransformer, is_reserved_tag


def build_pipeline(max_passes: Optional[int] = None) -> TransformerPipeline:
    """Return the standard four-phase pipeline."""
    return TransformerPipeline(
        [
            LoopExpander(),
            ConditionalProcessor(),
            FunctionTransformer(),
            VariableTransformer(),
        ],
        max_passes=max_passes or DEFAULT_MAX_PASSES,
    )


__all__ = [
    "ConditionalProcessor",
    "ContentTransformer",
    "DEFAULT_MAX_CONDITIONAL_PASSES",
    "DEFAULT_MAX_PASSES",
    "FunctionRegistry",
    "FunctionTransformer",
    "LoopExpander",
    "TransformContext",
    "TransformerPipeline",
    "VariableTransformer",
    "build_pipeline",
    "is_reserved_tag",
    "parse_arguments",
]
