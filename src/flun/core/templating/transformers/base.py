"""Base classes for the dynamic-content pipeline.

The pipeline runs a fixed sequence of transformers over a page, repeatedly,
until the text stops changing:

1. LOOPS        - {{for x in expr}}...{{empty}}...{{endfor}}
2. CONDITIONALS - {{if expr}}...{{else if expr}}...{{else}}...{{endif}}
3. FUNCTIONS    - {{user: name(args)}}
4. VARIABLES    - {{name}}, {{a.b.c}}, {{expression}}

Later phases often produce text that an earlier phase can only handle on the
next pass (a variable that expands into a conditional, for example), which
is why the whole sequence is iterated rather than run once.
"""
from __future__ import annotations

import dataclasses
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING

from flun.core.templating.sandbox import ExpressionEvaluator

if TYPE_CHECKING:
    from .functions import FunctionRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_PASSES = 10
DEFAULT_MAX_CONDITIONAL_PASSES = 20

# Anything that still looks like a dynamic tag.
DYNAMIC_TAG_PROBE = re.compile(r"\{\{[\s\S]*?\}\}")


@dataclass
class TransformContext:
    """State shared by the transformers during one render.

    ``variables`` is the merged variable context (feature variables plus
    request or iteration values). Loop bodies get a copy through
    ``with_variables`` so bindings never leak outside their iteration.
    """

    variables: Dict[str, Any] = field(default_factory=dict)
    functions: Optional["FunctionRegistry"] = None
    evaluator: ExpressionEvaluator = field(default_factory=ExpressionEvaluator)
    pipeline: Optional["TransformerPipeline"] = None
    max_conditional_passes: int = DEFAULT_MAX_CONDITIONAL_PASSES

    def with_variables(self, extra: Mapping[str, Any]) -> "TransformContext":
        """Return a copy whose variables are overlaid with ``extra``."""
        return dataclasses.replace(self, variables={**self.variables, **extra})

    def render(self, content: str) -> str:
        """Run the full pipeline over a nested fragment (loop bodies)."""
        if self.pipeline is None:
            return content
        return self.pipeline.execute(content, self)


class ContentTransformer(ABC):
    """Abstract base class for pipeline phases.

    Transformers are stateless and receive everything through ``transform``.
    """

    @abstractmethod
    def transform(self, content: str, context: TransformContext) -> str:
        """Transform content using this transformer's rules.

        Args:
            content: Input content to transform
            context: TransformContext with variables, functions and evaluator

        Returns:
            Transformed content
        """
        ...

    def get_name(self) -> str:
        """Get transformer name for logging/debugging."""
        return self.__class__.__name__


class TransformerPipeline:
    """Execute a sequence of transformers until the content is stable.

    Stops when a pass leaves the content unchanged, when no ``{{...}}`` tag
    remains, or after ``max_passes`` passes. Hitting the cap is logged and
    the partial result is returned.

    Example:
        pipeline = TransformerPipeline([
            LoopExpander(),
            ConditionalProcessor(),
            FunctionTransformer(),
            VariableTransformer(),
        ])
        result = pipeline.execute(content, context)
    """

    def __init__(
        self,
        transformers: List[ContentTransformer],
        *,
        max_passes: int = DEFAULT_MAX_PASSES,
    ) -> None:
        """Initialize with ordered list of transformers.

        Args:
            transformers: List of transformers to execute in order
            max_passes: Upper bound on full passes over the content
        """
        self.transformers = transformers
        self.max_passes = max_passes

    def run_once(self, content: str, context: TransformContext) -> str:
        """Apply every transformer once, in order."""
        result = content
        for transformer in self.transformers:
            result = transformer.transform(result, context)
        return result

    def execute(self, content: str, context: TransformContext) -> str:
        """Run passes until the content reaches a fixpoint.

        Args:
            content: Input content
            context: TransformContext for the pipeline

        Returns:
            Fully (or, on hitting the cap, partially) transformed content
        """
        if context.pipeline is None:
            context = dataclasses.replace(context, pipeline=self)

        result = content
        for _ in range(self.max_passes):
            previous = result
            result = self.run_once(result, context)
            if result == previous or not DYNAMIC_TAG_PROBE.search(result):
                return result

        logger.warning(
            "Dynamic content still changing after %d passes; returning partial result",
            self.max_passes,
        )
        return result

    def add_transformer(self, transformer: ContentTransformer) -> None:
        """Add a transformer to the end of the pipeline."""
        self.transformers.append(transformer)


__all__ = [
    "ContentTransformer",
    "DEFAULT_MAX_CONDITIONAL_PASSES",
    "DEFAULT_MAX_PASSES",
    "DYNAMIC_TAG_PROBE",
    "TransformContext",
    "TransformerPipeline",
]
