"""JSON normalizer for unreliable generation output.

Models asked for JSON often wrap it in markdown fences, sprinkle line breaks
or add surrounding whitespace, and occasionally return something that is not
JSON at all. The normalizer repairs such output with an ordered sequence of
named steps:

1. strip_outer_fence   - keep the content of the first fenced block
2. strip_fence_marks   - drop a leading and a trailing fence marker
3. remove_line_breaks  - delete embedded line breaks
4. trim_whitespace     - strip surrounding whitespace
5. model_repair        - ask the generation service to rewrite the text

A strict parse is attempted before every step and the first success is
returned. The full sequence is repeated up to ``max_iterations`` times, so the
number of generation calls made by one normalization never exceeds it.

Example:
    >>> normalizer = JsonNormalizer(generator, model="gpt-4o")
    >>> paragraph = await normalizer.normalize(
    ...     raw, max_iterations=5, schema=GeneratedParagraph
    ... )
    >>> paragraph.text
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from pydantic import BaseModel, ValidationError

from .exceptions import ParseExhaustedError
from .prompts import build_repair_prompt

if TYPE_CHECKING:
    from .observability import RunMetrics
    from .protocols import TextGenerator

logger = logging.getLogger(__name__)

FENCE: Final[str] = "```"
FENCE_OPEN: Final[re.Pattern[str]] = re.compile(r"```[A-Za-z0-9_+-]*")


def strip_outer_fence(text: str) -> str:
    """Return the content between the first fence-open and the next fence-close.

    Text without a fence is returned unchanged; an unterminated fence keeps
    everything after the opening marker. A lone marker with nothing after it
    closes the payload rather than opening one, so the text is left for
    strip_fence_marks.
    """
    match = FENCE_OPEN.search(text)
    if match is None:
        return text
    rest = text[match.end() :]
    end = rest.find(FENCE)
    if end != -1:
        return rest[:end]
    return rest if rest.strip() else text


def strip_fence_marks(text: str) -> str:
    """Drop a leading fence marker (with language tag) and a trailing one."""
    match = FENCE_OPEN.match(text)
    if match is not None:
        text = text[match.end() :]
    stripped = text.rstrip()
    if stripped.endswith(FENCE):
        text = stripped[: -len(FENCE)]
    return text


def remove_line_breaks(text: str) -> str:
    return text.replace("\r", "").replace("\n", "")


def trim_whitespace(text: str) -> str:
    return text.strip()


@dataclass(frozen=True)
class RepairStep:
    """A named repair applied when strict parsing fails.

    Steps with ``uses_model`` set call the generation service instead of
    ``apply``; such a step must be the last one of a sequence.
    """

    name: str
    apply: Callable[[str], str] | None = None
    uses_model: bool = False


# Order is significant: cheap deterministic repairs first, model repair last.
DEFAULT_REPAIR_STEPS: Final[tuple[RepairStep, ...]] = (
    RepairStep("strip_outer_fence", strip_outer_fence),
    RepairStep("strip_fence_marks", strip_fence_marks),
    RepairStep("remove_line_breaks", remove_line_breaks),
    RepairStep("trim_whitespace", trim_whitespace),
    RepairStep("model_repair", uses_model=True),
)


class JsonNormalizer:
    """Turns raw model output into data matching an expected shape.

    Attributes:
        generator: Generation service used by the model_repair step (optional;
            without it the step leaves the text unchanged)
        model: Model identifier for repair calls
        steps: Ordered repair steps
        metrics: Optional run metrics sink
    """

    def __init__(
        self,
        generator: TextGenerator | None = None,
        model: str = "gpt-4o",
        steps: tuple[RepairStep, ...] = DEFAULT_REPAIR_STEPS,
        metrics: RunMetrics | None = None,
    ) -> None:
        if not steps:
            raise ValueError("At least one repair step is required")
        if any(step.uses_model for step in steps[:-1]):
            raise ValueError("The model repair step must be the last step")
        self.generator = generator
        self.model = model
        self.steps = steps
        self.metrics = metrics

    async def normalize(
        self,
        raw: str | None,
        max_iterations: int = 1,
        schema: type[BaseModel] | None = None,
        scope: str = "",
    ) -> Any:
        """Parse raw text into JSON, repairing it as needed.

        Args:
            raw: Raw model output (None is treated as empty text)
            max_iterations: Number of full passes over the repair steps
            schema: Optional pydantic model the data must validate against
            scope: Scope passed to the generation service on model repair

        Returns:
            A validated ``schema`` instance when a schema is given, otherwise
            the parsed JSON value

        Raises:
            ParseExhaustedError: If no pass produced valid data
            InvocationError: If a model repair call fails
        """
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        text = "" if raw is None else str(raw)

        for iteration in range(1, max_iterations + 1):
            for index in range(len(self.steps)):
                step = self.steps[index]
                parsed, value = self._try_parse(text, schema)
                if parsed:
                    if iteration > 1 or index > 0:
                        logger.debug(
                            f"Normalized JSON before step '{step.name}' (pass {iteration})"
                        )
                    return value

                if step.uses_model:
                    text = await self._model_repair(text, schema, scope)
                elif step.apply is not None:
                    text = step.apply(text)

        # The final repair response gets one last check
        parsed, value = self._try_parse(text, schema)
        if parsed:
            return value

        if self.metrics is not None:
            self.metrics.increment("normalizer.exhausted")
        raise ParseExhaustedError(
            "Unable to ensure valid JSON after all phases",
            last_text=text,
            iterations=max_iterations,
        )

    @staticmethod
    def _try_parse(text: str, schema: type[BaseModel] | None) -> tuple[bool, Any]:
        """Strict parse: JSON decoding, then schema validation when given."""
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, TypeError, RecursionError):
            return False, None

        if schema is None:
            return True, data

        try:
            return True, schema.model_validate(data)
        except (ValidationError, RecursionError):
            return False, None

    async def _model_repair(self, text: str, schema: type[BaseModel] | None, scope: str) -> str:
        """Ask the generation service to convert text into valid JSON."""
        if self.generator is None:
            return text

        if self.metrics is not None:
            self.metrics.increment("normalizer.model_repairs")

        prompt = build_repair_prompt(text, schema)
        logger.info(f"Requesting model-assisted JSON repair ({len(text)} chars)")
        response = await self.generator.generate(prompt, self.model, scope)
        return response or ""
