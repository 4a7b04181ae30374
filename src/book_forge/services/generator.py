"""OpenAI-backed text generation service.

Implements the TextGenerator protocol on top of the Responses API. Any client
error, or a response without text, is surfaced as InvocationError so the
retry policy can decide what to do with it.
"""

from __future__ import annotations

import logging

from openai import AsyncOpenAI, OpenAIError
from openai.types.responses import EasyInputMessageParam

from ..exceptions import InvocationError

logger = logging.getLogger(__name__)


class OpenAIGenerator:
    """Text generator using an async OpenAI client.

    Attributes:
        client: Async OpenAI client (shared through ServiceFactory)
        temperature: Sampling temperature for every call

    Example:
        >>> generator = OpenAIGenerator(AsyncOpenAI(), temperature=0.7)
        >>> text = await generator.generate(prompt, "gpt-4o", scope="default")
    """

    def __init__(self, client: AsyncOpenAI | None = None, temperature: float | None = None) -> None:
        self.client = client if client is not None else AsyncOpenAI()
        self.temperature = temperature

    async def generate(self, prompt: str, model: str, scope: str) -> str:
        """Send one prompt and return the model's text output.

        Args:
            prompt: Full prompt text
            model: Model identifier
            scope: Scope recorded as request metadata

        Returns:
            Output text of the response

        Raises:
            InvocationError: On API errors or empty output
        """
        kwargs: dict[str, object] = {
            "model": model,
            "input": [EasyInputMessageParam(role="user", content=prompt)],
        }
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if scope:
            kwargs["metadata"] = {"scope": scope}

        try:
            response = await self.client.responses.create(**kwargs)  # type: ignore[arg-type]
        except OpenAIError as e:
            raise InvocationError(
                "Generation request failed", model=model, scope=scope, error=str(e)
            ) from e

        text = getattr(response, "output_text", None)
        if not text:
            raise InvocationError("Generation returned no text", model=model, scope=scope)

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                f"Generation with {model} - "
                f"Input: {getattr(usage, 'input_tokens', 0)} tokens, "
                f"Output: {getattr(usage, 'output_tokens', 0)} tokens"
            )
        return text
