"""Service factory for centralized dependency injection.

This module provides the ServiceFactory class which acts as a dependency
injection container, creating the pipeline's collaborators from one
GenerationConfig and sharing one OpenAI client between them.

Example:
    >>> from book_forge.config import GenerationConfig
    >>> config = GenerationConfig.load()
    >>> factory = ServiceFactory(config)
    >>> pipeline = factory.create_pipeline()
    >>> book_id = await pipeline.start({"title": "Rivers"})
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING

from openai import AsyncOpenAI

if TYPE_CHECKING:
    from ..config import GenerationConfig
    from ..normalizer import JsonNormalizer
    from ..observability import RunMetrics
    from ..pipeline import BookPipeline
    from ..repository import JsonBookRepository
    from ..scheduler import BoundedScheduler
    from .generator import OpenAIGenerator


@dataclass
class ServiceFactory:
    """Factory for creating service instances with shared dependencies.

    Attributes:
        config: Generation configuration for all services

    Note:
        The OpenAI client is lazily created and cached, so every service
        built by one factory shares its connection pool.
    """

    config: GenerationConfig

    @cached_property
    def client(self) -> AsyncOpenAI:
        """Get the shared async OpenAI client."""
        return AsyncOpenAI()

    @cached_property
    def generator(self) -> OpenAIGenerator:
        """Get the shared text generator."""
        return self.create_generator()

    def create_generator(self) -> OpenAIGenerator:
        """Create an OpenAI-backed text generator.

        Returns:
            OpenAIGenerator using the shared client and configured temperature
        """
        from .generator import OpenAIGenerator

        return OpenAIGenerator(client=self.client, temperature=self.config.temperature)

    def create_normalizer(self, metrics: RunMetrics | None = None) -> JsonNormalizer:
        """Create a JSON normalizer whose last phase asks the repair model."""
        from ..normalizer import JsonNormalizer

        return JsonNormalizer(
            self.generator,
            model=self.config.model_for("repair"),
            metrics=metrics,
        )

    def create_scheduler(self, metrics: RunMetrics | None = None) -> BoundedScheduler:
        """Create a scheduler admitting ``max_concurrent`` units."""
        from ..scheduler import BoundedScheduler

        return BoundedScheduler(self.config.max_concurrent, metrics=metrics)

    def create_repository(self) -> JsonBookRepository:
        """Create a book repository rooted at the configured output directory."""
        from ..repository import JsonBookRepository

        return JsonBookRepository(self.config.output_dir)

    def create_pipeline(self) -> BookPipeline:
        """Create a pipeline wired to the shared generator and a repository.

        Example:
            >>> pipeline = factory.create_pipeline()
            >>> ctx = await pipeline.run({"title": "Rivers"})
        """
        from ..pipeline import BookPipeline
        from ..sanitize import HtmlSanitizer

        return BookPipeline(
            generator=self.generator,
            store=self.create_repository(),
            config=self.config,
            sanitizer=HtmlSanitizer(),
        )
