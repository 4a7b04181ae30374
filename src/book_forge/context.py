"""Per-run context and the collaborators shared by pipeline stages.

RunContext is the explicit state of one run, threaded through every stage
job: the book being built, the current pipeline state, the compensating
rollback ledger and the run's metrics. PipelineServices bundles the external
collaborators and the operations every tier needs (structured generation,
mirror loading, paragraph persistence).
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ValidationError

from .models import Book, ParagraphStatus, PipelineState
from .normalizer import JsonNormalizer
from .observability import RunMetrics
from .sanitize import HtmlSanitizer
from .scheduler import BoundedScheduler
from .schemas import BookOutline, BookSpec

if TYPE_CHECKING:
    from .config import GenerationConfig
    from .models import Paragraph
    from .protocols import BookStore, TextGenerator, TextSanitizer

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass
class RunContext:
    """State of one book generation run.

    Attributes:
        scope: Tenant/space the run belongs to
        book_id: Id of the persisted book
        spec: The book specification the run was started with
        metrics: Counters and events of the run
        state: Current pipeline state
        outline: Generated chapter outline, kept across stage retries
        chapter_ids: Outline position to persisted chapter id
        expanded: Outline positions whose seed paragraphs are persisted
        rollback: (chapter_id, paragraph_id) pairs created by the current
            stage attempt, deleted again if the chapter tier fails
        book: Latest in-memory mirror of the persisted book
        fatal_errors: Errors from scheduled units that must fail the stage
        error: The error that failed the run, if any
    """

    scope: str
    book_id: str
    spec: BookSpec
    metrics: RunMetrics = field(default_factory=RunMetrics)
    state: PipelineState = PipelineState.TEMPLATE_REQUESTED
    outline: BookOutline | None = None
    chapter_ids: dict[int, str] = field(default_factory=dict)
    expanded: set[int] = field(default_factory=set)
    rollback: list[tuple[str, str]] = field(default_factory=list)
    book: Book | None = None
    fatal_errors: list[BaseException] = field(default_factory=list)
    error: BaseException | None = None
    finished: asyncio.Event = field(default_factory=asyncio.Event)

    def advance(self, state: PipelineState, **fields: str | int) -> None:
        """Move to a new pipeline state and record the transition."""
        self.state = state
        self.metrics.emit("pipeline.state", book_id=self.book_id, state=state.value, **fields)

    def fail(self, error: BaseException) -> None:
        """Mark the run as failed and release waiters."""
        self.error = error
        self.state = PipelineState.FAILED
        self.metrics.emit("pipeline.failed", book_id=self.book_id, error=str(error))
        self.finished.set()

    def complete(self) -> None:
        self.finished.set()

    def raise_fatal(self) -> None:
        """Re-raise the first fatal error recorded by a scheduled unit."""
        if self.fatal_errors:
            error = self.fatal_errors[0]
            self.fatal_errors.clear()
            raise error

    @property
    def is_finished(self) -> bool:
        return self.finished.is_set()


@dataclass
class PipelineServices:
    """External collaborators plus the operations shared by all tiers."""

    generator: TextGenerator
    store: BookStore
    config: GenerationConfig
    sanitizer: TextSanitizer = field(default_factory=HtmlSanitizer)

    def create_normalizer(self, metrics: RunMetrics | None = None) -> JsonNormalizer:
        return JsonNormalizer(
            self.generator,
            model=self.config.model_for("repair"),
            metrics=metrics,
        )

    def create_scheduler(self, metrics: RunMetrics | None = None) -> BoundedScheduler:
        return BoundedScheduler(self.config.max_concurrent, metrics=metrics)

    async def generate_structured(
        self,
        prompt: str,
        schema: type[M],
        *,
        stage: str,
        iterations: int,
        scope: str,
        metrics: RunMetrics,
        strict: bool,
        label: str,
    ) -> M | None:
        """Generate, normalize and validate one structured response, with retries.

        Args:
            prompt: Prompt to send
            schema: Expected pydantic model
            stage: Model stage used to pick the model identifier
            iterations: Normalizer repair passes per attempt
            scope: Scope for generation calls
            metrics: Metrics sink of the run
            strict: Raise RetryExhaustedError on exhaustion (else return None)
            label: Name used in logs

        Returns:
            The validated model instance, or None in lenient mode after exhaustion
        """
        normalizer = self.create_normalizer(metrics)
        model = self.config.model_for(stage)

        async def attempt() -> M:
            raw = await self.generator.generate(prompt, model, scope)
            return await normalizer.normalize(raw, iterations, schema, scope=scope)

        def record_failure(attempt_number: int, max_attempts: int, error: BaseException) -> None:
            metrics.increment("retry.failures")
            metrics.emit(
                "retry.failure",
                label=label,
                attempt=attempt_number,
                max_attempts=max_attempts,
                cause=str(error),
            )

        return await self.config.generation_retry().run(
            attempt,
            strict=strict,
            on_failure=record_failure,
            label=label,
        )

    async def load_book(self, scope: str, book_id: str) -> Book:
        """Read the persisted book into a plain-text mirror."""
        data = await self.store.get_book(scope, book_id)
        book = Book.from_dict(book_id, data)
        book.title = self.sanitizer.unsanitize(book.title)
        book.abstract = self.sanitizer.unsanitize(book.abstract)
        for chapter in book.chapters:
            chapter.title = self.sanitizer.unsanitize(chapter.title)
            chapter.idea = self.sanitizer.unsanitize(chapter.idea)
            for paragraph in chapter.paragraphs:
                paragraph.text = self.sanitizer.unsanitize(paragraph.text)
        return book

    def spec_from_abstract(self, book: Book) -> BookSpec:
        """Recover the BookSpec stored as a book's abstract."""
        try:
            return BookSpec.model_validate(json.loads(book.abstract))
        except (json.JSONDecodeError, ValidationError):
            logger.warning(f"Book {book.id} has no structured abstract, using its title")
            return BookSpec(title=book.title or "Untitled", informative_text=book.abstract)

    async def save_paragraph(
        self,
        scope: str,
        book_id: str,
        chapter_id: str,
        paragraph: Paragraph,
        text: str,
        status: ParagraphStatus,
    ) -> None:
        """Persist new text and status, then update the mirror paragraph."""
        await self.store.update_paragraph(
            scope,
            book_id,
            chapter_id,
            paragraph.id,
            {"text": self.sanitizer.sanitize(text), "status": status.value},
        )
        paragraph.text = text
        paragraph.status = status
