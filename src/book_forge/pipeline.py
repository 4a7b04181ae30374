"""Book generation pipeline.

BookPipeline wires the three stages to a StageJobQueue: the completion of
each stage submits the next one, so a run proceeds without any stage calling
another directly.

    template -> draft -> refine

Example:
    >>> pipeline = BookPipeline(generator, JsonBookRepository(Path("output")), config)
    >>> book_id = await pipeline.start(BookSpec(title="Rivers", informative_text="..."))
    >>> ctx = await pipeline.wait(book_id)
    >>> ctx.state
    <PipelineState.REFINEMENT_COMPLETE: 'refinement_complete'>
"""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from .context import PipelineServices, RunContext
from .exceptions import RetryExhaustedError, StageError
from .jobs import StageJob, StageJobQueue, StageOutcome
from .models import ParagraphStatus, PipelineState
from .observability import RunMetrics
from .prompts import build_chapter_template_prompt, build_expand_paragraph_prompt
from .sanitize import HtmlSanitizer
from .schemas import BookSpec, ChapterPlan, GeneratedParagraph
from .stages import (
    DRAFT_STAGE,
    DraftStage,
    PipelineStage,
    RefinementStage,
    TemplateStage,
)

if TYPE_CHECKING:
    from .config import GenerationConfig
    from .protocols import BookStore, TextGenerator, TextSanitizer

logger = logging.getLogger(__name__)

CHAPTER_TEMPLATE_FAILURE = "Failed to generate chapter template"
EXPAND_PARAGRAPH_FAILURE = "Error in expanding paragraph: {cause}"


def create_default_stages() -> list[PipelineStage]:
    """Create the standard stage sequence.

    Returns:
        Stages in run order: template, draft, refine
    """
    return [TemplateStage(), DraftStage(), RefinementStage()]


class BookPipeline:
    """Runs book generation as a chain of stage jobs.

    Attributes:
        services: Collaborators shared by every stage
        jobs: Queue running the stage jobs
        stages: Stages in run order
        runs: Run contexts by book id

    Example:
        >>> pipeline = BookPipeline(generator, store, GenerationConfig())
        >>> book_id = await pipeline.start({"title": "Rivers"}, scope="team-a")
        >>> await pipeline.join()
    """

    def __init__(
        self,
        generator: TextGenerator,
        store: BookStore,
        config: GenerationConfig,
        sanitizer: TextSanitizer | None = None,
        jobs: StageJobQueue | None = None,
        stages: list[PipelineStage] | None = None,
    ) -> None:
        self.services = PipelineServices(
            generator=generator,
            store=store,
            config=config,
            sanitizer=sanitizer if sanitizer is not None else HtmlSanitizer(),
        )
        self.jobs = jobs or StageJobQueue(retry=config.stage_retry())
        self.stages = stages if stages is not None else create_default_stages()
        self.runs: dict[str, RunContext] = {}

        names = [stage.name for stage in self.stages]
        for index, stage in enumerate(self.stages):
            self.jobs.register(stage.name, partial(self._run_stage, stage))
            following = names[index + 1] if index + 1 < len(names) else None
            self.jobs.subscribe(stage.name, partial(self._on_stage_done, following))

    @property
    def config(self) -> GenerationConfig:
        return self.services.config

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def start(
        self,
        spec: BookSpec | dict[str, Any],
        scope: str = "default",
        metrics: RunMetrics | None = None,
    ) -> str:
        """Create the book record and submit the first stage job.

        Returns as soon as the job is queued; the run continues in the
        background.

        Args:
            spec: Book specification (title required)
            scope: Tenant/space the book belongs to
            metrics: Metrics sink for the run (a new one by default)

        Returns:
            Id of the created book

        Raises:
            pydantic.ValidationError: If the specification is invalid
            PersistenceError: If the book record could not be created
        """
        if not isinstance(spec, BookSpec):
            spec = BookSpec.model_validate(spec)

        sanitizer = self.services.sanitizer
        book_id = await self.services.store.create_book(
            scope,
            {
                "title": sanitizer.sanitize(spec.title),
                "abstract": sanitizer.sanitize(spec.model_dump_json()),
            },
        )
        ctx = RunContext(scope=scope, book_id=book_id, spec=spec, metrics=metrics or RunMetrics())
        self.runs[book_id] = ctx
        ctx.metrics.emit("pipeline.started", book_id=book_id, title=spec.title, scope=scope)

        self.jobs.submit(StageJob(self.stages[0].name, ctx))
        return book_id

    async def resume(
        self,
        book_id: str,
        scope: str = "default",
        stage: str = DRAFT_STAGE,
        metrics: RunMetrics | None = None,
    ) -> RunContext:
        """Continue a persisted book from a later stage.

        Paragraphs left in seed or generating state are drafted again;
        already refined paragraphs are not touched.

        Raises:
            KeyError: If the stage is unknown
            PersistenceError: If the book cannot be read
        """
        if stage not in {s.name for s in self.stages}:
            raise KeyError(f"Unknown stage '{stage}'")

        book = await self.services.load_book(scope, book_id)
        ctx = RunContext(
            scope=scope,
            book_id=book_id,
            spec=self.services.spec_from_abstract(book),
            metrics=metrics or RunMetrics(),
            state=PipelineState.CHAPTER_READY,
            book=book,
        )
        self.runs[book_id] = ctx
        ctx.metrics.emit("pipeline.resumed", book_id=book_id, stage=stage)
        self.jobs.submit(StageJob(stage, ctx))
        return ctx

    async def wait(self, book_id: str) -> RunContext:
        """Wait for a run to complete or fail.

        Raises:
            KeyError: If no run is known for the book
        """
        ctx = self.runs[book_id]
        await ctx.finished.wait()
        return ctx

    async def run(
        self,
        spec: BookSpec | dict[str, Any],
        scope: str = "default",
        metrics: RunMetrics | None = None,
    ) -> RunContext:
        """Start a run and wait for it.

        Raises:
            StageError: If the run failed
        """
        book_id = await self.start(spec, scope, metrics)
        ctx = await self.wait(book_id)
        if ctx.error is not None:
            raise ctx.error
        return ctx

    async def join(self) -> None:
        """Wait until every queued stage job, including follow-ups, has finished."""
        await self.jobs.join()

    async def close(self) -> None:
        await self.jobs.close()

    async def _run_stage(self, stage: PipelineStage, job: StageJob) -> None:
        ctx: RunContext = job.context
        logger.info(f"Running stage '{stage.name}' for book {ctx.book_id}")
        await stage.execute(ctx, self.services)

    def _on_stage_done(self, following: str | None, outcome: StageOutcome) -> None:
        ctx: RunContext = outcome.job.context
        if not outcome.succeeded:
            error = outcome.error
            if not isinstance(error, StageError):
                wrapped = StageError(
                    "Stage failed",
                    stage=outcome.job.stage,
                    book_id=ctx.book_id,
                    error=str(error),
                )
                wrapped.__cause__ = error
                error = wrapped
            logger.error(f"Book {ctx.book_id} failed: {error}")
            ctx.fail(error)
            return

        ctx.metrics.emit("stage.completed", book_id=ctx.book_id, stage=outcome.job.stage)
        if following is None:
            ctx.complete()
            logger.info(f"Book {ctx.book_id} complete: {dict(ctx.metrics.counters)}")
        else:
            self.jobs.submit(StageJob(following, ctx))

    # ------------------------------------------------------------------
    # On-demand operations
    # ------------------------------------------------------------------

    async def add_chapter(
        self,
        book_id: str,
        title: str,
        idea: str,
        prompt: str,
        scope: str = "default",
        metrics: RunMetrics | None = None,
    ) -> str:
        """Add a chapter to an existing book and seed its paragraphs.

        Args:
            book_id: Book to extend
            title: Chapter title
            idea: What the chapter is about
            prompt: User instructions for the chapter
            scope: Scope of the book
            metrics: Metrics sink (a new one by default)

        Returns:
            Id of the new chapter

        Raises:
            RetryExhaustedError: If no chapter plan could be generated. A
                failure paragraph is added to the chapter first.
            PersistenceError: If storage fails
        """
        metrics = metrics or RunMetrics()
        services = self.services
        sanitizer = services.sanitizer

        book = await services.load_book(scope, book_id)
        spec = services.spec_from_abstract(book)
        chapter_id = await services.store.add_chapter(
            scope,
            book_id,
            {"title": sanitizer.sanitize(title), "idea": sanitizer.sanitize(idea)},
        )

        try:
            plan = await services.generate_structured(
                build_chapter_template_prompt(spec, title, idea, prompt),
                ChapterPlan,
                stage="template",
                iterations=self.config.generation_parse_iterations,
                scope=scope,
                metrics=metrics,
                strict=True,
                label=f"chapter template '{title}'",
            )
        except RetryExhaustedError:
            logger.error(f"Chapter template generation failed for '{title}' in book {book_id}")
            await services.store.add_paragraph(
                scope,
                book_id,
                chapter_id,
                {"text": CHAPTER_TEMPLATE_FAILURE, "status": ParagraphStatus.FAILED.value},
            )
            raise

        assert plan is not None
        for paragraph in plan.paragraphs:
            await services.store.add_paragraph(
                scope,
                book_id,
                chapter_id,
                {
                    "text": sanitizer.sanitize(paragraph.idea),
                    "status": ParagraphStatus.SEED.value,
                },
            )
        metrics.emit(
            "chapter.added",
            book_id=book_id,
            chapter_id=chapter_id,
            paragraphs=len(plan.paragraphs),
        )
        return chapter_id

    async def expand_paragraph(
        self,
        book_id: str,
        chapter_id: str,
        paragraph_id: str,
        prompt: str,
        scope: str = "default",
        metrics: RunMetrics | None = None,
    ) -> str:
        """Regenerate one paragraph following user instructions.

        Returns:
            The new paragraph text

        Raises:
            RetryExhaustedError: If generation failed. The paragraph text is
                replaced with an error message first.
            PersistenceError: If storage fails
        """
        metrics = metrics or RunMetrics()
        services = self.services

        book = await services.load_book(scope, book_id)
        spec = services.spec_from_abstract(book)
        chapter = book.chapter(chapter_id)
        paragraph = chapter.paragraph(paragraph_id)

        try:
            result = await services.generate_structured(
                build_expand_paragraph_prompt(spec, chapter, paragraph, prompt),
                GeneratedParagraph,
                stage="paragraph",
                iterations=self.config.generation_parse_iterations,
                scope=scope,
                metrics=metrics,
                strict=True,
                label=f"expand paragraph {paragraph_id}",
            )
        except RetryExhaustedError as e:
            cause = e.last_error or e
            await services.save_paragraph(
                scope,
                book_id,
                chapter_id,
                paragraph,
                EXPAND_PARAGRAPH_FAILURE.format(cause=cause),
                ParagraphStatus.FAILED,
            )
            raise

        assert result is not None
        await services.save_paragraph(
            scope, book_id, chapter_id, paragraph, result.text, ParagraphStatus.GENERATED
        )
        metrics.increment("paragraphs.expanded")
        return result.text
