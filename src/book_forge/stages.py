"""Pipeline stages for book generation.

This module implements the three stage jobs of a run:

1. **TemplateStage**: book outline, chapters and seed paragraphs
2. **DraftStage**: full text for every seed paragraph, in parallel
3. **RefinementStage**: neighbor-aware rewrite of every generated paragraph

Stages are stateless; everything a stage needs to resume after a retry is
kept in the RunContext. Each stage reloads the book from storage, so it can
run in a later job without relying on the previous stage's memory.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import TYPE_CHECKING

from .exceptions import PersistenceError, RetryExhaustedError, StageError
from .models import Chapter, GenerationTask, ParagraphStatus, PipelineState
from .prompts import (
    build_chapter_plan_prompt,
    build_outline_prompt,
    build_paragraph_prompt,
    build_refinement_context,
    build_refinement_prompt,
    build_transition_prompt,
)
from .schemas import BookOutline, ChapterOutline, ChapterPlan, GeneratedParagraph

if TYPE_CHECKING:
    from .context import PipelineServices, RunContext
    from .models import Book, Paragraph

logger = logging.getLogger(__name__)

TEMPLATE_STAGE = "template"
DRAFT_STAGE = "draft"
REFINE_STAGE = "refine"


class PipelineStage(ABC):
    """Abstract base class for pipeline stages.

    Example:
        >>> class CustomStage(PipelineStage):
        ...     @property
        ...     def name(self) -> str:
        ...         return "custom"
        ...
        ...     async def execute(self, ctx: RunContext, services: PipelineServices) -> None:
        ...         pass
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Stage name, also used as the job queue key."""
        ...

    @abstractmethod
    async def execute(self, ctx: RunContext, services: PipelineServices) -> None:
        """Execute this stage for a run.

        Args:
            ctx: Run context with shared state
            services: Collaborators and shared operations

        Raises:
            StageError: If the stage failed in a way a retry may fix
            PersistenceError: If storage failed (always fatal)
        """
        ...


class TemplateStage(PipelineStage):
    """Stage 1: generate the outline and seed paragraphs.

    Chapters are created one after another so their order is fixed. A chapter
    whose plan cannot be generated is fatal: the paragraphs already created
    for it are deleted before the error is raised.

    Populates:
        - ctx.outline, ctx.chapter_ids, ctx.expanded
    """

    @property
    def name(self) -> str:
        return TEMPLATE_STAGE

    async def execute(self, ctx: RunContext, services: PipelineServices) -> None:
        config = services.config

        if ctx.outline is None:
            try:
                ctx.outline = await services.generate_structured(
                    build_outline_prompt(ctx.spec),
                    BookOutline,
                    stage="template",
                    iterations=config.generation_parse_iterations,
                    scope=ctx.scope,
                    metrics=ctx.metrics,
                    strict=True,
                    label="book outline",
                )
            except RetryExhaustedError as e:
                raise StageError(
                    "Book outline generation failed",
                    stage=self.name,
                    book_id=ctx.book_id,
                ) from e
        assert ctx.outline is not None
        ctx.advance(PipelineState.TEMPLATE_READY, chapters=len(ctx.outline.chapters))

        ctx.advance(PipelineState.CHAPTERS_EXPANDING)
        for index, outline in enumerate(ctx.outline.chapters):
            if index in ctx.expanded:
                continue
            chapter_id = ctx.chapter_ids.get(index)
            if chapter_id is None:
                chapter_id = await services.store.add_chapter(
                    ctx.scope,
                    ctx.book_id,
                    {
                        "title": services.sanitizer.sanitize(outline.title),
                        "idea": services.sanitizer.sanitize(outline.idea),
                    },
                )
                ctx.chapter_ids[index] = chapter_id

            await self._expand_chapter(ctx, services, index, outline, chapter_id)
            ctx.expanded.add(index)
            # Committed chapters are no longer compensated
            ctx.rollback = [entry for entry in ctx.rollback if entry[0] != chapter_id]
            ctx.advance(PipelineState.CHAPTER_READY, chapter=outline.title)

    async def _expand_chapter(
        self,
        ctx: RunContext,
        services: PipelineServices,
        index: int,
        outline: ChapterOutline,
        chapter_id: str,
    ) -> None:
        try:
            plan = await services.generate_structured(
                build_chapter_plan_prompt(ctx.spec, outline.title, outline.idea),
                ChapterPlan,
                stage="template",
                iterations=services.config.generation_parse_iterations,
                scope=ctx.scope,
                metrics=ctx.metrics,
                strict=True,
                label=f"chapter plan '{outline.title}'",
            )
            assert plan is not None
            for idea in plan.paragraphs:
                paragraph_id = await services.store.add_paragraph(
                    ctx.scope,
                    ctx.book_id,
                    chapter_id,
                    {
                        "text": services.sanitizer.sanitize(idea.idea),
                        "status": ParagraphStatus.SEED.value,
                    },
                )
                ctx.rollback.append((chapter_id, paragraph_id))
        except RetryExhaustedError as e:
            await self._rollback(ctx, services, chapter_id)
            raise StageError(
                "Chapter expansion failed",
                stage=self.name,
                book_id=ctx.book_id,
                chapter_id=chapter_id,
                chapter=outline.title,
                chapter_index=index,
            ) from e
        except PersistenceError:
            await self._rollback(ctx, services, chapter_id)
            raise

        ctx.metrics.increment("chapters.expanded")
        ctx.metrics.increment("paragraphs.seeded", len(plan.paragraphs))

    @staticmethod
    async def _rollback(ctx: RunContext, services: PipelineServices, chapter_id: str) -> None:
        """Delete the paragraphs this attempt created under a chapter."""
        created = [entry for entry in ctx.rollback if entry[0] == chapter_id]
        ctx.rollback = [entry for entry in ctx.rollback if entry[0] != chapter_id]
        for _, paragraph_id in reversed(created):
            try:
                await services.store.delete_paragraph(
                    ctx.scope, ctx.book_id, chapter_id, paragraph_id
                )
            except PersistenceError as e:
                logger.error(f"Rollback of paragraph {paragraph_id} failed: {e}")
                ctx.metrics.increment("rollback.failed")
            else:
                ctx.metrics.increment("rollback.deleted")
        if created:
            logger.info(f"Rolled back {len(created)} paragraphs of chapter {chapter_id}")


class DraftStage(PipelineStage):
    """Stage 2: generate the full text of every seed paragraph.

    Each paragraph is one scheduled unit with lenient retries. A paragraph
    whose retries are exhausted gets the configured failure placeholder and
    the failed status; its siblings are unaffected.
    """

    @property
    def name(self) -> str:
        return DRAFT_STAGE

    async def execute(self, ctx: RunContext, services: PipelineServices) -> None:
        book = await services.load_book(ctx.scope, ctx.book_id)
        ctx.book = book
        ctx.advance(PipelineState.PARAGRAPHS_GENERATING, paragraphs=len(book.paragraphs))

        scheduler = services.create_scheduler(ctx.metrics)
        for chapter in book.chapters:
            for paragraph in chapter.paragraphs:
                if paragraph.status not in (ParagraphStatus.SEED, ParagraphStatus.GENERATING):
                    continue
                task = GenerationTask(
                    chapter_id=chapter.id,
                    paragraph_id=paragraph.id,
                    prompt=build_paragraph_prompt(
                        ctx.spec, chapter.title, chapter.idea, paragraph.text
                    ),
                    seed_idea=paragraph.text,
                    chapter_title=chapter.title,
                )
                scheduler.push(
                    partial(self._generate_paragraph, ctx, services, task, paragraph),
                    name=f"paragraph {paragraph.id}",
                )

        await scheduler.on_idle()
        ctx.raise_fatal()
        ctx.advance(PipelineState.BOOK_DRAFT_READY)

    @staticmethod
    async def _generate_paragraph(
        ctx: RunContext,
        services: PipelineServices,
        task: GenerationTask,
        paragraph: Paragraph,
    ) -> None:
        try:
            await services.save_paragraph(
                ctx.scope,
                ctx.book_id,
                task.chapter_id,
                paragraph,
                paragraph.text,
                ParagraphStatus.GENERATING,
            )
            result = await services.generate_structured(
                task.prompt,
                GeneratedParagraph,
                stage="paragraph",
                iterations=services.config.generation_parse_iterations,
                scope=ctx.scope,
                metrics=ctx.metrics,
                strict=False,
                label=f"paragraph {task.paragraph_id}",
            )

            if result is None:
                logger.warning(
                    f"Paragraph {task.paragraph_id} in chapter '{task.chapter_title}' "
                    "failed to generate"
                )
                await services.save_paragraph(
                    ctx.scope,
                    ctx.book_id,
                    task.chapter_id,
                    paragraph,
                    services.config.failure_placeholder,
                    ParagraphStatus.FAILED,
                )
                ctx.metrics.increment("paragraphs.failed")
                return

            await services.save_paragraph(
                ctx.scope,
                ctx.book_id,
                task.chapter_id,
                paragraph,
                result.text,
                ParagraphStatus.GENERATED,
            )
            ctx.metrics.increment("paragraphs.generated")
        except PersistenceError as e:
            ctx.fatal_errors.append(e)
            raise


class RefinementStage(PipelineStage):
    """Stage 3: rewrite paragraphs using their positional neighbors.

    Chapters are refined concurrently; paragraphs within a chapter strictly
    in order, each prompt built from the live mirror so preceding neighbors
    already carry their refined text. Failed paragraphs are neither refined
    nor used as neighbors. A refinement failure keeps the prior text.
    """

    @property
    def name(self) -> str:
        return REFINE_STAGE

    async def execute(self, ctx: RunContext, services: PipelineServices) -> None:
        book = await services.load_book(ctx.scope, ctx.book_id)
        ctx.book = book
        ctx.advance(PipelineState.REFINING)

        await self._sweep(ctx, services, book, self._refine_chapter)
        if services.config.transition_pass:
            await self._sweep(ctx, services, book, self._smooth_chapter)

        ctx.advance(PipelineState.REFINEMENT_COMPLETE)

    @staticmethod
    async def _sweep(ctx: RunContext, services: PipelineServices, book: Book, chapter_fn) -> None:
        scheduler = services.create_scheduler(ctx.metrics)
        for chapter in book.chapters:
            scheduler.push(
                partial(chapter_fn, ctx, services, book, chapter),
                name=f"chapter {chapter.id}",
            )
        await scheduler.on_idle()
        ctx.raise_fatal()

    @staticmethod
    def refinable(chapter: Chapter) -> list[Paragraph]:
        """Paragraphs of a chapter that take part in refinement, in order.

        Failed paragraphs are dropped before positions are counted, so the
        neighbor template follows the position among surviving paragraphs:
        with [P0 failed, P1] P1 is first and gets no neighbors, and with
        [P0, P1 failed, P2] P0 is the previous paragraph of P2.
        """
        return [
            p
            for p in chapter.paragraphs
            if p.status in (ParagraphStatus.GENERATED, ParagraphStatus.REFINED)
        ]

    async def _refine_chapter(
        self, ctx: RunContext, services: PipelineServices, book: Book, chapter: Chapter
    ) -> None:
        paragraphs = self.refinable(chapter)
        for index, paragraph in enumerate(paragraphs):
            if paragraph.status is ParagraphStatus.REFINED:
                continue
            refinement = build_refinement_context(chapter, paragraphs, index, book.abstract)
            await self._rewrite(
                ctx,
                services,
                chapter,
                paragraph,
                build_refinement_prompt(refinement),
                label=f"refine {paragraph.id} ({refinement.template.value})",
            )

    async def _smooth_chapter(
        self, ctx: RunContext, services: PipelineServices, book: Book, chapter: Chapter
    ) -> None:
        paragraphs = self.refinable(chapter)
        for index, paragraph in enumerate(paragraphs):
            previous = paragraphs[index - 1] if index > 0 else None
            await self._rewrite(
                ctx,
                services,
                chapter,
                paragraph,
                build_transition_prompt(paragraph, previous),
                label=f"transition {paragraph.id}",
            )

    @staticmethod
    async def _rewrite(
        ctx: RunContext,
        services: PipelineServices,
        chapter: Chapter,
        paragraph: Paragraph,
        prompt: str,
        label: str,
    ) -> None:
        result = await services.generate_structured(
            prompt,
            GeneratedParagraph,
            stage="refinement",
            iterations=services.config.refinement_parse_iterations,
            scope=ctx.scope,
            metrics=ctx.metrics,
            strict=False,
            label=label,
        )
        if result is None:
            logger.warning(
                f"Failed to refine paragraph {paragraph.id} in chapter {chapter.id}, "
                "keeping its current text"
            )
            ctx.metrics.increment("refinement.failed")
            return

        try:
            await services.save_paragraph(
                ctx.scope,
                ctx.book_id,
                chapter.id,
                paragraph,
                result.text,
                ParagraphStatus.REFINED,
            )
        except PersistenceError as e:
            ctx.fatal_errors.append(e)
            raise
        ctx.metrics.increment("paragraphs.refined")
