"""In-memory data model for books under generation.

The pipeline keeps a mirror of the persisted book as plain dataclasses. Each
concurrently running unit owns exactly one paragraph (or chapter) of this
mirror and is the only writer of it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ParagraphStatus(str, Enum):
    """Lifecycle of a paragraph's text."""

    SEED = "seed"
    GENERATING = "generating"
    GENERATED = "generated"
    REFINED = "refined"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the paragraph carries final text (content or failure marker)."""
        return self in (ParagraphStatus.GENERATED, ParagraphStatus.REFINED, ParagraphStatus.FAILED)


class PipelineState(str, Enum):
    """Stages of a run, in the order they are reached."""

    TEMPLATE_REQUESTED = "template_requested"
    TEMPLATE_READY = "template_ready"
    CHAPTERS_EXPANDING = "chapters_expanding"
    CHAPTER_READY = "chapter_ready"
    PARAGRAPHS_GENERATING = "paragraphs_generating"
    BOOK_DRAFT_READY = "book_draft_ready"
    REFINING = "refining"
    REFINEMENT_COMPLETE = "refinement_complete"
    FAILED = "failed"


class RefinementTemplate(str, Enum):
    """Prompt template chosen from a paragraph's position in its chapter."""

    NO_NEIGHBOR = "no_neighbor"
    PREVIOUS_ONLY = "previous_only"
    BOTH_NEIGHBORS = "both_neighbors"


@dataclass
class Paragraph:
    """A paragraph with a stable id and mutable text."""

    id: str
    text: str
    status: ParagraphStatus = ParagraphStatus.SEED

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Paragraph:
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            status=ParagraphStatus(data.get("status", ParagraphStatus.SEED.value)),
        )


@dataclass
class Chapter:
    """A chapter with its ordered paragraphs."""

    id: str
    title: str
    idea: str
    paragraphs: list[Paragraph] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Chapter:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            idea=data.get("idea", ""),
            paragraphs=[Paragraph.from_dict(p) for p in data.get("paragraphs", [])],
        )

    def paragraph(self, paragraph_id: str) -> Paragraph:
        """Look up a paragraph by id.

        Raises:
            KeyError: If the chapter has no such paragraph
        """
        for paragraph in self.paragraphs:
            if paragraph.id == paragraph_id:
                return paragraph
        raise KeyError(paragraph_id)


@dataclass
class Book:
    """A book with its immutable abstract and ordered chapters."""

    id: str
    title: str
    abstract: str
    chapters: list[Chapter] = field(default_factory=list)

    @classmethod
    def from_dict(cls, book_id: str, data: dict[str, Any]) -> Book:
        """Build the mirror from the storage collaborator's get_book payload."""
        return cls(
            id=book_id,
            title=data.get("title", ""),
            abstract=data.get("abstract", ""),
            chapters=[Chapter.from_dict(c) for c in data.get("chapters", [])],
        )

    def chapter(self, chapter_id: str) -> Chapter:
        """Look up a chapter by id.

        Raises:
            KeyError: If the book has no such chapter
        """
        for chapter in self.chapters:
            if chapter.id == chapter_id:
                return chapter
        raise KeyError(chapter_id)

    @property
    def paragraphs(self) -> list[Paragraph]:
        """All paragraphs in reading order."""
        return [p for chapter in self.chapters for p in chapter.paragraphs]

    def status_counts(self) -> dict[ParagraphStatus, int]:
        counts = {status: 0 for status in ParagraphStatus}
        for paragraph in self.paragraphs:
            counts[paragraph.status] += 1
        return counts


@dataclass(frozen=True)
class GenerationTask:
    """One paragraph generation unit.

    Holds a snapshot of the parent context so the unit does not read shared
    run state while it is suspended.
    """

    chapter_id: str
    paragraph_id: str
    prompt: str
    seed_idea: str
    chapter_title: str


@dataclass(frozen=True)
class RefinementContext:
    """Neighborhood of the paragraph being refined.

    Built fresh for every refinement call from the live mirror, so neighbors
    already carry refined text when they precede the current paragraph.
    """

    chapter: Chapter
    abstract: str
    current: Paragraph
    previous: Paragraph | None = None
    next: Paragraph | None = None

    @property
    def template(self) -> RefinementTemplate:
        if self.previous is None:
            return RefinementTemplate.NO_NEIGHBOR
        if self.next is None:
            return RefinementTemplate.PREVIOUS_ONLY
        return RefinementTemplate.BOTH_NEIGHBORS
