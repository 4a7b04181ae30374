"""Prompt builders for every generation tier.

Prompts are assembled from parent context (book spec, chapter title/idea,
seed idea, neighboring paragraphs) plus the JSON Schema of the expected
output. All text passed in here is plain (already unsanitized).

Refinement prompts follow a positional tie-break within a chapter:

- single paragraph, or first of several: NO_NEIGHBOR
- last of several: PREVIOUS_ONLY
- anything else: BOTH_NEIGHBORS
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from pydantic import BaseModel

from .models import RefinementContext, RefinementTemplate
from .schemas import BookOutline, BookSpec, ChapterPlan, GeneratedParagraph

if TYPE_CHECKING:
    from .models import Chapter, Paragraph


def schema_text(schema: type[BaseModel]) -> str:
    """Render a pydantic model's JSON Schema for embedding in a prompt."""
    return json.dumps(schema.model_json_schema(), indent=2)


def _spec_extras(spec: BookSpec) -> str:
    extras = spec.model_extra or {}
    if not extras:
        return ""
    return f"Additional book details: {json.dumps(extras, ensure_ascii=False)}"


# ============================================================================
# Normalizer
# ============================================================================


def build_repair_prompt(text: str, schema: type[BaseModel] | None = None) -> str:
    """Ask the model to turn arbitrary text into valid JSON."""
    if schema is None:
        return (
            f'Please convert the following string into a JSON string: "{text}".\n'
            "Only respond with valid JSON that doesn't contain any code blocks "
            "or the ```json syntax."
        )
    return (
        "Please convert the following string into JSON format matching this schema:\n"
        f"{schema_text(schema)}\n\n"
        f"String:\n{text}\n\n"
        "Only respond with valid JSON without any code blocks or syntax markers."
    )


# ============================================================================
# Template and chapter tiers
# ============================================================================


def build_outline_prompt(spec: BookSpec) -> str:
    """Prompt for the ordered list of chapters of a book."""
    parts = [
        "You're a book content manager. Your purpose is to generate a book schema "
        "template based on user specifications which will be used to create a book.",
        f"Your response should match this JSON schema: {schema_text(BookOutline)}",
        "Under no circumstance should your response include any other information "
        "than the JSON response. Do not include code blocks or the ```json syntax.",
        f"Special configuration: {spec.prompt}",
        f"Book generation specifications: {spec.informative_text}",
        f"Book title: {spec.title}",
    ]
    extras = _spec_extras(spec)
    if extras:
        parts.append(extras)
    return "\n".join(parts)


def build_chapter_plan_prompt(spec: BookSpec, title: str, idea: str) -> str:
    """Prompt for the seed paragraph ideas of one chapter."""
    parts = [
        "You're a book content manager. Your purpose is to generate a list of paragraph "
        "ideas which will be part of a chapter used to create a book.",
        f"Your response should match this JSON schema: {schema_text(ChapterPlan)}",
        "The number of paragraphs is variable: generate as many as you think is best "
        "for the chapter. Do not include code blocks or the ```json syntax.",
        f"Special configuration: {spec.prompt}",
        f"General book generation specifications: {spec.informative_text}",
        f"Book title: {spec.title}",
        f'Chapter data: {json.dumps({"title": title, "idea": idea}, ensure_ascii=False)}',
    ]
    extras = _spec_extras(spec)
    if extras:
        parts.append(extras)
    return "\n".join(parts)


def build_chapter_template_prompt(spec: BookSpec, title: str, idea: str, instructions: str) -> str:
    """Prompt for a chapter added on demand to an existing book."""
    return "\n".join(
        [
            build_chapter_plan_prompt(spec, title, idea),
            f"User instructions for this chapter: {instructions}",
        ]
    )


# ============================================================================
# Paragraph tier
# ============================================================================


def build_paragraph_prompt(spec: BookSpec, chapter_title: str, chapter_idea: str, seed: str) -> str:
    """Prompt for the full text of one paragraph from its seed idea."""
    return "\n".join(
        [
            "Your purpose is to write a comprehensive and detailed paragraph that is "
            "within a chapter of a book with the following specifications:",
            f"General generation instructions for the book: {spec.prompt}",
            f'The book is titled "{spec.title}". A description of the book\'s content: '
            f"{spec.informative_text}. Make sure you do the task that is required and "
            "nothing else.",
            f'The chapter is titled "{chapter_title}", and the chapter is about: {chapter_idea}.',
            f"The paragraph should be about and expand on this idea: {seed}.",
            f"Respond only with JSON matching this schema: {schema_text(GeneratedParagraph)}",
        ]
    )


def build_expand_paragraph_prompt(
    spec: BookSpec, chapter: Chapter, paragraph: Paragraph, instructions: str
) -> str:
    """Prompt for rewriting one paragraph following user instructions."""
    return "\n".join(
        [
            "Your purpose is to expand and improve a paragraph of a book.",
            f'The book is titled "{spec.title}": {spec.informative_text}',
            f'The chapter is titled "{chapter.title}", and the chapter is about: {chapter.idea}.',
            f'Current paragraph:\n"{paragraph.text}"',
            f"Instructions: {instructions}",
            f"Respond only with JSON matching this schema: {schema_text(GeneratedParagraph)}",
        ]
    )


# ============================================================================
# Refinement
# ============================================================================


def select_refinement_template(index: int, count: int) -> RefinementTemplate:
    """Choose the refinement template for the paragraph at ``index`` of ``count``.

    Raises:
        IndexError: If index is outside the chapter
    """
    if not 0 <= index < count:
        raise IndexError(f"paragraph index {index} out of range for {count} paragraphs")
    if count == 1 or index == 0:
        return RefinementTemplate.NO_NEIGHBOR
    if index == count - 1:
        return RefinementTemplate.PREVIOUS_ONLY
    return RefinementTemplate.BOTH_NEIGHBORS


def build_refinement_context(
    chapter: Chapter,
    paragraphs: list[Paragraph],
    index: int,
    abstract: str,
) -> RefinementContext:
    """Build the neighborhood of ``paragraphs[index]`` following the tie-break.

    Args:
        chapter: Enclosing chapter
        paragraphs: The chapter's refinable paragraphs in positional order
        index: Position of the paragraph to refine
        abstract: Book abstract (plain text)
    """
    template = select_refinement_template(index, len(paragraphs))
    current = paragraphs[index]
    if template is RefinementTemplate.NO_NEIGHBOR:
        return RefinementContext(chapter=chapter, abstract=abstract, current=current)
    if template is RefinementTemplate.PREVIOUS_ONLY:
        return RefinementContext(
            chapter=chapter,
            abstract=abstract,
            current=current,
            previous=paragraphs[index - 1],
        )
    return RefinementContext(
        chapter=chapter,
        abstract=abstract,
        current=current,
        previous=paragraphs[index - 1],
        next=paragraphs[index + 1],
    )


def build_refinement_prompt(ctx: RefinementContext) -> str:
    """Render the refinement prompt for a context."""
    if ctx.template is RefinementTemplate.BOTH_NEIGHBORS:
        goal = (
            "Ensure the paragraph connects logically with the surrounding paragraphs, "
            "chapter, and book content."
        )
    else:
        goal = "Ensure the paragraph connects logically with the chapter and book content."

    chapter_details = json.dumps(
        {"title": ctx.chapter.title, "idea": ctx.chapter.idea}, indent=2, ensure_ascii=False
    )
    sections = [
        "You are a book content manager. Your task is to refactor the current paragraph "
        "to blend seamlessly with the flow and content of the book and the chapter.",
        "**Instructions**:\n"
        "- Output your response **only** in JSON format matching the following schema:\n"
        f"{schema_text(GeneratedParagraph)}\n"
        "- **Do not** include any text outside of the JSON output.\n"
        f"- {goal}",
        f'**Book Abstract**:\n"{ctx.abstract}"',
        f"**Chapter Details**:\n{chapter_details}",
    ]
    if ctx.previous is not None:
        sections.append(f'**Previous Paragraph**:\n"{ctx.previous.text}"')
    sections.append(f'**Current Paragraph**:\n"{ctx.current.text}"')
    if ctx.next is not None:
        sections.append(f'**Next Paragraph**:\n"{ctx.next.text}"')
    sections.append("Please generate the refined paragraph in JSON format now.")
    return "\n\n".join(sections)


def build_transition_prompt(current: Paragraph, previous: Paragraph | None) -> str:
    """Prompt for smoothing the opening of a paragraph against its predecessor."""
    sections = [
        "You are an editor improving transitions between paragraphs.",
        "**Instructions**:\n"
        "- If applicable, adjust the beginning of the current paragraph to connect "
        "smoothly with the previous paragraph.\n"
        "- Ensure logical progression and coherent flow.\n"
        "- Output your response **only** in JSON format matching the following schema:\n"
        f"{schema_text(GeneratedParagraph)}\n"
        "- **Do not** include any text outside of the JSON output.",
    ]
    if previous is not None:
        sections.append(f'**Previous Paragraph**:\n"{previous.text}"')
    sections.append(f'**Current Paragraph**:\n"{current.text}"')
    sections.append("Please provide the refined paragraph in JSON format now.")
    return "\n\n".join(sections)
