"""Unit tests for book_forge.prompts module.

Tests refinement template selection and the content of generated prompts.
"""

import pytest

from book_forge.models import Chapter, Paragraph, ParagraphStatus, RefinementTemplate
from book_forge.prompts import (
    build_chapter_plan_prompt,
    build_chapter_template_prompt,
    build_outline_prompt,
    build_paragraph_prompt,
    build_refinement_context,
    build_refinement_prompt,
    build_repair_prompt,
    build_transition_prompt,
    select_refinement_template,
)
from book_forge.schemas import BookSpec, GeneratedParagraph


@pytest.fixture
def chapter() -> Chapter:
    paragraphs = [
        Paragraph(id=f"p{i}", text=f"Paragraph {i}", status=ParagraphStatus.GENERATED)
        for i in range(3)
    ]
    return Chapter(id="c1", title="Sources", idea="Where rivers begin", paragraphs=paragraphs)


class TestSelectRefinementTemplate:
    def test_three_paragraphs(self) -> None:
        """[P0, P1, P2] uses NO_NEIGHBOR, BOTH_NEIGHBORS, PREVIOUS_ONLY."""
        assert [select_refinement_template(i, 3) for i in range(3)] == [
            RefinementTemplate.NO_NEIGHBOR,
            RefinementTemplate.BOTH_NEIGHBORS,
            RefinementTemplate.PREVIOUS_ONLY,
        ]

    def test_single_paragraph(self) -> None:
        assert select_refinement_template(0, 1) is RefinementTemplate.NO_NEIGHBOR

    def test_two_paragraphs(self) -> None:
        assert select_refinement_template(0, 2) is RefinementTemplate.NO_NEIGHBOR
        assert select_refinement_template(1, 2) is RefinementTemplate.PREVIOUS_ONLY

    @pytest.mark.parametrize("index,count", [(3, 3), (-1, 3), (0, 0)])
    def test_out_of_range(self, index: int, count: int) -> None:
        with pytest.raises(IndexError):
            select_refinement_template(index, count)


class TestBuildRefinementContext:
    def test_first_paragraph_has_no_neighbors(self, chapter: Chapter) -> None:
        ctx = build_refinement_context(chapter, chapter.paragraphs, 0, "abstract")
        assert ctx.previous is None
        assert ctx.next is None
        assert ctx.template is RefinementTemplate.NO_NEIGHBOR

    def test_middle_paragraph_has_both(self, chapter: Chapter) -> None:
        ctx = build_refinement_context(chapter, chapter.paragraphs, 1, "abstract")
        assert ctx.previous is chapter.paragraphs[0]
        assert ctx.next is chapter.paragraphs[2]
        assert ctx.template is RefinementTemplate.BOTH_NEIGHBORS

    def test_last_paragraph_has_previous_only(self, chapter: Chapter) -> None:
        ctx = build_refinement_context(chapter, chapter.paragraphs, 2, "abstract")
        assert ctx.previous is chapter.paragraphs[1]
        assert ctx.next is None
        assert ctx.template is RefinementTemplate.PREVIOUS_ONLY


class TestRefinementPrompt:
    def test_no_neighbor_prompt(self, chapter: Chapter) -> None:
        prompt = build_refinement_prompt(
            build_refinement_context(chapter, chapter.paragraphs, 0, "A river book")
        )
        assert '**Book Abstract**:\n"A river book"' in prompt
        assert '"title": "Sources"' in prompt
        assert '**Current Paragraph**:\n"Paragraph 0"' in prompt
        assert "**Previous Paragraph**" not in prompt
        assert "**Next Paragraph**" not in prompt

    def test_both_neighbors_prompt(self, chapter: Chapter) -> None:
        prompt = build_refinement_prompt(
            build_refinement_context(chapter, chapter.paragraphs, 1, "A river book")
        )
        assert '**Previous Paragraph**:\n"Paragraph 0"' in prompt
        assert '**Next Paragraph**:\n"Paragraph 2"' in prompt
        assert "surrounding paragraphs" in prompt
        assert prompt.index("Previous Paragraph") < prompt.index("Current Paragraph")
        assert prompt.index("Current Paragraph") < prompt.index("Next Paragraph")

    def test_previous_only_prompt(self, chapter: Chapter) -> None:
        prompt = build_refinement_prompt(
            build_refinement_context(chapter, chapter.paragraphs, 2, "A river book")
        )
        assert '**Previous Paragraph**:\n"Paragraph 1"' in prompt
        assert "**Next Paragraph**" not in prompt


class TestGenerationPrompts:
    @pytest.fixture
    def spec(self) -> BookSpec:
        return BookSpec(
            title="Rivers",
            informative_text="A guide",
            prompt="Be concise",
            audience="children",
        )

    def test_outline_prompt(self, spec: BookSpec) -> None:
        prompt = build_outline_prompt(spec)
        assert "Book title: Rivers" in prompt
        assert "Special configuration: Be concise" in prompt
        assert '"chapters"' in prompt
        assert '"audience": "children"' in prompt

    def test_chapter_plan_prompt(self, spec: BookSpec) -> None:
        prompt = build_chapter_plan_prompt(spec, "Sources", "Where rivers begin")
        assert 'Chapter data: {"title": "Sources", "idea": "Where rivers begin"}' in prompt
        assert '"paragraphs"' in prompt

    def test_chapter_template_prompt_adds_instructions(self, spec: BookSpec) -> None:
        prompt = build_chapter_template_prompt(spec, "Deltas", "River mouths", "Five paragraphs")
        assert "User instructions for this chapter: Five paragraphs" in prompt

    def test_paragraph_prompt(self, spec: BookSpec) -> None:
        prompt = build_paragraph_prompt(spec, "Sources", "Where rivers begin", "glaciers")
        assert "expand on this idea: glaciers." in prompt
        assert 'The chapter is titled "Sources"' in prompt

    def test_transition_prompt(self) -> None:
        previous = Paragraph(id="a", text="First")
        current = Paragraph(id="b", text="Second")
        prompt = build_transition_prompt(current, previous)
        assert '**Previous Paragraph**:\n"First"' in prompt
        assert '**Current Paragraph**:\n"Second"' in prompt
        assert "**Previous Paragraph**" not in build_transition_prompt(current, None)

    def test_repair_prompt(self) -> None:
        assert "```json" in build_repair_prompt("abc")
        prompt = build_repair_prompt("abc", GeneratedParagraph)
        assert "String:\nabc" in prompt
        assert '"text"' in prompt
