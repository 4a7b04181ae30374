"""Unit tests for book_forge.normalizer module.

Tests the individual repair steps and the JsonNormalizer's ordered repair
loop, including its bound on model-assisted repair calls.
"""

import json

import pytest

from book_forge.exceptions import ParseExhaustedError
from book_forge.normalizer import (
    DEFAULT_REPAIR_STEPS,
    JsonNormalizer,
    RepairStep,
    remove_line_breaks,
    strip_fence_marks,
    strip_outer_fence,
    trim_whitespace,
)
from book_forge.observability import RunMetrics
from book_forge.schemas import ChapterPlan, GeneratedParagraph


class TestRepairSteps:
    def test_strip_outer_fence(self) -> None:
        assert strip_outer_fence('Here you go:\n```json\n{"a": 1}\n```\nEnjoy') == '\n{"a": 1}\n'

    def test_strip_outer_fence_without_fence(self) -> None:
        assert strip_outer_fence('{"a": 1}') == '{"a": 1}'

    def test_strip_outer_fence_unterminated(self) -> None:
        assert strip_outer_fence('```json{"a": 1}') == '{"a": 1}'

    def test_strip_outer_fence_closing_marker_only(self) -> None:
        assert strip_outer_fence('{"text":"a"}\n```') == '{"text":"a"}\n```'

    def test_strip_fence_marks(self) -> None:
        assert strip_fence_marks('```json{"a": 1}```') == '{"a": 1}'
        assert strip_fence_marks('```{"a": 1}') == '{"a": 1}'

    def test_strip_fence_marks_trailing_only(self) -> None:
        assert strip_fence_marks('{"a": 1}\n```\n') == '{"a": 1}\n'


    def test_remove_line_breaks(self) -> None:
        assert remove_line_breaks('{"a":\r\n 1}') == '{"a": 1}'

    def test_trim_whitespace(self) -> None:
        assert trim_whitespace('  {"a": 1}\t') == '{"a": 1}'

    def test_model_step_is_last(self) -> None:
        assert DEFAULT_REPAIR_STEPS[-1].uses_model
        assert [step.name for step in DEFAULT_REPAIR_STEPS] == [
            "strip_outer_fence",
            "strip_fence_marks",
            "remove_line_breaks",
            "trim_whitespace",
            "model_repair",
        ]


class TestJsonNormalizer:
    """Tests for JsonNormalizer.normalize."""

    async def test_valid_input_is_returned_unchanged(self, scripted_generator) -> None:
        generator = scripted_generator(lambda prompt, model: "unused")
        normalizer = JsonNormalizer(generator)
        raw = '{"chapters": [{"title": "One", "idea": "Start"}]}'

        assert await normalizer.normalize(raw, max_iterations=3) == json.loads(raw)
        assert generator.calls == []

    async def test_normalization_is_idempotent(self) -> None:
        normalizer = JsonNormalizer()
        raw = '```json\n{"text": "Hello"}\n```'
        first = await normalizer.normalize(raw)
        second = await normalizer.normalize(json.dumps(first))
        assert first == second == {"text": "Hello"}

    async def test_fenced_input_repaired_without_model(self, scripted_generator) -> None:
        generator = scripted_generator(lambda prompt, model: "unused")
        metrics = RunMetrics()
        normalizer = JsonNormalizer(generator, metrics=metrics)

        result = await normalizer.normalize(
            '```json\n{"text": "A paragraph."}\n```', max_iterations=1, schema=GeneratedParagraph
        )
        assert result == GeneratedParagraph(text="A paragraph.")
        assert generator.calls == []
        assert metrics.counters["normalizer.model_repairs"] == 0

    async def test_leading_fence_marker_only(self) -> None:
        result = await JsonNormalizer().normalize('```json{"text": "x"}', max_iterations=1)
        assert result == {"text": "x"}

    async def test_unrepairable_input_raises_after_one_iteration(self, scripted_generator) -> None:
        generator = scripted_generator(lambda prompt, model: "still not json")
        normalizer = JsonNormalizer(generator, model="fixer")

        with pytest.raises(ParseExhaustedError) as exc_info:
            await normalizer.normalize("definitely not json", max_iterations=1)

        assert exc_info.value.iterations == 1
        assert exc_info.value.last_text == "still not json"
        # At most one model-assisted repair per iteration
        assert len(generator.calls) == 1
        assert generator.calls[0][1] == "fixer"

    async def test_model_repair_calls_bounded_by_iterations(self, scripted_generator) -> None:
        generator = scripted_generator(lambda prompt, model: "nope")
        with pytest.raises(ParseExhaustedError):
            await JsonNormalizer(generator).normalize("nope", max_iterations=3)
        assert len(generator.calls) == 3

    async def test_model_repair_result_is_accepted(self, scripted_generator) -> None:
        generator = scripted_generator(lambda prompt, model: '{"paragraphs": [{"idea": "x"}]}')
        metrics = RunMetrics()
        normalizer = JsonNormalizer(generator, metrics=metrics)

        plan = await normalizer.normalize("paragraph: x", max_iterations=1, schema=ChapterPlan)

        assert plan.paragraphs[0].idea == "x"
        assert metrics.counters["normalizer.model_repairs"] == 1
        repair_prompt = generator.calls[0][0]
        assert "paragraph: x" in repair_prompt
        assert '"paragraphs"' in repair_prompt

    async def test_schema_mismatch_is_not_accepted(self) -> None:
        normalizer = JsonNormalizer()
        with pytest.raises(ParseExhaustedError):
            await normalizer.normalize('{"chapters": []}', max_iterations=1, schema=ChapterPlan)

    async def test_without_generator_model_step_is_noop(self) -> None:
        with pytest.raises(ParseExhaustedError) as exc_info:
            await JsonNormalizer().normalize("  plain text  ", max_iterations=2)
        assert exc_info.value.last_text == "plain text"

    async def test_none_input_treated_as_empty(self) -> None:
        with pytest.raises(ParseExhaustedError):
            await JsonNormalizer().normalize(None)

    def test_model_step_must_be_last(self) -> None:
        steps = (RepairStep("model_repair", uses_model=True), RepairStep("trim", trim_whitespace))
        with pytest.raises(ValueError, match="must be the last step"):
            JsonNormalizer(steps=steps)

    async def test_custom_steps(self) -> None:
        steps = (RepairStep("unquote", lambda text: text.strip("'")),)
        normalizer = JsonNormalizer(steps=steps)
        assert await normalizer.normalize("'[1, 2]'") == [1, 2]

    async def test_closing_fence_without_opening_keeps_payload(self, scripted_generator) -> None:
        generator = scripted_generator(lambda prompt, model: "still not json")
        normalizer = JsonNormalizer(generator)

        result = await normalizer.normalize(
            '{"text":"a"}\n```', max_iterations=1, schema=GeneratedParagraph
        )

        assert result == GeneratedParagraph(text="a")
        assert generator.calls == []

    async def test_repair_prompt_carries_payload_with_stray_fence(
        self, scripted_generator
    ) -> None:
        generator = scripted_generator(lambda prompt, model: '{"text": "fixed"}')
        normalizer = JsonNormalizer(generator)

        result = await normalizer.normalize(
            "{'text': 'a'}\n```", max_iterations=1, schema=GeneratedParagraph
        )

        assert result.text == "fixed"
        assert "{'text': 'a'}" in generator.calls[0][0]

    async def test_extra_keys_are_accepted_without_repair(self, scripted_generator) -> None:
        generator = scripted_generator(lambda prompt, model: "unused")
        normalizer = JsonNormalizer(generator)

        result = await normalizer.normalize(
            '{"text": "A paragraph.", "title": "x"}', max_iterations=1, schema=GeneratedParagraph
        )

        assert result.text == "A paragraph."
        assert generator.calls == []

    async def test_deeply_nested_output_counts_as_unparseable(self, scripted_generator) -> None:
        generator = scripted_generator(lambda prompt, model: "[" * 100_000 + "]" * 100_000)
        normalizer = JsonNormalizer(generator)

        with pytest.raises(ParseExhaustedError):
            await normalizer.normalize("[" * 100_000 + "]" * 100_000, max_iterations=1)
        assert len(generator.calls) == 1
