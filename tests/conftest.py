"""Pytest configuration and fixtures for book_forge tests.

This module provides shared fixtures for testing the book_forge package.
Fixtures follow pytest best practices:
- Use monkeypatch for environment manipulation
- Use tmp_path for file operations
- Use scripted fakes instead of network calls
"""

import asyncio
import json
import re
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all BOOK_FORGE_* environment variables.

    Use this fixture when testing configuration loading to ensure
    no environment variables interfere with test expectations.
    """
    import os

    for key in list(os.environ.keys()):
        if key.startswith("BOOK_FORGE_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def mock_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Provide a helper to set BOOK_FORGE_* environment variables.

    Example:
        def test_env_loading(mock_env):
            mock_env["MODEL"] = "gpt-4o-mini"
            # BOOK_FORGE_MODEL is now set
    """

    class EnvSetter(dict[str, str]):
        def __setitem__(self, key: str, value: str) -> None:
            super().__setitem__(key, value)
            monkeypatch.setenv(f"BOOK_FORGE_{key}", value)

    return EnvSetter()


@pytest.fixture
def config_dict() -> dict[str, Any]:
    """Provide valid configuration values as a dictionary."""
    return {
        "model": "gpt-4o-mini",
        "temperature": 0.2,
        "max_concurrent": 4,
        "retry_attempts": 2,
        "retry_delay": 0.5,
        "stage_retry_attempts": 2,
        "generation_parse_iterations": 4,
        "refinement_parse_iterations": 2,
        "transition_pass": True,
        "debug_mode": False,
    }


@pytest.fixture
def fast_config(tmp_path: Path):
    """A GenerationConfig with no retry delays, writing under tmp_path."""
    from book_forge.config import GenerationConfig

    return GenerationConfig(
        model="test-model",
        max_concurrent=2,
        retry_attempts=2,
        retry_delay=0.0,
        generation_parse_iterations=1,
        refinement_parse_iterations=1,
        output_dir=tmp_path,
    )


# ============================================================================
# Generator Fakes
# ============================================================================


class ScriptedGenerator:
    """TextGenerator fake answering through a responder callable.

    The responder receives (prompt, model) and returns the raw text or raises.
    Every call is recorded; each call yields to the event loop once so
    concurrently scheduled units interleave like real network calls.
    """

    def __init__(self, responder: Callable[[str, str], str]) -> None:
        self.responder = responder
        self.calls: list[tuple[str, str, str]] = []

    async def generate(self, prompt: str, model: str, scope: str) -> str:
        self.calls.append((prompt, model, scope))
        await asyncio.sleep(0)
        return self.responder(prompt, model)

    def prompts_containing(self, marker: str) -> list[str]:
        return [prompt for prompt, _, _ in self.calls if marker in prompt]


OUTLINE_MARKER = "generate a book schema template"
PLAN_MARKER = "generate a list of paragraph ideas"
PARAGRAPH_MARKER = "write a comprehensive and detailed paragraph"
REFINE_MARKER = "refactor the current paragraph"
TRANSITION_MARKER = "improving transitions between paragraphs"
REPAIR_MARKER = "Please convert the following string"

_CHAPTER_DATA = re.compile(r'Chapter data: \{"title": "([^"]+)"')
_SEED_IDEA = re.compile(r"expand on this idea: (.+)\.\n")
_CURRENT = re.compile(r'\*\*Current Paragraph\*\*:\n"(.*?)"', re.DOTALL)


def book_responder(
    chapters: dict[str, list[str]],
    fail_seeds: set[str] | None = None,
    fail_chapters: set[str] | None = None,
) -> Callable[[str, str], str]:
    """Build a responder that writes a whole book deterministically.

    Args:
        chapters: Chapter title -> seed paragraph ideas, in order
        fail_seeds: Seed ideas whose paragraph generation always fails
        fail_chapters: Chapter titles whose plan is never valid JSON
    """
    from book_forge.exceptions import InvocationError

    fail_seeds = fail_seeds or set()
    fail_chapters = fail_chapters or set()

    def respond(prompt: str, model: str) -> str:
        if REPAIR_MARKER in prompt:
            return "still not json"
        if OUTLINE_MARKER in prompt:
            outline = [{"title": title, "idea": f"About {title}"} for title in chapters]
            return json.dumps({"chapters": outline})
        if PLAN_MARKER in prompt:
            match = _CHAPTER_DATA.search(prompt)
            assert match is not None
            title = match.group(1)
            if title in fail_chapters:
                return "I cannot plan this chapter"
            return json.dumps({"paragraphs": [{"idea": idea} for idea in chapters[title]]})
        if PARAGRAPH_MARKER in prompt:
            match = _SEED_IDEA.search(prompt)
            assert match is not None
            seed = match.group(1)
            if seed in fail_seeds:
                raise InvocationError("Generation request failed", model=model)
            return json.dumps({"text": f"Text for {seed}"})
        if REFINE_MARKER in prompt or TRANSITION_MARKER in prompt:
            match = _CURRENT.search(prompt)
            assert match is not None
            return "```json\n" + json.dumps({"text": f"Refined: {match.group(1)}"}) + "\n```"
        raise AssertionError(f"Unexpected prompt: {prompt[:80]}")

    return respond


@pytest.fixture
def scripted_generator() -> type[ScriptedGenerator]:
    """The ScriptedGenerator class, for building generators in tests."""
    return ScriptedGenerator


@pytest.fixture
def make_book_responder() -> Callable[..., Callable[[str, str], str]]:
    """The book_responder builder."""
    return book_responder


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def repository(tmp_path: Path):
    """A JsonBookRepository rooted in a temporary directory."""
    from book_forge.repository import JsonBookRepository

    return JsonBookRepository(tmp_path / "books")


@pytest.fixture
def sample_spec():
    """A small book specification."""
    from book_forge.schemas import BookSpec

    return BookSpec(
        title="Rivers of Europe",
        informative_text="A short travel guide to the great rivers",
        prompt="Keep a friendly tone",
    )


# ============================================================================
# OpenAI Client Mocking Fixtures
# ============================================================================


@pytest.fixture
def mock_async_openai_client():
    """Create a mock AsyncOpenAI client.

    Returns a MagicMock whose ``responses.create`` is an AsyncMock that
    individual tests configure.
    """
    from unittest.mock import AsyncMock, MagicMock

    client = MagicMock()
    client.responses = MagicMock()
    client.responses.create = AsyncMock()
    return client


@pytest.fixture
def mock_text_response():
    """Create a mock Responses API result with text output."""
    from unittest.mock import MagicMock

    response = MagicMock()
    response.output_text = '{"text": "Generated paragraph."}'
    response.usage = MagicMock()
    response.usage.input_tokens = 100
    response.usage.output_tokens = 50
    return response
