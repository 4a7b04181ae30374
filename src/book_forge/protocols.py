"""Protocol definitions for book_forge collaborators.

The pipeline only depends on these interfaces. Default implementations live
in book_forge.services.generator (OpenAI), book_forge.repository (JSON files)
and book_forge.sanitize (HTML entities); tests substitute in-process fakes.

Example:
    >>> class EchoGenerator:
    ...     async def generate(self, prompt: str, model: str, scope: str) -> str:
    ...         return '{"text": "echo"}'
    ...
    >>> isinstance(EchoGenerator(), TextGenerator)
    True
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class TextGenerator(Protocol):
    """Opaque text-in/text-out generation service."""

    async def generate(self, prompt: str, model: str, scope: str) -> str:
        """Generate text for a prompt.

        Args:
            prompt: Full prompt text
            model: Model identifier to use
            scope: Tenant/space the call is made on behalf of

        Returns:
            Raw model output

        Raises:
            InvocationError: If the call fails
        """
        ...


@runtime_checkable
class BookStore(Protocol):
    """Persistent storage for books, chapters and paragraphs.

    All methods raise PersistenceError when storage is unreachable or
    rejects the operation.
    """

    async def create_book(self, scope: str, data: dict[str, Any]) -> str:
        """Create a book from {title, abstract} and return its id."""
        ...

    async def add_chapter(self, scope: str, book_id: str, data: dict[str, Any]) -> str:
        """Append a chapter {title, idea} and return its id."""
        ...

    async def add_paragraph(
        self, scope: str, book_id: str, chapter_id: str, data: dict[str, Any]
    ) -> str:
        """Append a paragraph {text, status} and return its id."""
        ...

    async def update_paragraph(
        self,
        scope: str,
        book_id: str,
        chapter_id: str,
        paragraph_id: str,
        data: dict[str, Any],
    ) -> None:
        """Merge data into an existing paragraph; the id never changes."""
        ...

    async def get_book(self, scope: str, book_id: str) -> dict[str, Any]:
        """Return {title, abstract, chapters: [{id, title, idea, paragraphs: [{id, text}]}]}."""
        ...

    async def delete_paragraph(
        self, scope: str, book_id: str, chapter_id: str, paragraph_id: str
    ) -> None:
        """Remove a paragraph (used for compensating rollback)."""
        ...


@runtime_checkable
class TextSanitizer(Protocol):
    """Reversible text transform applied to stored text."""

    def sanitize(self, text: str) -> str:
        """Encode text for storage."""
        ...

    def unsanitize(self, text: str) -> str:
        """Decode stored text before embedding it into a prompt."""
        ...
