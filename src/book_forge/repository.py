"""Book repository for persistence operations.

This module provides a filesystem implementation of the BookStore protocol.
Each book is a single JSON document at ``<root>/<scope>/<book_id>.json``.

Every method completes its read-modify-write without suspending, so
operations issued by concurrently interleaved tasks on one event loop never
lose each other's updates.

Example:
    >>> from book_forge.repository import JsonBookRepository
    >>> repository = JsonBookRepository(Path("output"))
    >>> book_id = await repository.create_book("default", {"title": "T", "abstract": "{}"})
    >>> chapter_id = await repository.add_chapter("default", book_id, {"title": "C", "idea": "I"})
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from pathlib import Path
from typing import Any

from .exceptions import PersistenceError
from .models import ParagraphStatus

logger = logging.getLogger(__name__)

_SCOPE_PATTERN = re.compile(r"^[\w.-]+$")


class JsonBookRepository:
    """Repository storing books as JSON documents on the filesystem.

    Attributes:
        root: Base directory; one sub-directory per scope
    """

    def __init__(self, root: Path) -> None:
        """Initialize the repository.

        Args:
            root: Base directory for book files
        """
        self.root = Path(root)

    def path_for(self, scope: str, book_id: str) -> Path:
        """Location of a book document."""
        if not _SCOPE_PATTERN.match(scope):
            raise PersistenceError("Invalid scope name", scope=scope)
        if not _SCOPE_PATTERN.match(book_id):
            raise PersistenceError("Invalid book id", book_id=book_id)
        return self.root / scope / f"{book_id}.json"

    # ------------------------------------------------------------------
    # BookStore protocol
    # ------------------------------------------------------------------

    async def create_book(self, scope: str, data: dict[str, Any]) -> str:
        book_id = uuid.uuid4().hex
        document = {
            "id": book_id,
            "title": data.get("title", ""),
            "abstract": data.get("abstract", ""),
            "chapters": [],
        }
        self._write(scope, book_id, document)
        logger.info(f"Created book {book_id}: {document['title']}")
        return book_id

    async def add_chapter(self, scope: str, book_id: str, data: dict[str, Any]) -> str:
        document = self._read(scope, book_id)
        chapter_id = uuid.uuid4().hex
        document["chapters"].append(
            {
                "id": chapter_id,
                "title": data.get("title", ""),
                "idea": data.get("idea", ""),
                "paragraphs": [],
            }
        )
        self._write(scope, book_id, document)
        return chapter_id

    async def add_paragraph(
        self, scope: str, book_id: str, chapter_id: str, data: dict[str, Any]
    ) -> str:
        document = self._read(scope, book_id)
        chapter = self._chapter(document, book_id, chapter_id)
        paragraph_id = uuid.uuid4().hex
        chapter["paragraphs"].append(
            {
                "id": paragraph_id,
                "text": data.get("text", ""),
                "status": data.get("status", ParagraphStatus.SEED.value),
            }
        )
        self._write(scope, book_id, document)
        return paragraph_id

    async def update_paragraph(
        self,
        scope: str,
        book_id: str,
        chapter_id: str,
        paragraph_id: str,
        data: dict[str, Any],
    ) -> None:
        document = self._read(scope, book_id)
        paragraph = self._paragraph(document, book_id, chapter_id, paragraph_id)
        for key, value in data.items():
            if key == "id":
                continue
            paragraph[key] = value
        self._write(scope, book_id, document)

    async def get_book(self, scope: str, book_id: str) -> dict[str, Any]:
        return self._read(scope, book_id)

    async def delete_paragraph(
        self, scope: str, book_id: str, chapter_id: str, paragraph_id: str
    ) -> None:
        document = self._read(scope, book_id)
        chapter = self._chapter(document, book_id, chapter_id)
        remaining = [p for p in chapter["paragraphs"] if p["id"] != paragraph_id]
        if len(remaining) == len(chapter["paragraphs"]):
            raise PersistenceError(
                "Unknown paragraph",
                book_id=book_id,
                chapter_id=chapter_id,
                paragraph_id=paragraph_id,
            )
        chapter["paragraphs"] = remaining
        self._write(scope, book_id, document)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read(self, scope: str, book_id: str) -> dict[str, Any]:
        path = self.path_for(scope, book_id)
        if not path.exists():
            raise PersistenceError("Unknown book", scope=scope, book_id=book_id)
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(
                "Failed to read book", path=str(path), error=str(e)
            ) from e

    def _write(self, scope: str, book_id: str, document: dict[str, Any]) -> None:
        path = self.path_for(scope, book_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
            tmp_path.replace(path)
        except OSError as e:
            raise PersistenceError(
                "Failed to write book", path=str(path), error=str(e)
            ) from e

    @staticmethod
    def _chapter(document: dict[str, Any], book_id: str, chapter_id: str) -> dict[str, Any]:
        for chapter in document["chapters"]:
            if chapter["id"] == chapter_id:
                return chapter
        raise PersistenceError("Unknown chapter", book_id=book_id, chapter_id=chapter_id)

    @classmethod
    def _paragraph(
        cls, document: dict[str, Any], book_id: str, chapter_id: str, paragraph_id: str
    ) -> dict[str, Any]:
        chapter = cls._chapter(document, book_id, chapter_id)
        for paragraph in chapter["paragraphs"]:
            if paragraph["id"] == paragraph_id:
                return paragraph
        raise PersistenceError(
            "Unknown paragraph",
            book_id=book_id,
            chapter_id=chapter_id,
            paragraph_id=paragraph_id,
        )
