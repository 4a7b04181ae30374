"""Unit tests for book_forge.repository module.

Tests the JSON file repository implementation of the BookStore protocol.
"""

import json
from pathlib import Path

import pytest

from book_forge.exceptions import PersistenceError
from book_forge.protocols import BookStore
from book_forge.repository import JsonBookRepository


class TestJsonBookRepository:
    """Tests for JsonBookRepository."""

    def test_satisfies_protocol(self, repository: JsonBookRepository) -> None:
        assert isinstance(repository, BookStore)

    async def test_create_and_get_book(self, repository: JsonBookRepository) -> None:
        book_id = await repository.create_book("team", {"title": "Rivers", "abstract": "{}"})

        document = await repository.get_book("team", book_id)
        assert document == {"id": book_id, "title": "Rivers", "abstract": "{}", "chapters": []}
        assert repository.path_for("team", book_id).exists()

    async def test_chapters_and_paragraphs_keep_order(
        self, repository: JsonBookRepository
    ) -> None:
        book_id = await repository.create_book("team", {"title": "Rivers"})
        first = await repository.add_chapter("team", book_id, {"title": "One", "idea": "I"})
        second = await repository.add_chapter("team", book_id, {"title": "Two", "idea": "II"})
        p1 = await repository.add_paragraph("team", book_id, first, {"text": "a"})
        p2 = await repository.add_paragraph(
            "team", book_id, first, {"text": "b", "status": "generated"}
        )

        document = await repository.get_book("team", book_id)
        assert [c["id"] for c in document["chapters"]] == [first, second]
        paragraphs = document["chapters"][0]["paragraphs"]
        assert [p["id"] for p in paragraphs] == [p1, p2]
        assert paragraphs[0]["status"] == "seed"
        assert paragraphs[1]["status"] == "generated"

    async def test_update_paragraph_keeps_id(self, repository: JsonBookRepository) -> None:
        book_id = await repository.create_book("team", {"title": "Rivers"})
        chapter_id = await repository.add_chapter("team", book_id, {"title": "One"})
        paragraph_id = await repository.add_paragraph("team", book_id, chapter_id, {"text": "a"})

        await repository.update_paragraph(
            "team",
            book_id,
            chapter_id,
            paragraph_id,
            {"text": "new", "status": "refined", "id": "hijacked"},
        )

        paragraph = (await repository.get_book("team", book_id))["chapters"][0]["paragraphs"][0]
        assert paragraph == {"id": paragraph_id, "text": "new", "status": "refined"}

    async def test_delete_paragraph(self, repository: JsonBookRepository) -> None:
        book_id = await repository.create_book("team", {"title": "Rivers"})
        chapter_id = await repository.add_chapter("team", book_id, {"title": "One"})
        keep = await repository.add_paragraph("team", book_id, chapter_id, {"text": "a"})
        drop = await repository.add_paragraph("team", book_id, chapter_id, {"text": "b"})

        await repository.delete_paragraph("team", book_id, chapter_id, drop)

        paragraphs = (await repository.get_book("team", book_id))["chapters"][0]["paragraphs"]
        assert [p["id"] for p in paragraphs] == [keep]
        with pytest.raises(PersistenceError, match="Unknown paragraph"):
            await repository.delete_paragraph("team", book_id, chapter_id, drop)

    async def test_scopes_are_isolated(self, repository: JsonBookRepository) -> None:
        book_id = await repository.create_book("team-a", {"title": "Rivers"})
        with pytest.raises(PersistenceError, match="Unknown book"):
            await repository.get_book("team-b", book_id)

    async def test_unknown_ids_raise(self, repository: JsonBookRepository) -> None:
        book_id = await repository.create_book("team", {"title": "Rivers"})
        with pytest.raises(PersistenceError, match="Unknown chapter"):
            await repository.add_paragraph("team", book_id, "nope", {"text": "a"})
        chapter_id = await repository.add_chapter("team", book_id, {"title": "One"})
        with pytest.raises(PersistenceError, match="Unknown paragraph"):
            await repository.update_paragraph("team", book_id, chapter_id, "nope", {"text": "x"})

    @pytest.mark.parametrize("scope", ["../escape", "a/b", ""])
    def test_invalid_scope_rejected(self, repository: JsonBookRepository, scope: str) -> None:
        with pytest.raises(PersistenceError, match="Invalid scope"):
            repository.path_for(scope, "abc")

    async def test_corrupted_file_raises(self, repository: JsonBookRepository) -> None:
        book_id = await repository.create_book("team", {"title": "Rivers"})
        repository.path_for("team", book_id).write_text("{broken")
        with pytest.raises(PersistenceError, match="Failed to read book"):
            await repository.get_book("team", book_id)

    async def test_unwritable_root_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        repository = JsonBookRepository(blocker)
        with pytest.raises(PersistenceError, match="Failed to write book"):
            await repository.create_book("team", {"title": "Rivers"})

    async def test_document_is_plain_json(self, repository: JsonBookRepository) -> None:
        book_id = await repository.create_book("team", {"title": "Caf&eacute;"})
        with repository.path_for("team", book_id).open(encoding="utf-8") as f:
            assert json.load(f)["title"] == "Caf&eacute;"
