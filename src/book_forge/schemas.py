"""Pydantic schemas for book specifications and generation output.

These models define the shapes the generation service is asked to produce
and that the JSON normalizer validates against. The JSON Schema of each model
is embedded into prompts, so field descriptions double as instructions.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BookSpec(BaseModel):
    """High-level specification of the book to generate.

    Extra fields (edition, audience, language, ...) are allowed and travel
    with the spec into the stored abstract and every prompt.
    """

    title: str = Field(min_length=1, description="Title of the book")
    informative_text: str = Field(
        "",
        description="Description of what the book is about",
    )
    prompt: str = Field(
        "",
        description="General instructions applied to every generation call",
    )

    model_config = ConfigDict(extra="allow")

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must not be blank")
        return value.strip()


class ChapterOutline(BaseModel):
    """One chapter entry of a book outline."""

    title: str = Field(description="Chapter title")
    idea: str = Field(description="What the chapter is about, in one or two sentences")

    model_config = ConfigDict(extra="ignore")


class BookOutline(BaseModel):
    """Ordered list of chapters for a book."""

    chapters: list[ChapterOutline] = Field(
        ...,
        min_length=1,
        description="Chapters of the book in reading order",
    )

    model_config = ConfigDict(extra="ignore")


class ParagraphIdea(BaseModel):
    """Seed idea for a single paragraph."""

    idea: str = Field(description="Short description of what the paragraph should cover")

    model_config = ConfigDict(extra="ignore")


class ChapterPlan(BaseModel):
    """Ordered paragraph ideas for one chapter."""

    paragraphs: list[ParagraphIdea] = Field(
        ...,
        min_length=1,
        description="Paragraph ideas in reading order; as many as the chapter needs",
    )

    model_config = ConfigDict(extra="ignore")


class GeneratedParagraph(BaseModel):
    """Full text of a generated or refined paragraph."""

    text: str = Field(description="The complete paragraph text")

    model_config = ConfigDict(extra="ignore")

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be blank")
        return value
