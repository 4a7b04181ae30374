"""
Book Forge - Generate complete books with language models.

This package turns a short book specification into a persisted book: an
outline of chapters, seed paragraphs per chapter, full paragraph text and a
final neighbor-aware refinement pass, all run as asynchronous stage jobs.
"""

__version__ = "0.1.0"

from .config import GenerationConfig
from .exceptions import (
    BookForgeError,
    ConfigurationError,
    InvocationError,
    ParseExhaustedError,
    PersistenceError,
    RetryExhaustedError,
    StageError,
)
from .models import Book, Chapter, Paragraph, ParagraphStatus, PipelineState
from .pipeline import BookPipeline
from .schemas import BookSpec

__all__ = [
    "Book",
    "BookForgeError",
    "BookPipeline",
    "BookSpec",
    "Chapter",
    "ConfigurationError",
    "GenerationConfig",
    "InvocationError",
    "Paragraph",
    "ParagraphStatus",
    "ParseExhaustedError",
    "PersistenceError",
    "PipelineState",
    "RetryExhaustedError",
    "StageError",
]
