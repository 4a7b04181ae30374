"""Services package for book_forge.

Modules:
    factory: ServiceFactory for centralized dependency management
    generator: OpenAIGenerator, the default TextGenerator
"""

from .factory import ServiceFactory
from .generator import OpenAIGenerator

__all__ = ["OpenAIGenerator", "ServiceFactory"]
