"""Custom exceptions for book_forge.

This module defines the exception hierarchy used throughout the generation
pipeline. Every error carries optional keyword context that is rendered into
its string form, which keeps log lines self-describing.

The hierarchy mirrors the failure domains of a run:
- Normalizer budget exhausted (ParseExhaustedError)
- Generation service call failed (InvocationError)
- All retry attempts used up (RetryExhaustedError)
- Storage unreachable or write rejected (PersistenceError)

Example:
    >>> try:
    ...     raise InvocationError("Quota exceeded", model="gpt-4o")
    ... except BookForgeError as e:
    ...     print(f"Error in {e.context}: {e}")
"""

from __future__ import annotations


class BookForgeError(Exception):
    """Base exception for all book_forge errors.

    Attributes:
        message: Human-readable error description
        context: Additional context about where/when the error occurred
    """

    def __init__(self, message: str, **context: str | int | float | bool | None) -> None:
        """Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error description
            **context: Additional context (e.g., chapter="Chapter 1", attempts=3)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format error message with context."""
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class ParseExhaustedError(BookForgeError):
    """The JSON normalizer could not produce valid data within its budget.

    Attributes:
        last_text: Working string after the final repair pass
        iterations: Number of full passes that were attempted

    Example:
        >>> raise ParseExhaustedError(
        ...     "Unable to ensure valid JSON after all phases",
        ...     last_text="not json",
        ...     iterations=1,
        ... )
    """

    def __init__(
        self,
        message: str,
        last_text: str = "",
        iterations: int = 0,
        **context: str | int | float | bool | None,
    ) -> None:
        super().__init__(message, iterations=iterations, **context)
        self.last_text = last_text
        self.iterations = iterations


class InvocationError(BookForgeError):
    """Error raised when a generation service call fails.

    Raised when:
    - The API returns a transport, quota or rate-limit error
    - The response carries no text output

    Example:
        >>> raise InvocationError(
        ...     "Rate limit exceeded",
        ...     model="gpt-4o",
        ... )
    """

    pass


class RetryExhaustedError(BookForgeError):
    """All attempts of a retried operation failed.

    Wraps the last underlying error, which is also chained as ``__cause__``.

    Attributes:
        attempts: Number of attempts that were made
        last_error: The exception raised by the final attempt
    """

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_error: BaseException | None = None,
        **context: str | int | float | bool | None,
    ) -> None:
        super().__init__(message, attempts=attempts, **context)
        self.attempts = attempts
        self.last_error = last_error


class PersistenceError(BookForgeError):
    """Error raised when the storage collaborator fails.

    Raised when:
    - The book file cannot be read or written
    - A book, chapter or paragraph id is unknown
    - Stored data is corrupted

    Persistence failures are fatal and never retried by the generation retry
    policy.

    Example:
        >>> raise PersistenceError(
        ...     "Unknown chapter",
        ...     book_id="3f2a",
        ...     chapter_id="9c1e",
        ... )
    """

    pass


class ConfigurationError(BookForgeError):
    """Error in configuration or settings.

    Raised when:
    - Configuration file is invalid
    - Settings have invalid values
    - Environment variables are malformed

    Example:
        >>> raise ConfigurationError(
        ...     "max_concurrent must be at least 1",
        ...     max_concurrent=0,
        ... )
    """

    pass


class StageError(BookForgeError):
    """A pipeline stage failed fatally.

    Raised by stage jobs when the run cannot continue, for example when the
    book outline or a chapter plan could not be generated.

    Attributes:
        stage: Name of the failed stage
    """

    def __init__(
        self,
        message: str,
        stage: str = "",
        **context: str | int | float | bool | None,
    ) -> None:
        super().__init__(message, stage=stage, **context)
        self.stage = stage
