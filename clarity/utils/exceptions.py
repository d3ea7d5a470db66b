"""
Custom exception hierarchy for Clarity.

Exceptions are raised inside providers and stores. Services convert them
into explicit outcome values before anything reaches the API layer.
"""


class ClarityError(Exception):
    """
    Base exception for all Clarity errors.
    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, context: dict | None = None):
        """
        Initialize Clarity error.
        Args:
            message: Error message
            context: Optional context dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class StoreError(ClarityError):
    """
    Persistence errors.
    Raised when a note store operation fails.
    """

    pass


class NotFoundError(ClarityError):
    """
    Resource not found errors.
    Raised when a note, project or record no longer exists, including
    notes deleted while an extraction was in flight.
    """

    pass


class ValidationError(ClarityError):
    """
    Validation errors.
    Raised when input validation fails or data is invalid.
    """

    pass


class ConfigurationError(ClarityError):
    """
    Configuration errors.
    Raised when configuration is invalid or missing required values.
    """

    pass


class LLMError(ClarityError):
    """
    Inference errors.
    Raised when an LLM call fails (API errors, connection errors, timeouts).
    """

    pass


class ParseError(ClarityError):
    """
    Raised when an inference response cannot be decoded into the expected shape.
    """

    pass


class UrlFetchError(ClarityError):
    """
    Raised when URL metadata cannot be fetched or parsed.
    """

    pass
