"""Custom exceptions for the appgen pipeline."""

from typing import Any, Dict, List, Optional


class AppgenError(Exception):
    """Base exception for all appgen errors."""

    pass


class GenerationError(AppgenError):
    """A single generation attempt failed.

    Carries the failure category (an ``ErrorCategory`` value) so the retry
    strategist can pick a policy without re-parsing the message.
    """

    def __init__(
        self,
        message: str,
        category: Any = None,
        code: Optional[str] = None,
        original_response: Optional[str] = None,
        validation_details: Optional[List[Dict[str, Any]]] = None,
    ):
        """
        Initialize generation error.

        Args:
            message: Human-readable error message
            category: ErrorCategory of the failure (None means classify later)
            code: Machine-readable error code for the caller
            original_response: Raw (possibly partial) model response
            validation_details: Per-file validation defects, if any
        """
        super().__init__(message)
        self.category = category
        self.code = code
        self.original_response = original_response
        self.validation_details = validation_details


class StreamTimeoutError(GenerationError):
    """Raised when a stream exceeds its wall-clock deadline."""

    pass


class StreamAbortedError(AppgenError):
    """Raised when the caller aborted the stream (e.g. client disconnect)."""

    pass


class NetworkError(AppgenError):
    """Exception raised for network-related errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class APIError(AppgenError):
    """Exception raised for LLM provider API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        """
        Initialize API error.

        Args:
            message: Error message
            status_code: Optional HTTP status code
            response_data: Optional response data from API
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class InvalidRequestError(AppgenError):
    """The build request body failed boundary validation."""

    pass


class TransportConfigurationError(AppgenError):
    """The LLM transport is not usable (e.g. missing API key)."""

    pass
