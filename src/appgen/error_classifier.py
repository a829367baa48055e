"""
Failure classification for generation attempts.

Every failed attempt is mapped to exactly one ErrorCategory before it reaches
the retry strategist, which owns the per-category policy.
"""

import asyncio
import logging
from enum import Enum
from typing import Union

from .exceptions import APIError, GenerationError, NetworkError

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Closed set of generation failure categories."""

    PARSING_ERROR = "parsing_error"  # Required markers absent or malformed
    EMPTY_RESPONSE = "empty_response"  # Stream finished with no text
    AI_ERROR = "ai_error"  # Provider/transport failure
    TIMEOUT_ERROR = "timeout_error"  # Budgeted deadline exceeded
    RATE_LIMIT_ERROR = "rate_limit_error"  # Provider throttling
    VALIDATION_ERROR = "validation_error"  # Unfixed static-check defects
    TRUNCATION = "truncation"  # Cut off with nothing salvageable
    PHASE_EXTRACTION_ERROR = "phase_extraction_error"
    PHASE_TOO_LARGE = "phase_too_large"
    PHASE_TRUNCATION = "phase_truncation"
    UNKNOWN_ERROR = "unknown_error"


# Machine-readable codes surfaced on the terminal error event
ERROR_CODES = {
    ErrorCategory.PARSING_ERROR: "PARSE_ERROR",
    ErrorCategory.EMPTY_RESPONSE: "EMPTY_RESPONSE",
    ErrorCategory.AI_ERROR: "AI_ERROR",
    ErrorCategory.TIMEOUT_ERROR: "TIMEOUT",
    ErrorCategory.RATE_LIMIT_ERROR: "RATE_LIMITED",
    ErrorCategory.VALIDATION_ERROR: "VALIDATION_FAILED",
    ErrorCategory.TRUNCATION: "TRUNCATED",
    ErrorCategory.PHASE_EXTRACTION_ERROR: "PHASE_EXTRACTION_ERROR",
    ErrorCategory.PHASE_TOO_LARGE: "PHASE_TOO_LARGE",
    ErrorCategory.PHASE_TRUNCATION: "PHASE_TRUNCATED",
    ErrorCategory.UNKNOWN_ERROR: "GENERATION_ERROR",
}


def categorize_error_message(message: str) -> ErrorCategory:
    """Keyword fallback for errors that carry no explicit category."""
    lowered = (message or "").lower()

    if "validation" in lowered or "invalid" in lowered:
        return ErrorCategory.VALIDATION_ERROR
    if "timeout" in lowered or "timed out" in lowered:
        return ErrorCategory.TIMEOUT_ERROR
    if "rate limit" in lowered or "429" in lowered:
        return ErrorCategory.RATE_LIMIT_ERROR
    if "parse" in lowered or "json" in lowered:
        return ErrorCategory.PARSING_ERROR
    if "anthropic" in lowered or "api" in lowered:
        return ErrorCategory.AI_ERROR

    return ErrorCategory.UNKNOWN_ERROR


def classify_exception(error: Union[BaseException, str]) -> ErrorCategory:
    """
    Classify a failed attempt.

    Args:
        error: The exception raised by the attempt, or a bare message

    Returns:
        ErrorCategory for the retry policy lookup
    """
    if isinstance(error, str):
        return categorize_error_message(error)

    if isinstance(error, GenerationError) and isinstance(error.category, ErrorCategory):
        return error.category

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCategory.TIMEOUT_ERROR

    if isinstance(error, APIError):
        if error.status_code == 429:
            return ErrorCategory.RATE_LIMIT_ERROR
        return ErrorCategory.AI_ERROR

    if isinstance(error, NetworkError):
        if "timed out" in str(error).lower() or "timeout" in str(error).lower():
            return ErrorCategory.TIMEOUT_ERROR
        return ErrorCategory.AI_ERROR

    category = categorize_error_message(str(error))
    logger.debug(f"[ErrorClassifier] {type(error).__name__} classified by message as {category.value}")
    return category


def error_code_for(category: ErrorCategory) -> str:
    return ERROR_CODES[category]
