"""
Retry strategy with category-specific corrective instructions.

Attempts are numbered 1..max_attempts. After a failed attempt the strategist
decides whether another provider call is allowed, how long to wait first, and
what corrective instruction to append to the conversation so the model does
not repeat the same failure.

Every ErrorCategory has an entry in the policy table; a category added to the
enum without a policy fails at import time rather than silently falling back
to a default.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .error_classifier import ErrorCategory

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    max_attempts: int = 2
    include_original_prompt: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")


@dataclass
class RetryContext:
    """State carried from one failed attempt to the retry decision."""

    attempt_number: int  # 1-based number of the attempt that just failed
    previous_error: str
    error_category: ErrorCategory
    original_response: Optional[str] = None
    validation_details: Optional[List[Dict[str, Any]]] = None
    phase_number: Optional[float] = None
    estimated_tokens: Optional[float] = None


@dataclass
class RetryResult:
    should_retry: bool
    correction_prompt: Optional[str] = None
    retry_delay_seconds: float = 0.0


# =============================================================================
# Corrective instructions
# =============================================================================


def _parsing_prompt(ctx: RetryContext) -> str:
    return f"""
PREVIOUS ATTEMPT FAILED - RESPONSE FORMAT ERROR

Error: {ctx.previous_error}

Problem: Your previous response was missing the required delimiters and could not be parsed.

CRITICAL FIXES NEEDED:
1. Start with ===NAME=== and ===DESCRIPTION=== sections
2. Begin every file with ===FILE:path/to/file=== on its own line
3. Include ===DEPENDENCIES=== and ===SETUP=== sections
4. Finish the response with ===END===

Reissue the complete, correctly delimited response now:"""


def _empty_response_prompt(ctx: RetryContext) -> str:
    return f"""
PREVIOUS ATTEMPT FAILED - EMPTY RESPONSE

Error: {ctx.previous_error}

Problem: The previous attempt returned no visible output.

REQUIRED:
1. Keep planning brief and produce the full delimited response
2. Emit at least one ===FILE:...=== section
3. Finish the response with ===END===

Please generate the response now:"""


def _validation_prompt(ctx: RetryContext) -> str:
    return f"""
PREVIOUS ATTEMPT FAILED - CODE VALIDATION ERROR

Error: {ctx.previous_error}

Validation Issues Found:
{format_validation_issues(ctx.validation_details)}

CRITICAL FIXES NEEDED:
1. Close all strings (check quotes and template literals)
2. Balance all JSX tags (every <div> needs </div>)
3. Don't use TypeScript syntax in .jsx files
4. Avoid nested function declarations (use arrow functions or move functions outside)

Now, please retry with corrected code that passes validation:"""


def _ai_error_prompt(ctx: RetryContext) -> str:
    return f"""
PREVIOUS ATTEMPT FAILED - AI PROCESSING ERROR

Error: {ctx.previous_error}

Problem: The AI service encountered an error processing this request.

SIMPLIFICATION STRATEGIES:
1. Generate fewer files at once
2. Keep each file focused on one concern
3. Defer secondary features to a follow-up request

Now, please retry with a simplified approach:"""


def _timeout_prompt(ctx: RetryContext) -> str:
    return f"""
PREVIOUS ATTEMPT FAILED - REQUEST TIMEOUT

Error: {ctx.previous_error}

Problem: Generation took too long to complete.

REQUIRED ACTIONS:
1. Reduce scope - generate FEWER files
2. Keep each file under 200 lines
3. Focus on the most critical functionality only

Now, please retry with a MUCH smaller, focused response:"""


def _truncation_prompt(ctx: RetryContext) -> str:
    phase_line = f"Phase: {ctx.phase_number}\n" if ctx.phase_number is not None else ""
    return f"""
PREVIOUS ATTEMPT FAILED - RESPONSE TRUNCATED

Error: {ctx.previous_error}
{phase_line}
Problem: The generated code was cut off before completion.

RECOVERY STRATEGY:
1. Generate FEWER files this time
2. Focus on the CORE functionality only
3. Defer secondary features to the next phase
4. Keep each file under 200 lines
5. Always finish with ===END===

Now, please retry with a MORE FOCUSED output:"""


def _phase_extraction_prompt(ctx: RetryContext) -> str:
    return f"""
PREVIOUS ATTEMPT FAILED - PHASE EXTRACTION ERROR

Error: {ctx.previous_error}

Problem: Your phase plan response could not be parsed.

REQUIRED FORMAT (follow EXACTLY):

===TOTAL_PHASES===
[number between 2 and 5]
===PHASE:1===
NAME: [5 words max]
DESCRIPTION: [One sentence, 20 words max]
FEATURES:
- [Feature 1]
- [Feature 2]
===END_PHASES===

Now, please retry with the EXACT format above:"""


def _phase_too_large_prompt(ctx: RetryContext) -> str:
    details = ""
    if ctx.phase_number is not None:
        details += f"Phase: {ctx.phase_number}\n"
    if ctx.estimated_tokens is not None:
        details += f"Estimated Tokens: {int(ctx.estimated_tokens)}\n"
    return f"""
PREVIOUS ATTEMPT FAILED - PHASE TOO LARGE

Error: {ctx.previous_error}
{details}
Problem: The phase has too many features and will exceed token limits.

RULES FOR SPLITTING:
1. Maximum 3-4 features per phase
2. Isolate complex features (auth, database, payments) in their own phases
3. Each phase must produce working code
4. Phase 1 must be a functional foundation

Now, please provide a phase plan with smaller, focused phases:"""


def _generic_prompt(ctx: RetryContext) -> str:
    return f"""
PREVIOUS ATTEMPT FAILED

Error: {ctx.previous_error}

Attempt {ctx.attempt_number + 1} - please address the error above and follow the response format precisely:"""


def format_validation_issues(validation_details: Optional[List[Dict[str, Any]]]) -> str:
    """Render per-file validation defects as a numbered list."""
    if not validation_details:
        return "(validation details unavailable)"

    issues = []
    for index, detail in enumerate(validation_details, start=1):
        for error in detail.get("errors") or []:
            issues.append(f"{index}. [{detail.get('file')}] {error.get('type')}: {error.get('message')}")

    return "\n".join(issues) if issues else "(no specific issues listed)"


# =============================================================================
# Policy table
# =============================================================================


@dataclass(frozen=True)
class CategoryPolicy:
    retryable: bool
    prompt_builder: Callable[[RetryContext], str] = field(default=_generic_prompt)
    exponential_backoff: bool = False


POLICIES: Dict[ErrorCategory, CategoryPolicy] = {
    ErrorCategory.PARSING_ERROR: CategoryPolicy(True, _parsing_prompt),
    ErrorCategory.EMPTY_RESPONSE: CategoryPolicy(True, _empty_response_prompt),
    ErrorCategory.AI_ERROR: CategoryPolicy(True, _ai_error_prompt),
    ErrorCategory.TIMEOUT_ERROR: CategoryPolicy(True, _timeout_prompt),
    ErrorCategory.VALIDATION_ERROR: CategoryPolicy(True, _validation_prompt),
    ErrorCategory.TRUNCATION: CategoryPolicy(True, _truncation_prompt),
    ErrorCategory.PHASE_EXTRACTION_ERROR: CategoryPolicy(True, _phase_extraction_prompt),
    ErrorCategory.PHASE_TOO_LARGE: CategoryPolicy(True, _phase_too_large_prompt),
    ErrorCategory.PHASE_TRUNCATION: CategoryPolicy(True, _truncation_prompt),
    # Rate limits need provider-level backoff, not a corrected prompt
    ErrorCategory.RATE_LIMIT_ERROR: CategoryPolicy(False, exponential_backoff=True),
    ErrorCategory.UNKNOWN_ERROR: CategoryPolicy(False),
}

_missing = set(ErrorCategory) - set(POLICIES)
if _missing:
    raise RuntimeError(f"No retry policy for categories: {sorted(c.value for c in _missing)}")


class RetryStrategist:
    """Decides whether and how to retry a failed generation attempt."""

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()

    def is_retryable(self, category: ErrorCategory) -> bool:
        return POLICIES[category].retryable

    def calculate_retry_delay(self, ctx: RetryContext) -> float:
        """Seconds to wait before the next attempt."""
        if ctx.attempt_number == 1:
            return 0.0
        if POLICIES[ctx.error_category].exponential_backoff:
            return min(1.0 * (2 ** ctx.attempt_number), 30.0)
        return 0.5 * ctx.attempt_number

    def build_correction_prompt(self, ctx: RetryContext) -> str:
        return POLICIES[ctx.error_category].prompt_builder(ctx)

    def decide(self, ctx: RetryContext) -> RetryResult:
        """
        Decide the retry for a failed attempt.

        Returns should_retry=False when the attempt budget is spent (including
        when the final permitted attempt is the one that failed) or the
        category is never retried.
        """
        if ctx.attempt_number >= self.config.max_attempts:
            logger.info(
                "[Retry] Attempt %d/%d failed (%s); attempt budget exhausted",
                ctx.attempt_number,
                self.config.max_attempts,
                ctx.error_category.value,
            )
            return RetryResult(should_retry=False)

        if not self.is_retryable(ctx.error_category):
            logger.info("[Retry] Category %s is not retryable", ctx.error_category.value)
            return RetryResult(should_retry=False)

        result = RetryResult(
            should_retry=True,
            correction_prompt=self.build_correction_prompt(ctx),
            retry_delay_seconds=self.calculate_retry_delay(ctx),
        )
        logger.info(
            "[Retry] Attempt %d/%d failed (%s); retrying in %.1fs with correction",
            ctx.attempt_number,
            self.config.max_attempts,
            ctx.error_category.value,
            result.retry_delay_seconds,
        )
        return result
