"""Tests for the retry strategist and its policy table."""

import pytest

from appgen.error_classifier import ErrorCategory
from appgen.retry_strategy import (
    POLICIES,
    RetryConfig,
    RetryContext,
    RetryStrategist,
    format_validation_issues,
)


def ctx(attempt, category=ErrorCategory.PARSING_ERROR, **kwargs):
    return RetryContext(
        attempt_number=attempt,
        previous_error=kwargs.pop("previous_error", "Invalid response format - missing required delimiters"),
        error_category=category,
        **kwargs,
    )


class TestRetryConfig:
    """Test RetryConfig validation."""

    def test_default_max_attempts(self):
        assert RetryConfig().max_attempts == 2

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)


class TestPolicyTable:
    """Test the closed category policy table."""

    def test_every_category_has_a_policy(self):
        assert set(POLICIES) == set(ErrorCategory)

    @pytest.mark.parametrize("category", [ErrorCategory.RATE_LIMIT_ERROR, ErrorCategory.UNKNOWN_ERROR])
    def test_never_retried_categories(self, category):
        strategist = RetryStrategist(RetryConfig(max_attempts=5))

        for attempt in range(1, 5):
            assert strategist.decide(ctx(attempt, category)).should_retry is False


class TestDecide:
    """Test attempt accounting and retry decisions."""

    @pytest.mark.parametrize("max_attempts", [1, 2, 3, 5])
    def test_never_exceeds_max_attempts(self, max_attempts):
        strategist = RetryStrategist(RetryConfig(max_attempts=max_attempts))

        calls = 0
        attempt = 0
        while True:
            attempt += 1
            calls += 1
            if not strategist.decide(ctx(attempt)).should_retry:
                break

        assert calls == max_attempts

    def test_final_permitted_attempt_is_not_retried(self):
        strategist = RetryStrategist(RetryConfig(max_attempts=3))

        assert strategist.decide(ctx(2)).should_retry is True
        assert strategist.decide(ctx(3)).should_retry is False

    def test_retry_carries_category_specific_prompt(self):
        result = RetryStrategist(RetryConfig(max_attempts=3)).decide(ctx(1))

        assert result.should_retry is True
        assert "RESPONSE FORMAT ERROR" in result.correction_prompt
        assert "missing required delimiters" in result.correction_prompt

    @pytest.mark.parametrize(
        "category,marker",
        [
            (ErrorCategory.EMPTY_RESPONSE, "EMPTY RESPONSE"),
            (ErrorCategory.AI_ERROR, "AI PROCESSING ERROR"),
            (ErrorCategory.TIMEOUT_ERROR, "REQUEST TIMEOUT"),
            (ErrorCategory.TRUNCATION, "RESPONSE TRUNCATED"),
            (ErrorCategory.VALIDATION_ERROR, "CODE VALIDATION ERROR"),
            (ErrorCategory.PHASE_TOO_LARGE, "PHASE TOO LARGE"),
            (ErrorCategory.PHASE_EXTRACTION_ERROR, "===TOTAL_PHASES==="),
        ],
    )
    def test_prompts_differ_per_category(self, category, marker):
        prompt = RetryStrategist().build_correction_prompt(ctx(1, category))
        assert marker in prompt

    def test_phase_too_large_prompt_includes_estimate(self):
        prompt = RetryStrategist().build_correction_prompt(
            ctx(1, ErrorCategory.PHASE_TOO_LARGE, phase_number=3, estimated_tokens=16500.0)
        )

        assert "Phase: 3" in prompt
        assert "Estimated Tokens: 16500" in prompt


class TestRetryDelay:
    """Test delay calculation."""

    def test_no_delay_before_first_retry(self):
        assert RetryStrategist().calculate_retry_delay(ctx(1)) == 0.0

    def test_linear_delay_for_later_retries(self):
        assert RetryStrategist().calculate_retry_delay(ctx(3)) == 1.5

    def test_exponential_delay_capped_for_rate_limits(self):
        strategist = RetryStrategist()

        assert strategist.calculate_retry_delay(ctx(2, ErrorCategory.RATE_LIMIT_ERROR)) == 4.0
        assert strategist.calculate_retry_delay(ctx(10, ErrorCategory.RATE_LIMIT_ERROR)) == 30.0


class TestFormatValidationIssues:
    """Test rendering of validation details."""

    def test_lists_each_issue_with_file(self):
        details = [
            {"file": "src/App.tsx", "errors": [{"type": "UNCLOSED_STRING", "message": "Unclosed string"}]},
            {"file": "src/b.ts", "errors": [{"type": "UNCLOSED_STRING", "message": "Another"}]},
        ]

        rendered = format_validation_issues(details)

        assert "1. [src/App.tsx] UNCLOSED_STRING: Unclosed string" in rendered
        assert "2. [src/b.ts] UNCLOSED_STRING: Another" in rendered

    def test_missing_details(self):
        assert format_validation_issues(None) == "(validation details unavailable)"
