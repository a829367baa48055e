"""
Generation pipeline: one build request from first event to terminal event.

Lifecycle per request:

    start -> budget selection -> attempt loop:
        thinking -> stream (file_start/progress/complete) -> parse
        -> truncation check/salvage -> validation -> complete
    on failure: classify -> retry decision -> corrected attempt, or error

Attempts are strictly sequential. Every attempt owns its own stream consumer,
buffer and file list; only the conversation (plus one corrective turn) is
carried forward. A request ends with exactly one ``complete`` or ``error``
event, except when the caller aborts, in which case no further events are
emitted.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from .code_validator import BasicCodeValidator, CodeValidator, should_validate, validate_file
from .config import settings
from .error_classifier import ErrorCategory, classify_exception, error_code_for
from .events import (
    CompleteData,
    CompleteEvent,
    CompleteStats,
    ErrorEvent,
    FilePayload,
    StartEvent,
    ThinkingEvent,
    TruncationPayload,
    ValidationEvent,
    ValidationWarnings,
)
from .exceptions import GenerationError, StreamAbortedError
from .llm_transport import ConversationMessage, LLMRequest, LLMTransport
from .logging_config import request_id_var
from .metrics import PerformanceTracker, RequestMetrics
from .phases import PhaseComplexity, estimate_phase_complexity
from .prompts import build_conversation, build_system_prompt
from .requests import BuildRequest
from .response_parser import GeneratedFile, ParsedResponse, parse_generation_response
from .retry_strategy import RetryConfig, RetryContext, RetryStrategist
from .stream_consumer import StreamConsumer
from .token_budget import DEFAULT_BUDGET_TABLE, BudgetTable, TokenBudget, select_token_budget
from .truncation import TruncationDetector, TruncationInfo

logger = logging.getLogger(__name__)


@dataclass
class _AttemptOutcome:
    """What a successful attempt hands back to the loop."""

    parsed: Optional[ParsedResponse] = None
    files: List[GeneratedFile] = field(default_factory=list)
    truncation: Optional[TruncationInfo] = None
    validation_details: List[Dict[str, Any]] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    aborted: bool = False


class GenerationPipeline:
    """Runs build requests against an LLM transport and streams events.

    Example:
        pipeline = GenerationPipeline(AnthropicStreamTransport())
        async for event in pipeline.run(request):
            send(format_sse(event))
    """

    def __init__(
        self,
        transport: LLMTransport,
        model: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        validator: Optional[CodeValidator] = None,
        truncation_detector: Optional[TruncationDetector] = None,
        budget_table: Optional[BudgetTable] = None,
        system_prompt: Optional[str] = None,
        progress_interval_ms: Optional[int] = None,
        max_marker_path_length: Optional[int] = None,
        retry_on_validation_errors: Optional[bool] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.model = model or settings.model_name
        self.strategist = RetryStrategist(retry_config or RetryConfig(max_attempts=settings.max_attempts))
        self.validator = validator or BasicCodeValidator()
        self.truncation_detector = truncation_detector or TruncationDetector(
            brace_tolerance=settings.brace_tolerance,
            markup_tolerance=settings.markup_tolerance,
        )
        self.budget_table = budget_table or DEFAULT_BUDGET_TABLE
        self.system_prompt = system_prompt
        self.progress_interval_ms = (
            settings.progress_interval_ms if progress_interval_ms is None else progress_interval_ms
        )
        self.max_marker_path_length = max_marker_path_length or settings.max_marker_path_length
        self.retry_on_validation_errors = (
            settings.retry_on_validation_errors
            if retry_on_validation_errors is None
            else retry_on_validation_errors
        )
        self._sleep = sleep
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self.strategist.config.max_attempts

    def _phase_budget(self, request: BuildRequest) -> Tuple[float, Optional[PhaseComplexity], TokenBudget]:
        context = request.active_phase_context
        phase_number = context.phase_number if context else 1
        complexity = None
        if context and phase_number != 1:
            phase = context.current_phase()
            if phase is not None:
                complexity = estimate_phase_complexity(phase)
        return phase_number, complexity, select_token_budget(phase_number, complexity, self.budget_table)

    async def run(
        self,
        request: BuildRequest,
        abort_signal: Optional[asyncio.Event] = None,
        request_id: Optional[str] = None,
    ) -> AsyncIterator:
        """
        Run one build request, yielding progress events.

        Args:
            request: Validated build request
            abort_signal: Set by the caller to stop generation (e.g. client disconnect)
            request_id: Correlation id for logs (generated if omitted)

        Yields:
            StreamEvent models; the last one is a CompleteEvent or ErrorEvent
            unless the request was aborted
        """
        request_id = request_id or uuid.uuid4().hex[:12]
        # Each request runs in its own task, so the id stays scoped to it
        request_id_var.set(request_id)

        tracker = PerformanceTracker(clock=self._clock)
        metrics = RequestMetrics(request_id=request_id)
        tracker.checkpoint("request_parsed")

        phase_context = request.active_phase_context
        yield StartEvent(
            phase_number=phase_context.phase_number if phase_context else None,
            phase_name=phase_context.phase_name if phase_context else None,
        )

        phase_number, complexity, budget = self._phase_budget(request)
        logger.info(
            "[Pipeline] Request %s: phase=%g complexity=%s max_tokens=%d thinking=%d timeout=%ds",
            request_id,
            phase_number,
            complexity.level.value if complexity else "n/a",
            budget.max_tokens,
            budget.thinking_budget,
            budget.timeout_seconds,
        )

        system_prompt = build_system_prompt(request, self.system_prompt)
        messages = build_conversation(request)
        correction_prompt: Optional[str] = None
        attempt = 0

        try:
            while True:
                attempt += 1
                metrics.attempts = attempt
                if abort_signal is not None and abort_signal.is_set():
                    raise StreamAbortedError(f"Request {request_id} aborted before attempt {attempt}")

                yield ThinkingEvent(attempt=attempt)

                outcome = _AttemptOutcome()
                try:
                    async for event in self._run_attempt(
                        attempt,
                        system_prompt,
                        messages,
                        correction_prompt,
                        budget,
                        abort_signal,
                        tracker,
                        outcome,
                    ):
                        yield event
                except StreamAbortedError:
                    raise
                except Exception as e:
                    category = classify_exception(e)
                    logger.warning(
                        f"[Pipeline] Attempt {attempt}/{self.max_attempts} failed ({category.value}): {e}"
                    )
                    decision = self.strategist.decide(
                        RetryContext(
                            attempt_number=attempt,
                            previous_error=str(e),
                            error_category=category,
                            original_response=getattr(e, "original_response", None),
                            validation_details=getattr(e, "validation_details", None),
                            phase_number=phase_number,
                            estimated_tokens=complexity.estimated_tokens if complexity else None,
                        )
                    )
                    if not decision.should_retry:
                        metrics.error_category = category.value
                        yield ErrorEvent(
                            message=str(e),
                            code=getattr(e, "code", None) or error_code_for(category),
                            recoverable=self.strategist.is_retryable(category),
                        )
                        return
                    correction_prompt = decision.correction_prompt
                    if decision.retry_delay_seconds > 0:
                        await self._sleep(decision.retry_delay_seconds)
                    continue

                if outcome.aborted:
                    raise StreamAbortedError(f"Request {request_id} aborted during attempt {attempt}")

                metrics.success = True
                metrics.files_generated = len(outcome.files)
                metrics.input_tokens = outcome.input_tokens
                metrics.output_tokens = outcome.output_tokens
                metrics.cached_tokens = outcome.cached_tokens
                metrics.truncated = bool(outcome.truncation and outcome.truncation.is_truncated)
                metrics.validation_issues = len(outcome.validation_details)
                yield self._complete_event(outcome, attempt, tracker)
                return
        except StreamAbortedError as e:
            logger.info(f"[Pipeline] {e}")
        finally:
            metrics.checkpoints = dict(tracker.checkpoints)
            metrics.log()
            tracker.log("Pipeline")

    async def _run_attempt(
        self,
        attempt: int,
        system_prompt: str,
        messages: List[ConversationMessage],
        correction_prompt: Optional[str],
        budget: TokenBudget,
        abort_signal: Optional[asyncio.Event],
        tracker: PerformanceTracker,
        outcome: _AttemptOutcome,
    ) -> AsyncIterator:
        """One provider call plus post-processing; raises on hard failure."""
        attempt_messages = list(messages)
        if correction_prompt and attempt > 1:
            attempt_messages.append(ConversationMessage(role="user", content=correction_prompt))

        llm_request = LLMRequest(
            system_prompt=system_prompt,
            messages=attempt_messages,
            max_tokens=budget.max_tokens,
            thinking_budget=budget.thinking_budget,
            model=self.model,
        )

        consumer = StreamConsumer(
            timeout_ms=budget.timeout_ms,
            progress_interval_ms=self.progress_interval_ms,
            max_path_length=self.max_marker_path_length,
            abort_signal=abort_signal,
            clock=self._clock,
        )
        tracker.checkpoint("ai_request_sent")
        async for event in consumer.consume(self.transport.stream(llm_request, abort_signal)):
            yield event
        if consumer.aborted:
            outcome.aborted = True
            return
        tracker.checkpoint("ai_response_received")

        if consumer.usage is not None:
            outcome.input_tokens = consumer.usage.input_tokens
            outcome.output_tokens = consumer.usage.output_tokens
            outcome.cached_tokens = consumer.usage.cache_read_tokens

        response_text = consumer.text
        parsed = parse_generation_response(response_text)
        truncation = self.truncation_detector.detect(response_text, parsed.files)
        files = parsed.files
        if truncation.is_truncated:
            files = self.truncation_detector.salvage(parsed.files, truncation)
            if not files:
                raise GenerationError(
                    f"Response truncated with no salvageable files: {truncation.reason}",
                    category=ErrorCategory.TRUNCATION,
                    code="TRUNCATED",
                    original_response=response_text,
                )
            logger.warning(
                f"[Pipeline] Salvaged {len(files)} of {len(parsed.files)} files after truncation"
            )

        outcome.parsed = parsed
        outcome.files = files
        outcome.truncation = truncation

        async for event in self._validate(files, abort_signal, outcome):
            yield event
        if outcome.aborted:
            return
        tracker.checkpoint("validation_complete")

        if outcome.validation_details and self.retry_on_validation_errors and attempt == 1:
            raise GenerationError(
                f"Code validation failed: {len(outcome.validation_details)} file(s) have unfixed issues",
                category=ErrorCategory.VALIDATION_ERROR,
                code="VALIDATION_FAILED",
                original_response=response_text,
                validation_details=outcome.validation_details,
            )

    async def _validate(
        self,
        files: List[GeneratedFile],
        abort_signal: Optional[asyncio.Event],
        outcome: _AttemptOutcome,
    ) -> AsyncIterator:
        errors_found = 0
        auto_fixed = 0
        yield ValidationEvent(files_validated=0, total_files=len(files), errors_found=0, auto_fixed=0)

        for index, file in enumerate(files, start=1):
            if abort_signal is not None and abort_signal.is_set():
                outcome.aborted = True
                return
            if should_validate(file.path):
                result = validate_file(file.path, file.content, self.validator)
                file.content = result.content
                errors_found += result.errors_found
                auto_fixed += result.auto_fixed
                if result.remaining:
                    outcome.validation_details.append(
                        {"file": file.path, "errors": [e.to_dict() for e in result.remaining]}
                    )
            yield ValidationEvent(
                message=f"Validated {file.path}",
                files_validated=index,
                total_files=len(files),
                errors_found=errors_found,
                auto_fixed=auto_fixed,
            )

    def _complete_event(self, outcome: _AttemptOutcome, attempts: int, tracker: PerformanceTracker) -> CompleteEvent:
        parsed = outcome.parsed
        truncation = outcome.truncation

        warnings: List[str] = []
        truncation_payload = TruncationPayload(
            is_truncated=truncation.is_truncated,
            reason=truncation.reason,
            last_complete_file=truncation.last_complete_file,
            salvageable_files=truncation.salvageable_files,
        )
        if truncation.is_truncated:
            warnings.append(
                f"Response was truncated ({truncation.reason}); "
                f"kept {len(outcome.files)} of {len(parsed.files)} files"
            )

        validation_warnings = None
        if outcome.validation_details:
            issue_count = sum(len(d["errors"]) for d in outcome.validation_details)
            validation_warnings = ValidationWarnings(
                message=f"Code validation found {issue_count} potential issue(s) that could not be auto-fixed",
                details=outcome.validation_details,
            )
            warnings.append(validation_warnings.message)

        return CompleteEvent(
            data=CompleteData(
                name=parsed.name,
                description=parsed.description,
                app_type=parsed.app_type,
                change_type=parsed.change_type,
                change_summary=parsed.change_summary,
                files=[FilePayload(**f.to_dict()) for f in outcome.files],
                dependencies=parsed.dependencies,
                setup_instructions=parsed.setup_instructions,
                validation_warnings=validation_warnings,
                truncation=truncation_payload,
                warnings=warnings or None,
            ),
            stats=CompleteStats(
                total_time=tracker.elapsed_ms(),
                files_generated=len(outcome.files),
                input_tokens=outcome.input_tokens,
                output_tokens=outcome.output_tokens,
                cached_tokens=outcome.cached_tokens,
                attempts=attempts,
            ),
        )
