"""End-to-end tests for the generation pipeline over a scripted transport."""

import asyncio

import pytest

from appgen.events import (
    CompleteEvent,
    ErrorEvent,
    FileCompleteEvent,
    FileStartEvent,
    StartEvent,
    ThinkingEvent,
    ValidationEvent,
    format_sse,
)
from appgen.exceptions import APIError, NetworkError
from appgen.llm_transport import TextFragment
from appgen.requests import BuildRequest
from appgen.token_budget import DEFAULT_BUDGET_TABLE
from tests.helpers import collect, fragments

NO_DELIMITERS = "Sure! Here is your app:\nfunction App() { return null; }"


def request(prompt="Build a todo app", **kwargs):
    return BuildRequest(prompt=prompt, **kwargs)


def terminal_events(events):
    return [e for e in events if isinstance(e, (CompleteEvent, ErrorEvent))]


class TestSuccessfulGeneration:
    """A well-formed response completes in one attempt."""

    @pytest.mark.asyncio
    async def test_single_well_formed_file(self, make_pipeline, valid_response, usage):
        pipeline, transport = make_pipeline([fragments(valid_response)], usage=usage)

        events = await collect(pipeline.run(request()))

        assert isinstance(events[0], StartEvent)
        assert isinstance(events[1], ThinkingEvent)
        assert events[1].attempt == 1
        assert terminal_events(events) == [events[-1]]

        complete = events[-1]
        assert isinstance(complete, CompleteEvent)
        assert [f.path for f in complete.data.files] == ["src/App.tsx"]
        assert complete.data.warnings is None
        assert complete.data.validation_warnings is None
        assert complete.data.truncation.is_truncated is False
        assert complete.data.dependencies == {"react": "^18.2.0"}
        assert complete.stats.files_generated == 1
        assert complete.stats.input_tokens == 1200
        assert complete.stats.cached_tokens == 300
        assert complete.stats.attempts == 1
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_event_order(self, make_pipeline, valid_response):
        pipeline, _ = make_pipeline([fragments(valid_response, size=3)])

        events = await collect(pipeline.run(request()))
        kinds = [e.type for e in events]

        assert kinds.index("file_start") < kinds.index("file_complete") < kinds.index("validation")
        assert kinds[-1] == "complete"
        validations = [e for e in events if isinstance(e, ValidationEvent)]
        assert validations[-1].files_validated == validations[-1].total_files == 1

    @pytest.mark.asyncio
    async def test_request_parameters(self, make_pipeline, valid_response):
        pipeline, transport = make_pipeline([[valid_response]])

        await collect(pipeline.run(request(context_summary="Earlier we discussed colors")))

        sent = transport.calls[0]
        assert sent.model == "test-model"
        assert sent.max_tokens == DEFAULT_BUDGET_TABLE.foundation.max_tokens
        assert sent.thinking_budget == DEFAULT_BUDGET_TABLE.foundation.thinking_budget
        assert "===FILE:" in sent.system_prompt
        assert [m.role for m in sent.messages] == ["user", "assistant", "user"]
        assert sent.messages[-1].content == "Build a todo app"

    @pytest.mark.asyncio
    async def test_later_small_phase_uses_small_budget(self, make_pipeline, valid_response):
        pipeline, transport = make_pipeline([[valid_response]])
        body = {
            "prompt": "Add a footer",
            "isPhaseBuilding": True,
            "phaseContext": {
                "phaseNumber": 3,
                "phaseName": "Polish",
                "allPhases": [{"number": 3, "name": "Polish", "description": "x", "features": ["Footer"]}],
            },
        }

        events = await collect(pipeline.run(BuildRequest.parse_body(body)))

        assert events[0].phase_number == 3
        assert events[0].phase_name == "Polish"
        assert transport.calls[0].max_tokens == DEFAULT_BUDGET_TABLE.small.max_tokens

    @pytest.mark.asyncio
    async def test_sse_serialization_of_every_event(self, make_pipeline, valid_response):
        pipeline, _ = make_pipeline([fragments(valid_response)])

        for event in await collect(pipeline.run(request())):
            assert format_sse(event).startswith('data: {"')


class TestTruncationRecovery:
    """Truncated responses are salvaged locally when possible."""

    @pytest.mark.asyncio
    async def test_second_file_truncated(self, make_pipeline, truncated_response):
        pipeline, transport = make_pipeline([fragments(truncated_response)])

        events = await collect(pipeline.run(request()))
        complete = events[-1]

        assert isinstance(complete, CompleteEvent)
        assert complete.data.truncation.is_truncated is True
        assert complete.data.truncation.salvageable_files == 1
        assert [f.path for f in complete.data.files] == ["src/utils.ts"]
        assert complete.data.warnings and "truncated" in complete.data.warnings[0]
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_partial_progress_is_not_retracted(self, make_pipeline, truncated_response):
        pipeline, _ = make_pipeline([fragments(truncated_response)])

        events = await collect(pipeline.run(request()))

        started = [e.file_path for e in events if isinstance(e, FileStartEvent)]
        assert started == ["src/utils.ts", "src/App.tsx"]

    @pytest.mark.asyncio
    async def test_nothing_salvageable_is_retried(self, make_pipeline, valid_response):
        cut = "===NAME===\nApp\n===DESCRIPTION===\nD\n===FILE:a.ts===\nfunction a() {{{{"
        pipeline, transport = make_pipeline([[cut], [valid_response]])

        events = await collect(pipeline.run(request()))

        assert isinstance(events[-1], CompleteEvent)
        assert events[-1].stats.attempts == 2
        assert "RESPONSE TRUNCATED" in transport.calls[1].messages[-1].content


class TestRetries:
    """Failed attempts are retried with corrective instructions."""

    @pytest.mark.asyncio
    async def test_three_parse_failures_with_three_attempts(self, make_pipeline):
        scripts = [[NO_DELIMITERS], [NO_DELIMITERS + " v2"], ["===NAME===\nApp\n===END==="]]
        pipeline, transport = make_pipeline(scripts, max_attempts=3)

        events = await collect(pipeline.run(request()))

        assert len(transport.calls) == 3
        terminals = terminal_events(events)
        assert len(terminals) == 1
        error = terminals[0]
        assert isinstance(error, ErrorEvent)
        assert error.message == "Invalid response format - missing required delimiters"
        assert error.code == "PARSE_ERROR"
        assert error.recoverable is True
        assert [e.attempt for e in events if isinstance(e, ThinkingEvent)] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_correction_prompt_appended_on_retry(self, make_pipeline, valid_response):
        pipeline, transport = make_pipeline([[NO_DELIMITERS], [valid_response]])

        events = await collect(pipeline.run(request()))

        assert isinstance(events[-1], CompleteEvent)
        first, second = transport.calls
        assert len(second.messages) == len(first.messages) + 1
        assert second.messages[-1].role == "user"
        assert "RESPONSE FORMAT ERROR" in second.messages[-1].content

    @pytest.mark.asyncio
    async def test_each_attempt_starts_fresh(self, make_pipeline, valid_response):
        partial = "===NAME===\nA\n===FILE:old.ts===\nx"
        pipeline, _ = make_pipeline([[partial], [valid_response]])

        events = await collect(pipeline.run(request()))

        assert [f.path for f in events[-1].data.files] == ["src/App.tsx"]

    @pytest.mark.asyncio
    async def test_empty_response(self, make_pipeline):
        pipeline, _ = make_pipeline([[]], max_attempts=1)

        events = await collect(pipeline.run(request()))

        assert events[-1].code == "EMPTY_RESPONSE"
        assert events[-1].message == "No response from Claude"

    @pytest.mark.asyncio
    async def test_rate_limit_not_retried(self, make_pipeline, valid_response):
        pipeline, transport = make_pipeline(
            [APIError("rate limited", status_code=429), [valid_response]], max_attempts=3
        )

        events = await collect(pipeline.run(request()))

        assert len(transport.calls) == 1
        assert events[-1].code == "RATE_LIMITED"
        assert events[-1].recoverable is False

    @pytest.mark.asyncio
    async def test_transport_error_retried_after_delay(self, make_pipeline, valid_response):
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        scripts = [NetworkError("connection reset"), NetworkError("connection reset"), [valid_response]]
        pipeline, transport = make_pipeline(scripts, max_attempts=3, sleep=record_sleep)

        events = await collect(pipeline.run(request()))

        assert isinstance(events[-1], CompleteEvent)
        assert len(transport.calls) == 3
        assert delays == [1.0]

    @pytest.mark.asyncio
    async def test_timeout_flows_into_retry(self, make_pipeline, valid_response, clock):
        class SlowTransport:
            def __init__(self):
                self.calls = []

            async def stream(self, llm_request, abort_signal=None):
                self.calls.append(llm_request)
                for piece in fragments(valid_response, size=50):
                    if len(self.calls) == 1:
                        clock.advance(400)
                    yield TextFragment(piece)

        pipeline, _ = make_pipeline([], max_attempts=2, clock=clock)
        pipeline.transport = SlowTransport()

        events = await collect(pipeline.run(request()))

        assert isinstance(events[-1], CompleteEvent)
        assert len(pipeline.transport.calls) == 2
        assert "REQUEST TIMEOUT" in pipeline.transport.calls[1].messages[-1].content


class TestValidation:
    """Validation defects are warnings unless configured to retry."""

    BROKEN = (
        "===NAME===\nApp\n===DESCRIPTION===\nD\n===FILE:a.ts===\n"
        "const a = 'x;\nconst b = 2;\n===END==="
    )

    @pytest.mark.asyncio
    async def test_auto_fixed_file(self, make_pipeline):
        pipeline, _ = make_pipeline([[self.BROKEN]])

        events = await collect(pipeline.run(request()))

        complete = events[-1]
        assert complete.data.files[0].content.startswith("const a = 'x';")
        assert complete.data.validation_warnings is None
        last_validation = [e for e in events if isinstance(e, ValidationEvent)][-1]
        assert last_validation.errors_found == 1
        assert last_validation.auto_fixed == 1

    @pytest.mark.asyncio
    async def test_unfixed_defects_become_warnings(self, make_pipeline):
        from appgen.code_validator import ValidationIssue, ValidationResult

        class RejectingValidator:
            def validate(self, content, path):
                return ValidationResult(valid=False, errors=[ValidationIssue(type="JSX", message="bad tag")])

            def auto_fix(self, content, errors):
                return content

        pipeline, transport = make_pipeline([[self.BROKEN]], validator=RejectingValidator())

        events = await collect(pipeline.run(request()))

        complete = events[-1]
        assert isinstance(complete, CompleteEvent)
        assert complete.data.validation_warnings.details[0]["file"] == "a.ts"
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_retry_on_validation_errors(self, make_pipeline):
        from appgen.code_validator import ValidationIssue, ValidationResult

        class RejectingValidator:
            def validate(self, content, path):
                return ValidationResult(valid=False, errors=[ValidationIssue(type="JSX", message="bad tag")])

            def auto_fix(self, content, errors):
                return content

        pipeline, transport = make_pipeline(
            [[self.BROKEN]], validator=RejectingValidator(), retry_on_validation_errors=True
        )

        events = await collect(pipeline.run(request()))

        assert len(transport.calls) == 2
        assert "[a.ts] JSX: bad tag" in transport.calls[1].messages[-1].content
        assert isinstance(events[-1], CompleteEvent)
        assert events[-1].data.validation_warnings is not None


class TestAbort:
    """Client abort ends the request without a terminal event."""

    @pytest.mark.asyncio
    async def test_abort_mid_stream(self, make_pipeline, valid_response):
        pipeline, _ = make_pipeline([fragments(valid_response, size=4)])
        abort = asyncio.Event()

        events = []
        async for event in pipeline.run(request(), abort_signal=abort):
            events.append(event)
            if isinstance(event, FileStartEvent):
                abort.set()

        assert terminal_events(events) == []
        assert not any(isinstance(e, FileCompleteEvent) for e in events)

    @pytest.mark.asyncio
    async def test_abort_before_first_attempt(self, make_pipeline, valid_response):
        pipeline, transport = make_pipeline([[valid_response]])
        abort = asyncio.Event()
        abort.set()

        events = await collect(pipeline.run(request(), abort_signal=abort))

        assert [type(e) for e in events] == [StartEvent]
        assert transport.calls == []
