"""LLM transport abstractions.

The pipeline issues exactly one call per attempt and reads back an async
sequence of ``TextFragment`` items terminated by a single ``UsageSummary``.
Implementations:
- AnthropicStreamTransport (appgen.anthropic_clients)
- scripted fakes in tests
"""

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Protocol, Union


@dataclass
class ConversationMessage:
    role: str  # "user" or "assistant"
    content: Union[str, List[Dict]]


@dataclass
class LLMRequest:
    """Parameters for one provider call."""

    system_prompt: str
    messages: List[ConversationMessage]
    max_tokens: int
    thinking_budget: int
    model: str


@dataclass
class TextFragment:
    """One incremental piece of visible response text."""

    text: str


@dataclass
class UsageSummary:
    """Token usage reported once the response completes."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    stop_reason: Optional[str] = None


StreamChunk = Union[TextFragment, UsageSummary]


class LLMTransport(Protocol):
    """Protocol for streaming LLM providers."""

    def stream(
        self, request: LLMRequest, abort_signal: Optional[asyncio.Event] = None
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response for ``request``.

        Implementations must stop producing chunks (and release the provider
        connection) once ``abort_signal`` is set.
        """
        ...


@dataclass
class ScriptedTransport:
    """Transport that replays canned fragment lists, one list per call.

    Each script entry is either a list of text fragments or an exception to
    raise when that call is made. Once the scripts run out the last entry is
    replayed. Backs `appgen generate --dry-run` and the test suite.
    """

    scripts: List[Union[List[str], BaseException]]
    usage: UsageSummary = field(default_factory=UsageSummary)
    calls: List[LLMRequest] = field(default_factory=list)
    delay_seconds: float = 0.0

    async def stream(
        self, request: LLMRequest, abort_signal: Optional[asyncio.Event] = None
    ) -> AsyncIterator[StreamChunk]:
        self.calls.append(request)
        index = min(len(self.calls), len(self.scripts)) - 1
        script = self.scripts[index]
        if isinstance(script, BaseException):
            raise script
        for text in script:
            if abort_signal is not None and abort_signal.is_set():
                return
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            yield TextFragment(text)
        yield self.usage
