"""Anthropic Claude streaming transport.

Streams a generation with extended thinking enabled and the system prompt
marked for ephemeral prompt caching. Only visible text deltas are forwarded;
thinking deltas are dropped.
"""

import asyncio
import logging
import os
from typing import AsyncIterator, Optional

import anthropic
from anthropic import AsyncAnthropic

from .exceptions import APIError, NetworkError, TransportConfigurationError
from .llm_transport import LLMRequest, StreamChunk, TextFragment, UsageSummary

logger = logging.getLogger(__name__)


class AnthropicStreamTransport:
    """LLMTransport implementation backed by the Anthropic Messages API."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[AsyncAnthropic] = None):
        """Initialize Anthropic transport

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            client: Preconstructed client (for tests)
        """
        if client is not None:
            self.client = client
            return

        api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise TransportConfigurationError("Anthropic API key not configured")
        self.client = AsyncAnthropic(api_key=api_key)

    @staticmethod
    def _build_params(request: LLMRequest) -> dict:
        return {
            "model": request.model,
            "max_tokens": request.max_tokens,
            # Extended thinking requires temperature 1
            "temperature": 1,
            "thinking": {"type": "enabled", "budget_tokens": request.thinking_budget},
            "system": [
                {
                    "type": "text",
                    "text": request.system_prompt,
                    "cache_control": {"type": "ephemeral"},
                }
            ],
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
        }

    async def stream(
        self, request: LLMRequest, abort_signal: Optional[asyncio.Event] = None
    ) -> AsyncIterator[StreamChunk]:
        params = self._build_params(request)
        logger.debug(
            "[Anthropic] Streaming model=%s max_tokens=%d thinking=%d turns=%d",
            request.model,
            request.max_tokens,
            request.thinking_budget,
            len(request.messages),
        )

        try:
            async with self.client.messages.stream(**params) as stream:
                async for event in stream:
                    if abort_signal is not None and abort_signal.is_set():
                        # Leaving the context manager closes the HTTP response
                        logger.info("[Anthropic] Abort observed, closing stream")
                        return
                    if event.type == "content_block_delta" and event.delta.type == "text_delta":
                        yield TextFragment(event.delta.text)

                final_message = await stream.get_final_message()
        except anthropic.RateLimitError as e:
            raise APIError(f"Anthropic rate limit exceeded: {e}", status_code=429) from e
        except anthropic.APITimeoutError as e:
            raise NetworkError(f"Anthropic API request timed out: {e}") from e
        except anthropic.APIConnectionError as e:
            raise NetworkError(f"Anthropic API connection failed: {e}") from e
        except anthropic.APIStatusError as e:
            raise APIError(
                f"Anthropic API error: {e.message}",
                status_code=e.status_code,
                response_data=getattr(e, "body", None),
            ) from e

        usage = final_message.usage
        yield UsageSummary(
            input_tokens=usage.input_tokens or 0,
            output_tokens=usage.output_tokens or 0,
            cache_read_tokens=getattr(usage, "cache_read_input_tokens", None) or 0,
            stop_reason=getattr(final_message, "stop_reason", None),
        )
