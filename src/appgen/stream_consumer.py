"""
Incremental consumer for delimiter-tagged generation streams.

Reads provider fragments one at a time, appends them to an append-only buffer
and turns ``===FILE:<path>===`` markers into file_start / file_progress /
file_complete events while the response is still arriving.

Markers can straddle fragment boundaries (``===FI`` + ``LE:app.tsx===``), so
the scanner keeps a bounded trailing window of not-yet-matched text and only
ever scans ``window + new fragment``. Each character is scanned a bounded
number of times, so total work stays linear in the response size.
"""

import asyncio
import logging
import re
import time
from typing import AsyncIterator, Callable, List, Optional, Tuple

from .error_classifier import ErrorCategory
from .events import FileCompleteEvent, FileProgressEvent, FileStartEvent
from .exceptions import StreamTimeoutError
from .llm_transport import StreamChunk, TextFragment, UsageSummary

logger = logging.getLogger(__name__)

FILE_MARKER_PREFIX = "===FILE:"
MARKER_SUFFIX = "==="
SECTION_MARKERS = ("===DEPENDENCIES===", "===SETUP===", "===END===")


class MarkerScanner:
    """Finds file markers in a text stream fed one fragment at a time.

    Only the unmatched tail of the stream (at most ``overlap`` characters) is
    carried between fragments. ``overlap`` is the longest marker the pattern
    can match, so a marker split across fragments is always re-assembled and
    a matched marker is never reported twice.
    """

    def __init__(self, max_path_length: int = 512):
        self._pattern = re.compile(
            re.escape(FILE_MARKER_PREFIX)
            + r"([^\n]{0,%d}?)" % max_path_length
            + re.escape(MARKER_SUFFIX)
        )
        self.overlap = len(FILE_MARKER_PREFIX) + max_path_length + len(MARKER_SUFFIX)
        self._window = ""
        self.scanned = 0  # total characters fed

    def feed(self, fragment: str) -> List[Tuple[str, int, int]]:
        """Scan a new fragment.

        Returns:
            (path, marker_start, marker_end) for each newly completed marker,
            offsets absolute within the whole stream
        """
        window = self._window + fragment
        base = self.scanned - len(self._window)
        self.scanned += len(fragment)

        found: List[Tuple[str, int, int]] = []
        consumed = 0
        for match in self._pattern.finditer(window):
            consumed = match.end()
            path = match.group(1).strip()
            if path:
                found.append((path, base + match.start(), base + match.end()))

        self._window = window[max(consumed, len(window) - self.overlap) :]
        return found


class StreamConsumer:
    """Consumes one attempt's fragment stream and emits file progress events.

    Each attempt owns a fresh consumer; nothing is shared across attempts.
    After ``consume()`` finishes, ``text`` holds the assembled response and
    ``usage`` the provider's usage summary (if one arrived).
    """

    def __init__(
        self,
        timeout_ms: int,
        progress_interval_ms: int = 500,
        max_path_length: int = 512,
        abort_signal: Optional[asyncio.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout_ms = timeout_ms
        self.progress_interval_ms = progress_interval_ms
        self.abort_signal = abort_signal
        self._clock = clock
        self._scanner = MarkerScanner(max_path_length=max_path_length)
        self._parts: List[str] = []

        self.total_chars = 0
        self.current_file: Optional[str] = None
        self.file_count = 0
        self.usage: Optional[UsageSummary] = None
        self.aborted = False
        self._body_start = 0

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def _is_aborted(self) -> bool:
        return self.abort_signal is not None and self.abort_signal.is_set()

    def _complete_current(self, body_end: int) -> FileCompleteEvent:
        return FileCompleteEvent(
            file_path=self.current_file,
            file_index=self.file_count - 1,
            total_files=self.file_count,
            char_count=max(0, body_end - self._body_start),
        )

    def _final_body_end(self) -> int:
        text = self.text
        ends = [
            pos
            for pos in (text.find(marker, self._body_start) for marker in SECTION_MARKERS)
            if pos != -1
        ]
        return min(ends) if ends else len(text)

    def _timeout_error(self) -> StreamTimeoutError:
        return StreamTimeoutError(
            f"AI response timeout after {self.timeout_ms / 1000:g}s - the generation "
            f"was taking too long. Please try a simpler request or try again.",
            category=ErrorCategory.TIMEOUT_ERROR,
            code="TIMEOUT",
            original_response=self.text,
        )

    async def consume(self, chunks: AsyncIterator[StreamChunk]) -> AsyncIterator:
        """
        Consume a provider stream, yielding progress events.

        Raises:
            StreamTimeoutError: when the wall-clock deadline passes mid-stream
        """
        start = self._clock()
        last_progress = start
        iterator = chunks.__aiter__()

        try:
            while True:
                remaining_s = self.timeout_ms / 1000 - (self._clock() - start)
                if remaining_s <= 0:
                    raise self._timeout_error()
                try:
                    # Deadline also covers stalls and thinking-only stretches the transport filters out
                    chunk = await asyncio.wait_for(iterator.__anext__(), remaining_s)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    logger.warning(
                        "[StreamConsumer] No chunk within %.1fs deadline (%d chars so far)",
                        remaining_s,
                        self.total_chars,
                    )
                    raise self._timeout_error() from None

                if self._is_aborted():
                    self.aborted = True
                    logger.info(
                        "[StreamConsumer] Aborted after %d chars, %d files",
                        self.total_chars,
                        self.file_count,
                    )
                    return

                elapsed_ms = (self._clock() - start) * 1000
                if elapsed_ms > self.timeout_ms:
                    raise self._timeout_error()

                if isinstance(chunk, UsageSummary):
                    self.usage = chunk
                    continue
                if not isinstance(chunk, TextFragment) or not chunk.text:
                    continue

                fragment = chunk.text
                self._parts.append(fragment)
                self.total_chars += len(fragment)

                for path, marker_start, marker_end in self._scanner.feed(fragment):
                    if path == self.current_file:
                        continue
                    if self.current_file is not None:
                        yield self._complete_current(marker_start)
                    self.file_count += 1
                    self.current_file = path
                    self._body_start = marker_end
                    yield FileStartEvent(
                        file_path=path,
                        file_index=self.file_count - 1,
                        total_files=self.file_count,
                    )

                now = self._clock()
                if self.current_file and (now - last_progress) * 1000 > self.progress_interval_ms:
                    yield FileProgressEvent(
                        file_path=self.current_file,
                        chunk_size=len(fragment),
                        total_chars=self.total_chars,
                    )
                    last_progress = now
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        if self._is_aborted():
            self.aborted = True
            return

        if self.current_file is not None:
            yield self._complete_current(self._final_body_end())

        logger.debug(
            "[StreamConsumer] Stream finished: %d chars, %d files",
            self.total_chars,
            self.file_count,
        )
