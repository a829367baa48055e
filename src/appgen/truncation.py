"""
Truncation detection and salvage for generation responses.

Responses can be cut off by provider limits without any explicit signal. Four
independent structural checks run in order and the first hit wins:

1. missing terminal marker: a file marker is present but ``===END===`` is not
2. brace imbalance: ``{`` vs ``}`` differ by more than ``brace_tolerance``
3. markup imbalance (.tsx/.jsx): opening component tags exceed closing plus
   self-closing tags by more than ``markup_tolerance``
4. mid-token cutoff: the last non-blank line has an odd count of one quote
   character and does not end in ``;``, ``}`` or ``>``

On a hit the implicated file and everything after it are dropped. Of the
earlier files, only those whose own braces balance within tolerance are kept,
so ``salvageable_files`` always equals the number of files salvage returns.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .response_parser import END_MARKER, FILE_MARKER, GeneratedFile

logger = logging.getLogger(__name__)

DEFAULT_BRACE_TOLERANCE = 2
DEFAULT_MARKUP_TOLERANCE = 3
MARKUP_EXTENSIONS = (".tsx", ".jsx")
LINE_TERMINATORS = (";", "}", ">")
QUOTE_CHARS = ('"', "'", "`")

_OPEN_TAG_RE = re.compile(r"<[A-Z][a-zA-Z]*(?:\s|>)")
_CLOSE_TAG_RE = re.compile(r"</[A-Z][a-zA-Z]*>")
_SELF_CLOSING_RE = re.compile(r"<[A-Z][a-zA-Z]*[^>]*/>")


@dataclass
class TruncationInfo:
    """Result of truncation analysis for one response."""

    is_truncated: bool
    reason: str = ""
    last_complete_file: Optional[str] = None
    salvageable_files: int = 0
    # Index of the implicated file; files from here on are unusable
    truncated_at_index: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "is_truncated": self.is_truncated,
            "reason": self.reason,
            "last_complete_file": self.last_complete_file,
            "salvageable_files": self.salvageable_files,
        }


class TruncationDetector:
    """Heuristic truncation detector with configurable tolerances."""

    def __init__(
        self,
        brace_tolerance: int = DEFAULT_BRACE_TOLERANCE,
        markup_tolerance: int = DEFAULT_MARKUP_TOLERANCE,
    ):
        self.brace_tolerance = brace_tolerance
        self.markup_tolerance = markup_tolerance

    # -- per-file checks ---------------------------------------------------

    @staticmethod
    def brace_delta(content: str) -> int:
        return content.count("{") - content.count("}")

    def braces_balanced(self, file: GeneratedFile) -> bool:
        return abs(self.brace_delta(file.content)) <= self.brace_tolerance

    def _markup_counts(self, file: GeneratedFile):
        open_tags = len(_OPEN_TAG_RE.findall(file.content))
        close_tags = len(_CLOSE_TAG_RE.findall(file.content))
        self_closing = len(_SELF_CLOSING_RE.findall(file.content))
        return open_tags, close_tags + self_closing

    def markup_balanced(self, file: GeneratedFile) -> bool:
        if not file.path.endswith(MARKUP_EXTENSIONS):
            return True
        open_tags, closed = self._markup_counts(file)
        return open_tags <= closed + self.markup_tolerance

    @staticmethod
    def ends_mid_token(file: GeneratedFile) -> bool:
        last_line = file.content.strip().split("\n")[-1]
        odd_quotes = any(last_line.count(q) % 2 != 0 for q in QUOTE_CHARS)
        return odd_quotes and not last_line.endswith(LINE_TERMINATORS)

    # -- detection -----------------------------------------------------------

    def _hit(self, files: Sequence[GeneratedFile], index: int, reason: str) -> TruncationInfo:
        prefix = list(files[:index])
        info = TruncationInfo(
            is_truncated=True,
            reason=reason,
            last_complete_file=self._find_last_complete_file(prefix),
            salvageable_files=sum(1 for f in prefix if self.braces_balanced(f)),
            truncated_at_index=index,
        )
        logger.warning(
            "[Truncation] %s (salvageable=%d, last_complete=%s)",
            reason,
            info.salvageable_files,
            info.last_complete_file,
        )
        return info

    def _find_last_complete_file(self, files: Sequence[GeneratedFile]) -> Optional[str]:
        for file in reversed(files):
            if self.braces_balanced(file):
                return file.path
        return None

    def detect(self, response_text: str, files: Sequence[GeneratedFile]) -> TruncationInfo:
        """
        Detect whether a response was truncated.

        Args:
            response_text: Full assembled response text
            files: Files parsed from the response, in response order

        Returns:
            TruncationInfo (is_truncated=False means accept the response whole)
        """
        if FILE_MARKER in response_text and END_MARKER not in response_text:
            # The last file is the one the cutoff landed in. It is dropped even
            # when its braces balance, so a lone file without END salvages nothing.
            return self._hit(
                files,
                max(0, len(files) - 1),
                f"Missing {END_MARKER} delimiter - response cut off",
            )

        for index, file in enumerate(files):
            if not self.braces_balanced(file):
                delta = self.brace_delta(file.content)
                opened = file.content.count("{")
                return self._hit(
                    files,
                    index,
                    f"Unbalanced braces in {file.path} ({opened} open, {opened - delta} close)",
                )

        for index, file in enumerate(files):
            if not self.markup_balanced(file):
                open_tags, closed = self._markup_counts(file)
                return self._hit(
                    files,
                    index,
                    f"Incomplete JSX in {file.path} ({open_tags} opening tags, {closed} closing)",
                )

        for index, file in enumerate(files):
            if self.ends_mid_token(file):
                return self._hit(files, index, f"File {file.path} ends mid-string or mid-statement")

        return TruncationInfo(
            is_truncated=False,
            reason="",
            last_complete_file=None,
            salvageable_files=len(files),
        )

    def salvage(self, files: Sequence[GeneratedFile], info: TruncationInfo) -> List[GeneratedFile]:
        """Return the known-good files of ``files`` for a truncation result.

        Only files before the implicated one are considered, and any of those
        that fail the brace check are dropped too. Untruncated results keep
        every file.
        """
        if not info.is_truncated:
            return list(files)

        prefix = files[: info.truncated_at_index or 0]
        return [f for f in prefix if self.braces_balanced(f)]


def detect_truncation(
    response_text: str,
    files: Sequence[GeneratedFile],
    brace_tolerance: int = DEFAULT_BRACE_TOLERANCE,
    markup_tolerance: int = DEFAULT_MARKUP_TOLERANCE,
) -> TruncationInfo:
    """Module-level convenience wrapper around TruncationDetector.detect()."""
    return TruncationDetector(brace_tolerance, markup_tolerance).detect(response_text, files)
