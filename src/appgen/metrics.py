"""Per-request performance checkpoints."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class PerformanceTracker:
    """Records named checkpoints as milliseconds since construction."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.start_time = clock()
        self.checkpoints: Dict[str, int] = {}

    def checkpoint(self, name: str) -> None:
        self.checkpoints[name] = self.elapsed_ms()

    def elapsed_ms(self) -> int:
        return int((self._clock() - self.start_time) * 1000)

    def log(self, prefix: str = "Performance") -> None:
        logger.debug(f"[{prefix}] Total: {self.elapsed_ms()}ms")
        for name, ms in self.checkpoints.items():
            logger.debug(f"[{prefix}]   {name}: {ms}ms")


@dataclass
class RequestMetrics:
    """Summary of one build request, logged once it terminates."""

    request_id: str
    success: bool = False
    attempts: int = 0
    files_generated: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    error_category: Optional[str] = None
    truncated: bool = False
    validation_issues: int = 0
    checkpoints: Dict[str, int] = field(default_factory=dict)

    def log(self) -> None:
        logger.info(
            "[Metrics] request=%s success=%s attempts=%d files=%d tokens_in=%d tokens_out=%d "
            "cached=%d error=%s truncated=%s validation_issues=%d",
            self.request_id,
            self.success,
            self.attempts,
            self.files_generated,
            self.input_tokens,
            self.output_tokens,
            self.cached_tokens,
            self.error_category,
            self.truncated,
            self.validation_issues,
        )
