"""Pytest configuration and fixtures for appgen tests"""

import sys
from pathlib import Path

import pytest

# Ensure src directory is in Python path before any imports
project_root = Path(__file__).resolve().parent.parent
src_path = project_root / "src"

for path in (project_root, src_path):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from appgen.llm_transport import ScriptedTransport, UsageSummary  # noqa: E402
from appgen.pipeline import GenerationPipeline  # noqa: E402
from appgen.retry_strategy import RetryConfig  # noqa: E402
from appgen.truncation import TruncationDetector  # noqa: E402
from tests.helpers import TRUNCATED_RESPONSE, VALID_RESPONSE, FakeClock, no_sleep  # noqa: E402


@pytest.fixture
def valid_response():
    return VALID_RESPONSE


@pytest.fixture
def truncated_response():
    return TRUNCATED_RESPONSE


@pytest.fixture
def usage():
    return UsageSummary(
        input_tokens=1200, output_tokens=800, cache_read_tokens=300, stop_reason="end_turn"
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_pipeline():
    """Factory for a pipeline over a scripted transport with no real waits."""

    def _make(scripts, max_attempts=2, usage=None, **kwargs):
        transport = ScriptedTransport(scripts=scripts, usage=usage or UsageSummary())
        kwargs.setdefault("progress_interval_ms", 500)
        kwargs.setdefault("retry_on_validation_errors", False)
        kwargs.setdefault("sleep", no_sleep)
        pipeline = GenerationPipeline(
            transport,
            model="test-model",
            retry_config=RetryConfig(max_attempts=max_attempts),
            truncation_detector=TruncationDetector(),
            max_marker_path_length=512,
            **kwargs,
        )
        return pipeline, transport

    return _make
