"""Typed progress events streamed to the caller.

A build request produces a sequence of these events terminated by exactly one
``complete`` or ``error`` event. On the wire each event is one Server-Sent
Events ``data:`` line of compact camelCase JSON.
"""

import time
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    return int(time.time() * 1000)


class _EventModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _BaseEvent(_EventModel):
    timestamp: int = Field(default_factory=now_ms)


class StartEvent(_BaseEvent):
    type: Literal["start"] = "start"
    message: str = "Starting app generation..."
    phase_number: Optional[float] = None
    phase_name: Optional[str] = None


class ThinkingEvent(_BaseEvent):
    type: Literal["thinking"] = "thinking"
    message: str = "AI is analyzing your request and planning the app structure..."
    attempt: Optional[int] = None


class FileStartEvent(_BaseEvent):
    type: Literal["file_start"] = "file_start"
    file_path: str
    file_index: int
    total_files: int


class FileProgressEvent(_BaseEvent):
    type: Literal["file_progress"] = "file_progress"
    file_path: str
    chunk_size: int
    total_chars: int


class FileCompleteEvent(_BaseEvent):
    type: Literal["file_complete"] = "file_complete"
    file_path: str
    file_index: int
    total_files: int
    char_count: int = 0


class ValidationEvent(_BaseEvent):
    type: Literal["validation"] = "validation"
    message: str = "Validating generated code..."
    files_validated: int
    total_files: int
    errors_found: int
    auto_fixed: int


class FilePayload(_EventModel):
    path: str
    content: str
    description: str = ""


class ValidationWarnings(_EventModel):
    has_warnings: bool = True
    message: str
    details: List[Dict[str, Any]] = Field(default_factory=list)


class TruncationPayload(_EventModel):
    is_truncated: bool
    reason: str
    last_complete_file: Optional[str] = None
    salvageable_files: int


class CompleteData(_EventModel):
    name: str
    description: str
    app_type: str
    change_type: str
    change_summary: str
    files: List[FilePayload]
    dependencies: Dict[str, str] = Field(default_factory=dict)
    setup_instructions: str = ""
    validation_warnings: Optional[ValidationWarnings] = None
    truncation: Optional[TruncationPayload] = None
    warnings: Optional[List[str]] = None


class CompleteStats(_EventModel):
    total_time: int
    files_generated: int
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    attempts: int = 1


class CompleteEvent(_BaseEvent):
    type: Literal["complete"] = "complete"
    success: bool = True
    data: CompleteData
    stats: CompleteStats


class ErrorEvent(_BaseEvent):
    type: Literal["error"] = "error"
    message: str
    code: Optional[str] = None
    recoverable: bool = False


StreamEvent = Annotated[
    Union[
        StartEvent,
        ThinkingEvent,
        FileStartEvent,
        FileProgressEvent,
        FileCompleteEvent,
        ValidationEvent,
        CompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"complete", "error"})

_stream_event_adapter = TypeAdapter(StreamEvent)


def format_sse(event: BaseModel) -> str:
    """Format an event as one Server-Sent Events message."""
    return f"data: {event.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


def parse_stream_event(raw: str) -> Optional[BaseModel]:
    """Parse one event's JSON payload; returns None for empty or invalid input."""
    if not raw or not raw.strip():
        return None
    try:
        return _stream_event_adapter.validate_json(raw)
    except ValidationError:
        return None
