"""
Prompt and conversation assembly for generation calls.

The system prompt's wording is owned by the caller; this module only supplies a
minimal default that states the delimiter format, and composes the context
blocks (existing app, prior phases, conversation history) around it.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from .llm_transport import ConversationMessage
from .phases import Phase
from .requests import BuildRequest, CurrentAppState

logger = logging.getLogger(__name__)

EXISTING_FILE_PREVIEW_COUNT = 3
EXISTING_FILE_PREVIEW_CHARS = 1500

CONTEXT_SUMMARY_ACK = "I understand the context. Proceeding with the request."

_DATA_URL_RE = re.compile(r"^data:(image/[^;]+);base64,(.+)$", re.DOTALL)

DEFAULT_SYSTEM_PROMPT = """You are an expert application architect. Generate complete, working applications.

Respond in plain text using EXACTLY this delimiter format:

===NAME===
<app name>
===DESCRIPTION===
<one sentence>
===APP_TYPE===
FRONTEND_ONLY or FULL_STACK
===FILE:path/to/file===
<complete file contents>
(repeat ===FILE:...=== for every file)
===DEPENDENCIES===
<package>: <version>
===SETUP===
<setup instructions>
===END===

Never truncate code mid-line, mid-tag, mid-string or mid-function. Always finish with ===END==="""


@dataclass
class PhaseContext:
    """What a phase prompt knows about the build so far."""

    phase_number: float = 1
    previous_phase_code: Optional[str] = None  # JSON: {"files": [{path, content}, ...]}
    all_phases: List[Phase] = field(default_factory=list)
    completed_phases: List[float] = field(default_factory=list)
    cumulative_features: List[str] = field(default_factory=list)


def _feature_list(phase: Phase) -> str:
    return "\n".join(f"- {f}" for f in phase.features)


def _format_number(number: float) -> str:
    return f"{number:g}"


def build_phase_prompt(phase: Phase, context: PhaseContext) -> str:
    """
    Build the user prompt for one phase.

    The first phase (or any phase without prior code) is built from scratch;
    later phases get a continuation prompt describing the existing app.
    """
    if context.phase_number == 1 or not context.previous_phase_code:
        return (
            f"Build {phase.name}: {phase.description}\n\n"
            f"Features to implement:\n{_feature_list(phase)}\n\n"
            "This is Phase 1 - create the foundation app with these features."
        )

    number = _format_number(context.phase_number)
    try:
        existing_app = json.loads(context.previous_phase_code)
        existing_files = existing_app.get("files") or []
    except (json.JSONDecodeError, AttributeError):
        logger.warning("[Prompts] previous_phase_code is not valid JSON; using fallback prompt")
        return (
            f"Build {phase.name}: {phase.description}\n\n"
            f"Features to implement:\n{_feature_list(phase)}\n\n"
            f"This is Phase {number} - add these features to the existing app."
        )

    file_names = ", ".join(f.get("path", "") for f in existing_files) or "none"
    previews = []
    for f in existing_files[:EXISTING_FILE_PREVIEW_COUNT]:
        content = f.get("content", "")
        clipped = content[:EXISTING_FILE_PREVIEW_CHARS]
        if len(content) > EXISTING_FILE_PREVIEW_CHARS:
            clipped += "...(truncated)"
        previews.append(f"\n=== {f.get('path', '')} ===\n{clipped}\n")

    return f"""Continue building the app. This is Phase {number}.

EXISTING APP (from previous phases):
- Files: {file_names}
- Features already implemented: {", ".join(context.cumulative_features) or "foundation"}

YOUR TASK FOR THIS PHASE:
{phase.name}: {phase.description}

NEW FEATURES TO ADD:
{_feature_list(phase)}

CRITICAL INSTRUCTIONS:
1. DO NOT recreate existing files unless modifying them
2. PRESERVE all existing functionality
3. ADD the new features incrementally
4. Reference existing components/functions where appropriate

EXISTING CODE FOR REFERENCE (first {EXISTING_FILE_PREVIEW_COUNT} files):
{"".join(previews) or "(no existing files)"}"""


def _current_app_context(state: CurrentAppState) -> str:
    listing = "\n".join(f"- {f.path}" for f in state.files)
    contents = "\n".join(f"\n--- {f.path} ---\n{f.content}\n--- END {f.path} ---\n" for f in state.files)
    return f"""

===CURRENT APP CONTEXT===
The user has an existing app loaded. Here is the current state:

App Name: {state.name or "Unnamed App"}
App Type: {state.app_type or "Unknown"}
Files in the app:
{listing}

FILE CONTENTS:
{contents}
===END CURRENT APP CONTEXT===

When building new features or making changes, reference the actual code above. Preserve existing functionality unless explicitly asked to change it."""


def build_system_prompt(request: BuildRequest, base_prompt: Optional[str] = None) -> str:
    """Compose the system prompt from the base instructions and request context."""
    prompt = base_prompt or DEFAULT_SYSTEM_PROMPT
    if request.is_modification:
        prompt += f"""

MODIFICATION MODE for "{request.current_app_name or "current app"}":
- Classify: MAJOR_CHANGE (new features, redesigns) or MINOR_CHANGE (bug fixes, tweaks)
- PRESERVE all existing UI/styling/functionality not mentioned
- Use EXACT delimiter format (===NAME===, ===FILE:===, etc.)"""
    if request.current_app_state and request.current_app_state.files:
        prompt += _current_app_context(request.current_app_state)
    return prompt


def _prompt_message(request: BuildRequest) -> ConversationMessage:
    if request.has_image and request.image:
        match = _DATA_URL_RE.match(request.image)
        if match:
            return ConversationMessage(
                role="user",
                content=[
                    {
                        "type": "image",
                        "source": {"type": "base64", "media_type": match.group(1), "data": match.group(2)},
                    },
                    {"type": "text", "text": request.prompt},
                ],
            )
        logger.warning("[Prompts] Ignoring image that is not a base64 data URL")
    return ConversationMessage(role="user", content=request.prompt)


def build_conversation(request: BuildRequest) -> List[ConversationMessage]:
    """
    Build the conversation turns for a request.

    Order: optional context-summary turn pair, prior user/assistant turns
    (other roles are dropped), then the request prompt.
    """
    messages: List[ConversationMessage] = []

    if request.context_summary:
        messages.append(
            ConversationMessage(
                role="user",
                content=f"[Context from earlier conversation]\n{request.context_summary}",
            )
        )
        messages.append(ConversationMessage(role="assistant", content=CONTEXT_SUMMARY_ACK))

    for turn in request.conversation_history:
        if turn.role in ("user", "assistant"):
            messages.append(ConversationMessage(role=turn.role, content=turn.content))

    messages.append(_prompt_message(request))
    return messages
