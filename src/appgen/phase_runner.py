"""
Multi-phase build driver.

Splits an oversized phase into child phases and builds them one after another
through the generation pipeline. Each completed child's files become the
``previous_phase_code`` for the next child, and its features are added to the
cumulative feature list.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .events import CompleteEvent, ErrorEvent
from .phases import Phase, PhaseStatus, split_phase_if_needed
from .pipeline import GenerationPipeline
from .prompts import PhaseContext, build_phase_prompt
from .requests import BuildRequest, PhaseContextPayload, PhasePayload

logger = logging.getLogger(__name__)

EventCallback = Callable[[Any], Union[None, Awaitable[None]]]


@dataclass
class PhaseBuildResult:
    """Outcome of building one (possibly split) phase."""

    phase: Phase
    success: bool
    files: List[Dict[str, str]] = field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None


class PhaseBuildRunner:
    """Builds phases sequentially through a GenerationPipeline."""

    def __init__(self, pipeline: GenerationPipeline, on_event: Optional[EventCallback] = None):
        self.pipeline = pipeline
        self.on_event = on_event

    async def _emit(self, event: Any) -> None:
        if self.on_event is None:
            return
        result = self.on_event(event)
        if inspect.isawaitable(result):
            await result

    def _request_for(self, phase: Phase, context: PhaseContext) -> BuildRequest:
        return BuildRequest(
            prompt=build_phase_prompt(phase, context),
            is_phase_building=True,
            phase_context=PhaseContextPayload(
                phase_number=phase.number,
                phase_name=phase.name,
                previous_phase_code=context.previous_phase_code,
                all_phases=[PhasePayload(**p.to_dict()) for p in context.all_phases],
                completed_phases=list(context.completed_phases),
                cumulative_features=list(context.cumulative_features),
            ),
        )

    async def build_phase(
        self,
        phase: Phase,
        context: PhaseContext,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> List[PhaseBuildResult]:
        """
        Build a phase, splitting it first if it is too large.

        Children are built in order; the first failure stops the build since
        later children extend the earlier ones' code. ``context`` is updated in
        place as children complete.

        Returns:
            One result per child that was attempted
        """
        children = split_phase_if_needed(phase)
        if len(children) > 1:
            # Replace the parent with its children in the plan
            context.all_phases = [p for p in context.all_phases if p.number != phase.number]
            context.all_phases.extend(children)
            context.all_phases.sort(key=lambda p: p.number)

        results: List[PhaseBuildResult] = []
        for child in children:
            if abort_signal is not None and abort_signal.is_set():
                logger.info(f"[PhaseRunner] Aborted before phase {child.number}")
                break

            child.status = PhaseStatus.BUILDING
            context.phase_number = child.number
            logger.info(f"[PhaseRunner] Building phase {child.number}: {child.name}")

            terminal = None
            async for event in self.pipeline.run(self._request_for(child, context), abort_signal):
                await self._emit(event)
                if isinstance(event, (CompleteEvent, ErrorEvent)):
                    terminal = event

            if isinstance(terminal, CompleteEvent):
                files = [f.model_dump() for f in terminal.data.files]
                child.status = PhaseStatus.COMPLETE
                context.previous_phase_code = json.dumps({"files": files})
                context.completed_phases.append(child.number)
                context.cumulative_features.extend(child.features)
                results.append(PhaseBuildResult(phase=child, success=True, files=files))
                continue

            child.status = PhaseStatus.PENDING
            if isinstance(terminal, ErrorEvent):
                logger.warning(f"[PhaseRunner] Phase {child.number} failed: {terminal.message}")
                results.append(
                    PhaseBuildResult(
                        phase=child, success=False, error=terminal.message, error_code=terminal.code
                    )
                )
            break

        return results
