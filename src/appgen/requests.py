"""Request schemas for build requests.

Bodies arrive as camelCase JSON. Required and optional fields are enforced
here, at the boundary, so the pipeline never inspects loosely-shaped input.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .exceptions import InvalidRequestError
from .phases import Phase, PhaseStatus


class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ConversationTurn(_RequestModel):
    role: str
    content: str


class PhasePayload(_RequestModel):
    number: float
    name: str = ""
    description: str = ""
    features: List[str] = Field(default_factory=list)
    status: PhaseStatus = PhaseStatus.PENDING

    def to_phase(self) -> Phase:
        return Phase(
            number=self.number,
            name=self.name,
            description=self.description,
            features=list(self.features),
            status=self.status,
        )


class PhaseContextPayload(_RequestModel):
    phase_number: float = 1
    phase_name: Optional[str] = None
    previous_phase_code: Optional[str] = None
    all_phases: List[PhasePayload] = Field(default_factory=list)
    completed_phases: List[float] = Field(default_factory=list)
    cumulative_features: List[str] = Field(default_factory=list)

    def current_phase(self) -> Optional[Phase]:
        for payload in self.all_phases:
            if payload.number == self.phase_number:
                return payload.to_phase()
        return None


class AppFile(_RequestModel):
    path: str
    content: str = ""


class CurrentAppState(_RequestModel):
    name: Optional[str] = None
    app_type: Optional[str] = None
    files: List[AppFile] = Field(default_factory=list)


class BuildRequest(_RequestModel):
    """A full-app generation request."""

    prompt: str = Field(..., min_length=1)
    conversation_history: List[ConversationTurn] = Field(default_factory=list)
    context_summary: Optional[str] = None
    is_modification: bool = False
    current_app_name: Optional[str] = None
    image: Optional[str] = None
    has_image: bool = False
    is_phase_building: bool = False
    phase_context: Optional[PhaseContextPayload] = None
    current_app_state: Optional[CurrentAppState] = None

    @property
    def active_phase_context(self) -> Optional[PhaseContextPayload]:
        """Phase context, only when the request is part of a phased build."""
        return self.phase_context if self.is_phase_building else None

    @classmethod
    def parse_body(cls, body: Union[str, bytes, Dict[str, Any]]) -> "BuildRequest":
        """Validate a raw request body.

        Raises:
            InvalidRequestError: body is not valid JSON or misses required fields
        """
        try:
            if isinstance(body, dict):
                return cls.model_validate(body)
            return cls.model_validate_json(body)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid request: {e}") from e
