"""
Phase complexity estimation and auto-splitting.

A phase is one step of a multi-phase build plan. Before a phase is sent to the
model its feature list is scored; phases that would not fit comfortably in a
single response are split into ordered child phases whose numbers sit between
the parent's number and the next whole number.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class PhaseStatus(str, Enum):
    PENDING = "pending"
    BUILDING = "building"
    COMPLETE = "complete"


class ComplexityLevel(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    TOO_LARGE = "too_large"


# Matched case-insensitively as substrings of a feature description
COMPLEX_FEATURE_PATTERNS = (
    "authentication",
    "auth",
    "login",
    "signup",
    "sign up",
    "register",
    "database",
    "backend",
    "api",
    "server",
    "payment",
    "stripe",
    "checkout",
    "billing",
    "real-time",
    "realtime",
    "websocket",
    "socket",
    "chat",
    "file upload",
    "image upload",
    "storage",
    "upload",
    "email",
    "notification",
    "push",
    "dashboard",
    "analytics",
    "charts",
    "graphs",
    "search",
    "filter",
    "pagination",
    "drag and drop",
    "dnd",
    "sortable",
    "form validation",
    "multi-step",
    "wizard",
)

BASE_TOKENS_PER_FEATURE = 1500
COMPLEX_FEATURE_MULTIPLIER = 2.5

# (estimated tokens, feature count, complex feature count) upper bounds per level
TOO_LARGE_TOKENS = 14000
LARGE_TOKENS = 10000
MEDIUM_TOKENS = 5000
MAX_FEATURES_PER_PHASE = 5

CORE_FEATURE_LIMIT = 3
EXTENDED_CHUNK_SIZE = MAX_FEATURES_PER_PHASE


@dataclass
class Phase:
    """One step of a build plan."""

    number: float
    name: str
    description: str
    features: List[str] = field(default_factory=list)
    status: PhaseStatus = PhaseStatus.PENDING

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Phase":
        return cls(
            number=data["number"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            features=[str(f) for f in data.get("features") or []],
            status=PhaseStatus(data.get("status", PhaseStatus.PENDING.value)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "name": self.name,
            "description": self.description,
            "features": list(self.features),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class PhaseComplexity:
    """Derived cost estimate for a phase. Never persisted."""

    level: ComplexityLevel
    estimated_tokens: float
    should_split: bool
    complex_feature_count: int


def is_complex_feature(feature: str) -> bool:
    """Return True if the feature matches any complex keyword pattern."""
    lowered = feature.lower()
    return any(pattern in lowered for pattern in COMPLEX_FEATURE_PATTERNS)


def estimate_phase_complexity(phase: Phase) -> PhaseComplexity:
    """Estimate the generation cost of a phase from its feature list."""
    feature_count = len(phase.features)
    complex_count = sum(1 for f in phase.features if is_complex_feature(f))

    estimated_tokens = (
        (feature_count - complex_count) * BASE_TOKENS_PER_FEATURE
        + complex_count * BASE_TOKENS_PER_FEATURE * COMPLEX_FEATURE_MULTIPLIER
    )

    if (
        estimated_tokens > TOO_LARGE_TOKENS
        or feature_count > MAX_FEATURES_PER_PHASE
        or complex_count > 1
    ):
        level, should_split = ComplexityLevel.TOO_LARGE, True
    elif estimated_tokens > LARGE_TOKENS or feature_count > 3 or complex_count > 0:
        level, should_split = ComplexityLevel.LARGE, False
    elif estimated_tokens > MEDIUM_TOKENS or feature_count > 2:
        level, should_split = ComplexityLevel.MEDIUM, False
    else:
        level, should_split = ComplexityLevel.SMALL, False

    return PhaseComplexity(
        level=level,
        estimated_tokens=estimated_tokens,
        should_split=should_split,
        complex_feature_count=complex_count,
    )


def _offset(parent: float, delta: float) -> float:
    # Keep child numbers readable (2.6, not 2.6000000000000001)
    return round(parent + delta, 4)


def split_phase_if_needed(
    phase: Phase, complexity: Optional[PhaseComplexity] = None
) -> List[Phase]:
    """
    Split a phase into smaller child phases if it is too large.

    Children, in order:
      - "(Core)": up to the first three simple features, numbered as the parent
      - "(Extended)": the remaining simple features, at most five per child
      - one child per complex feature, named from its first two words

    All child numbers fall in ``[parent, parent + 1)`` so the plan's ordering
    is preserved without renumbering siblings. Phases that do not need a
    split are returned unchanged as a one-element list.

    Args:
        phase: Phase to split
        complexity: Precomputed complexity (computed if omitted)

    Returns:
        Ordered list of phases covering exactly the parent's features
    """
    complexity = complexity or estimate_phase_complexity(phase)
    if not complexity.should_split:
        return [phase]

    simple_features = [f for f in phase.features if not is_complex_feature(f)]
    complex_features = [f for f in phase.features if is_complex_feature(f)]

    children: List[Phase] = []

    if simple_features:
        children.append(
            Phase(
                number=phase.number,
                name=f"{phase.name} (Core)",
                description=f"{phase.description} - Core functionality",
                features=simple_features[:CORE_FEATURE_LIMIT],
            )
        )

        remainder = simple_features[CORE_FEATURE_LIMIT:]
        chunks = [
            remainder[i : i + EXTENDED_CHUNK_SIZE]
            for i in range(0, len(remainder), EXTENDED_CHUNK_SIZE)
        ]
        for idx, chunk in enumerate(chunks):
            suffix = "" if idx == 0 else f" {idx + 1}"
            children.append(
                Phase(
                    number=_offset(phase.number, 0.5 * (idx + 1) / len(chunks)),
                    name=f"{phase.name} (Extended{suffix})",
                    description=f"{phase.description} - Additional features",
                    features=chunk,
                )
            )

    # 0.1 apart as long as that stays below the next whole phase number
    step = min(0.1, 0.45 / max(1, len(complex_features)))
    for idx, feature in enumerate(complex_features):
        label = " ".join(feature.split(" ")[:2])
        children.append(
            Phase(
                number=_offset(phase.number, 0.5 + (idx + 1) * step),
                name=f"{phase.name} ({label})",
                description=feature,
                features=[feature],
            )
        )

    logger.info(
        "[PhaseSplit] Phase %s (%s) split into %d children: %s",
        phase.number,
        complexity.level.value,
        len(children),
        ", ".join(str(c.number) for c in children),
    )
    return children
