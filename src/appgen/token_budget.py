"""Token budget selection.

Picks the {max_tokens, thinking_budget, timeout_ms} triple for one generation
call from a small table keyed by the phase's position in the plan and,
optionally, its estimated complexity. Selection is a pure lookup and is safe to
call on every attempt including retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import yaml

from .phases import ComplexityLevel, PhaseComplexity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenBudget:
    """Response-size cap, internal-reasoning cap and timeout for one call."""

    max_tokens: int
    thinking_budget: int
    timeout_ms: int

    def __post_init__(self):
        # Visible output needs room after internal reasoning
        if self.max_tokens <= self.thinking_budget:
            raise ValueError(
                f"max_tokens ({self.max_tokens}) must exceed thinking_budget ({self.thinking_budget})"
            )
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(frozen=True)
class BudgetTable:
    """The three budget tiers."""

    # Phase 1 builds the foundation and needs the most room
    foundation: TokenBudget = TokenBudget(max_tokens=48000, thinking_budget=24000, timeout_ms=360000)
    # Later phases are additive changes
    additive: TokenBudget = TokenBudget(max_tokens=32000, thinking_budget=16000, timeout_ms=300000)
    small: TokenBudget = TokenBudget(max_tokens=24000, thinking_budget=12000, timeout_ms=180000)

    @classmethod
    def from_yaml(cls, config_path: Union[str, Path]) -> "BudgetTable":
        """Load the table from a YAML file with a ``token_budgets`` mapping.

        Tiers missing from the file keep their defaults. Call this once at
        startup, not per request.
        """
        with open(config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        tiers = config.get("token_budgets", {})
        defaults = cls()
        loaded = {}
        for tier in ("foundation", "additive", "small"):
            raw = tiers.get(tier)
            if raw is None:
                loaded[tier] = getattr(defaults, tier)
                continue
            loaded[tier] = TokenBudget(
                max_tokens=int(raw["max_tokens"]),
                thinking_budget=int(raw["thinking_budget"]),
                timeout_ms=int(raw["timeout_ms"]),
            )

        logger.info(f"[TokenBudget] Loaded budget table from {config_path}")
        return cls(**loaded)


DEFAULT_BUDGET_TABLE = BudgetTable()


def select_token_budget(
    phase_number: float,
    complexity: Optional[PhaseComplexity] = None,
    table: BudgetTable = DEFAULT_BUDGET_TABLE,
) -> TokenBudget:
    """
    Get the token budget for a phase.

    Args:
        phase_number: Ordinal of the phase in the build plan (1 = foundation)
        complexity: Optional complexity estimate for later phases
        table: Budget tiers to select from

    Returns:
        TokenBudget for the call
    """
    if phase_number == 1:
        return table.foundation

    if complexity is not None:
        if complexity.level == ComplexityLevel.SMALL:
            return table.small
        if complexity.level in (ComplexityLevel.LARGE, ComplexityLevel.TOO_LARGE):
            return table.foundation

    return table.additive
