"""
Inference tiers and their published per-1K-token rates.

Cost estimation is a pure post-processing step over token counts; it never
touches the backend.
"""
import math
from dataclasses import dataclass
from typing import Dict, Optional

from learnassist.core.config import Settings, get_settings
from learnassist.models.domain import ModelTier

CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TierConfig:
    tier: ModelTier
    model: str
    input_cost_per_1k: float
    output_cost_per_1k: float
    max_output_tokens: int = 2000


def tier_configs(settings: Optional[Settings] = None) -> Dict[ModelTier, TierConfig]:
    settings = settings or get_settings()
    return {
        ModelTier.FAST: TierConfig(
            tier=ModelTier.FAST,
            model=settings.llm_fast_model,
            input_cost_per_1k=settings.llm_fast_input_cost_per_1k,
            output_cost_per_1k=settings.llm_fast_output_cost_per_1k,
            max_output_tokens=settings.llm_max_output_tokens,
        ),
        ModelTier.CAPABLE: TierConfig(
            tier=ModelTier.CAPABLE,
            model=settings.llm_capable_model,
            input_cost_per_1k=settings.llm_capable_input_cost_per_1k,
            output_cost_per_1k=settings.llm_capable_output_cost_per_1k,
            max_output_tokens=settings.llm_max_output_tokens,
        ),
    }


def estimate_tokens(text: str) -> int:
    """Rough token count for backends that omit a usage block."""
    if not text:
        return 0
    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))


def estimate_cost(config: TierConfig, input_tokens: int, output_tokens: int) -> float:
    """USD cost of one call at the tier's published rates."""
    input_cost = (max(input_tokens, 0) / 1000.0) * config.input_cost_per_1k
    output_cost = (max(output_tokens, 0) / 1000.0) * config.output_cost_per_1k
    return input_cost + output_cost
