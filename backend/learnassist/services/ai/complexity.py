"""
Query complexity scoring for tier routing.

score = length weight + analytical-keyword weight + conversation-depth weight,
clamped to 1.0. A score above the threshold routes to the capable tier.
"""
import re
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Sequence

from learnassist.core.config import Settings, get_settings
from learnassist.models.domain import ModelTier

ANALYTICAL_KEYWORDS: FrozenSet[str] = frozenset({
    "explain",
    "compare",
    "analyze",
    "evaluate",
    "design",
    "implement",
    "architecture",
    "algorithm",
    "optimize",
    "debug",
    "refactor",
})

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ComplexityConfig:
    """Tunable weight table; see Settings for the environment knobs."""

    threshold: float = 0.5
    medium_words: int = 20
    long_words: int = 50
    medium_weight: float = 0.1
    long_weight: float = 0.3
    keyword_weight: float = 0.3
    depth_turns: int = 5
    depth_weight: float = 0.2
    keywords: FrozenSet[str] = field(default=ANALYTICAL_KEYWORDS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ComplexityConfig":
        return cls(
            threshold=settings.complexity_threshold,
            medium_words=settings.complexity_medium_words,
            long_words=settings.complexity_long_words,
            medium_weight=settings.complexity_medium_weight,
            long_weight=settings.complexity_long_weight,
            keyword_weight=settings.complexity_keyword_weight,
            depth_turns=settings.complexity_depth_turns,
            depth_weight=settings.complexity_depth_weight,
        )


class ComplexityAnalyzer:
    """Pure scorer: no I/O, no failure modes."""

    def __init__(self, config: Optional[ComplexityConfig] = None):
        self.config = config or ComplexityConfig.from_settings(get_settings())

    def score(self, query: str, recent_history: Optional[Sequence] = None) -> float:
        cfg = self.config
        text = (query or "").strip()
        score = 0.0

        word_count = len(_WHITESPACE.split(text)) if text else 0
        if word_count > cfg.long_words:
            score += cfg.long_weight
        elif word_count > cfg.medium_words:
            score += cfg.medium_weight

        # Substring match, so "explaining" and "optimized" count too.
        lowered = text.lower()
        if any(keyword in lowered for keyword in cfg.keywords):
            score += cfg.keyword_weight

        if recent_history and len(recent_history) > cfg.depth_turns:
            score += cfg.depth_weight

        return max(0.0, min(score, 1.0))

    def select_tier(self, score: float) -> ModelTier:
        return ModelTier.CAPABLE if score > self.config.threshold else ModelTier.FAST
