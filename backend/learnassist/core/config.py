"""
Environment-driven configuration.

Values are read once from the process environment (and an optional `.env`
file at the repository root) into a frozen Settings object.

LLM backend:
- LLM_API_BASE: OpenAI-compatible base URL (default: https://api.openai.com/v1)
- LLM_API_KEY: bearer token; unset means the backend is not configured
- LLM_FAST_MODEL / LLM_CAPABLE_MODEL: model names per tier
- LLM_FAST_INPUT_COST_PER_1K / LLM_FAST_OUTPUT_COST_PER_1K (USD)
- LLM_CAPABLE_INPUT_COST_PER_1K / LLM_CAPABLE_OUTPUT_COST_PER_1K (USD)
- LLM_TIMEOUT_SECONDS, LLM_MAX_RETRIES, LLM_BACKOFF_SECONDS

Routing:
- COMPLEXITY_THRESHOLD and the COMPLEXITY_*_WEIGHT / *_WORDS knobs

Retrieval, cache, sessions:
- RETRIEVAL_TIMEOUT_SECONDS, RETRIEVAL_LIMIT
- RESPONSE_CACHE_TTL_SECONDS
- SESSION_INACTIVITY_SECONDS, SESSION_HISTORY_CAP
- REDIS_URL, SUPABASE_URL, SUPABASE_SERVICE_KEY
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from learnassist.core.logging import get_logger

logger = get_logger(__name__)

env_path = Path(__file__).parent.parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("config_invalid_float", name=name, value=raw, default=default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("config_invalid_int", name=name, value=raw, default=default)
        return default


@dataclass(frozen=True)
class Settings:
    llm_api_base: str = "https://api.openai.com/v1"
    llm_api_key: Optional[str] = None
    llm_fast_model: str = "gpt-4o-mini"
    llm_capable_model: str = "gpt-4o"
    llm_fast_input_cost_per_1k: float = 0.00025
    llm_fast_output_cost_per_1k: float = 0.00125
    llm_capable_input_cost_per_1k: float = 0.003
    llm_capable_output_cost_per_1k: float = 0.015
    llm_timeout_seconds: float = 20.0
    llm_max_retries: int = 2
    llm_backoff_seconds: float = 0.5
    llm_max_output_tokens: int = 2000

    complexity_threshold: float = 0.5
    complexity_medium_words: int = 20
    complexity_long_words: int = 50
    complexity_medium_weight: float = 0.1
    complexity_long_weight: float = 0.3
    complexity_keyword_weight: float = 0.3
    complexity_depth_turns: int = 5
    complexity_depth_weight: float = 0.2

    retrieval_timeout_seconds: float = 3.0
    retrieval_limit: int = 10

    response_cache_ttl_seconds: int = 24 * 60 * 60

    session_inactivity_seconds: int = 30 * 24 * 60 * 60
    session_history_cap: int = 50

    redis_url: str = "redis://redis:6379"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            llm_api_base=os.getenv("LLM_API_BASE", cls.llm_api_base),
            llm_api_key=os.getenv("LLM_API_KEY") or None,
            llm_fast_model=os.getenv("LLM_FAST_MODEL", cls.llm_fast_model),
            llm_capable_model=os.getenv("LLM_CAPABLE_MODEL", cls.llm_capable_model),
            llm_fast_input_cost_per_1k=_env_float("LLM_FAST_INPUT_COST_PER_1K", cls.llm_fast_input_cost_per_1k),
            llm_fast_output_cost_per_1k=_env_float("LLM_FAST_OUTPUT_COST_PER_1K", cls.llm_fast_output_cost_per_1k),
            llm_capable_input_cost_per_1k=_env_float("LLM_CAPABLE_INPUT_COST_PER_1K", cls.llm_capable_input_cost_per_1k),
            llm_capable_output_cost_per_1k=_env_float("LLM_CAPABLE_OUTPUT_COST_PER_1K", cls.llm_capable_output_cost_per_1k),
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", cls.llm_timeout_seconds),
            llm_max_retries=_env_int("LLM_MAX_RETRIES", cls.llm_max_retries),
            llm_backoff_seconds=_env_float("LLM_BACKOFF_SECONDS", cls.llm_backoff_seconds),
            llm_max_output_tokens=_env_int("LLM_MAX_OUTPUT_TOKENS", cls.llm_max_output_tokens),
            complexity_threshold=_env_float("COMPLEXITY_THRESHOLD", cls.complexity_threshold),
            complexity_medium_words=_env_int("COMPLEXITY_MEDIUM_WORDS", cls.complexity_medium_words),
            complexity_long_words=_env_int("COMPLEXITY_LONG_WORDS", cls.complexity_long_words),
            complexity_medium_weight=_env_float("COMPLEXITY_MEDIUM_WEIGHT", cls.complexity_medium_weight),
            complexity_long_weight=_env_float("COMPLEXITY_LONG_WEIGHT", cls.complexity_long_weight),
            complexity_keyword_weight=_env_float("COMPLEXITY_KEYWORD_WEIGHT", cls.complexity_keyword_weight),
            complexity_depth_turns=_env_int("COMPLEXITY_DEPTH_TURNS", cls.complexity_depth_turns),
            complexity_depth_weight=_env_float("COMPLEXITY_DEPTH_WEIGHT", cls.complexity_depth_weight),
            retrieval_timeout_seconds=_env_float("RETRIEVAL_TIMEOUT_SECONDS", cls.retrieval_timeout_seconds),
            retrieval_limit=_env_int("RETRIEVAL_LIMIT", cls.retrieval_limit),
            response_cache_ttl_seconds=_env_int("RESPONSE_CACHE_TTL_SECONDS", cls.response_cache_ttl_seconds),
            session_inactivity_seconds=_env_int("SESSION_INACTIVITY_SECONDS", cls.session_inactivity_seconds),
            session_history_cap=_env_int("SESSION_HISTORY_CAP", cls.session_history_cap),
            redis_url=os.getenv("REDIS_URL", cls.redis_url),
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY") or None,
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (tests change the environment between cases)."""
    global _settings
    _settings = None
