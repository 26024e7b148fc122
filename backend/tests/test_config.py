"""
Unit tests for environment-driven settings.
"""
from learnassist.core.config import Settings, get_settings, reset_settings


def test_defaults():
    settings = Settings()

    assert settings.llm_timeout_seconds == 20.0
    assert settings.retrieval_timeout_seconds == 3.0
    assert settings.response_cache_ttl_seconds == 86400
    assert settings.session_history_cap == 50
    assert settings.session_inactivity_seconds == 30 * 24 * 60 * 60
    assert settings.llm_api_key is None


def test_from_env_overrides(monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "sk-test")
    monkeypatch.setenv("LLM_CAPABLE_MODEL", "big-model")
    monkeypatch.setenv("COMPLEXITY_THRESHOLD", "0.7")
    monkeypatch.setenv("RETRIEVAL_LIMIT", "5")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "service-key")

    settings = Settings.from_env()

    assert settings.llm_api_key == "sk-test"
    assert settings.llm_capable_model == "big-model"
    assert settings.complexity_threshold == 0.7
    assert settings.retrieval_limit == 5
    assert settings.supabase_key == "service-key"


def test_invalid_numbers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("LLM_MAX_RETRIES", "lots")
    monkeypatch.setenv("LLM_BACKOFF_SECONDS", "")

    settings = Settings.from_env()

    assert settings.llm_max_retries == 2
    assert settings.llm_backoff_seconds == 0.5


def test_get_settings_is_cached_until_reset(monkeypatch):
    monkeypatch.setenv("LLM_FAST_MODEL", "first")
    first = get_settings()
    monkeypatch.setenv("LLM_FAST_MODEL", "second")

    assert get_settings() is first

    reset_settings()
    assert get_settings().llm_fast_model == "second"
