"""Pydantic models shared across the orchestration core."""

from .domain import (
    AIResponse,
    CacheEntry,
    ContentSource,
    ConversationTurn,
    ExplanationStyle,
    InvocationResult,
    Mode,
    ModelTier,
    ModeSwitchResult,
    ModeTransition,
    PersonalityConfig,
    PromptPayload,
    Query,
    RetrievalResult,
    Role,
    Session,
    SkillLevel,
    SourceMetadata,
    TopicThread,
    UserProfile,
)

__all__ = [
    "AIResponse",
    "CacheEntry",
    "ContentSource",
    "ConversationTurn",
    "ExplanationStyle",
    "InvocationResult",
    "Mode",
    "ModelTier",
    "ModeSwitchResult",
    "ModeTransition",
    "PersonalityConfig",
    "PromptPayload",
    "Query",
    "RetrievalResult",
    "Role",
    "Session",
    "SkillLevel",
    "SourceMetadata",
    "TopicThread",
    "UserProfile",
]
