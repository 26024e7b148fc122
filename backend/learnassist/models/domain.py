"""
Pydantic models for the orchestration core.

Modes, roles and tiers are closed enums: adding a mode means extending
`Mode` and every mapping keyed by it, never comparing free-form strings.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Mode(str, Enum):
    TUTOR = "tutor"
    INTERVIEWER = "interviewer"
    MENTOR = "mentor"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ModelTier(str, Enum):
    FAST = "fast"
    CAPABLE = "capable"


class SkillLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class ExplanationStyle(str, Enum):
    DETAILED = "detailed"
    CONCISE = "concise"
    VISUAL = "visual"


class ConversationTurn(BaseModel):
    """One message in a session. Append-only."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    mode: Optional[Mode] = None
    topic_id: Optional[str] = None


class Query(BaseModel):
    """
    Immutable orchestration input.

    `conversation_history`, when the caller supplies it, replaces the
    stored session history as prompt context for this request.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    mode: Mode
    language: str = Field(..., min_length=1)
    topic_id: Optional[str] = None
    conversation_history: Optional[List[ConversationTurn]] = None

    @field_validator("user_id", "session_id", "text", "language")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class SourceMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    topic: Optional[str] = None
    page: Optional[int] = None
    section: Optional[str] = None


class ContentSource(BaseModel):
    """A ranked snippet of the user's own indexed material."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_id: str
    text: str
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    metadata: SourceMetadata = Field(default_factory=SourceMetadata)


class RetrievalResult(BaseModel):
    """Sources plus the degraded flag set when the index was unavailable."""

    sources: List[ContentSource] = Field(default_factory=list)
    degraded: bool = False
    reason: Optional[str] = None


class TopicThread(BaseModel):
    """Sub-conversation scoped to one subject."""

    topic_id: str
    topic_name: str
    mode: Mode = Mode.TUTOR
    history: List[ConversationTurn] = Field(default_factory=list)
    understanding_level: float = Field(0.5, ge=0.0, le=1.0)
    started_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    """
    Durable per-conversation state.

    `history` is the global turn list, capped (oldest evicted first).
    `version` is the optimistic-concurrency token checked on conditional
    writes; the store bumps it on every successful save.
    """

    session_id: str
    user_id: str
    mode: Mode = Mode.TUTOR
    language: str = "en"
    topic_threads: Dict[str, TopicThread] = Field(default_factory=dict)
    current_topic_id: Optional[str] = None
    history: List[ConversationTurn] = Field(default_factory=list)
    understanding_level: float = Field(0.5, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def current_topic(self) -> Optional[TopicThread]:
        if self.current_topic_id is None:
            return None
        return self.topic_threads.get(self.current_topic_id)


class ModeTransition(BaseModel):
    """Audit record of a mode switch. Never deleted."""

    model_config = ConfigDict(frozen=True)

    from_mode: Optional[Mode] = None
    to_mode: Mode
    timestamp: datetime = Field(default_factory=utcnow)
    reason: str


class UserProfile(BaseModel):
    """User preferences plus the mode audit trail; `current_mode` is the last-used default."""

    user_id: str
    display_name: Optional[str] = None
    preferred_language: str = "en"
    skill_level: SkillLevel = SkillLevel.INTERMEDIATE
    explanation_style: ExplanationStyle = ExplanationStyle.DETAILED
    current_mode: Mode = Mode.TUTOR
    mode_history: List[ModeTransition] = Field(default_factory=list)


class PersonalityConfig(BaseModel):
    """Derived per request from (mode, skill level, explanation style); never persisted."""

    model_config = ConfigDict(frozen=True)

    tone: str
    response_style: str
    questioning_approach: str
    feedback_style: str
    example_usage: str
    language_complexity: str


class PromptPayload(BaseModel):
    """Everything the model invoker sends: system instruction plus chat messages."""

    model_config = ConfigDict(frozen=True)

    system: str
    messages: List[Dict[str, str]]
    grounded: bool
    source_count: int
    language: str


class InvocationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    tier: ModelTier
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    raw_usage: Dict[str, Any] = Field(default_factory=dict)


class AIResponse(BaseModel):
    """Output of one orchestration cycle, serialized as a flat object."""

    model_config = ConfigDict(frozen=True)

    text: str
    mode: Mode
    confidence: float = Field(..., ge=0.0, le=1.0)
    sources: List[ContentSource] = Field(default_factory=list)
    follow_up_suggestions: List[str] = Field(default_factory=list)
    model_tier: ModelTier
    cached: bool = False
    estimated_cost: float = Field(0.0, ge=0.0)


class CacheEntry(BaseModel):
    cache_key: str
    response: AIResponse
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class ModeSwitchResult(BaseModel):
    success: bool
    current_mode: Mode
    previous_mode: Optional[Mode] = None
    transition_message: str
    personality_config: PersonalityConfig
