"""
Session/Context Manager.

Owns the request lifecycle around the other components:

    cache check -> (retrieve || complexity) -> compose -> invoke
        -> cache write -> persist (user turn, assistant turn)

Session state (mode, topic threads, global history) is read from and
written back to the session store, the single source of truth. Writes are
conditional on the session version; on conflict the manager reloads and
re-applies its mutation.

Failure handling:
- invoker failure: nothing is persisted, the error propagates
- retrieval degraded: answer anyway with the general-knowledge disclaimer,
  skip the cache write
- retrieval degraded and invoker failed: PersistentBackendError
- cache failures never reach the caller
"""
import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from learnassist.core.config import Settings, get_settings
from learnassist.core.errors import (
    ConflictError,
    NotFoundError,
    OrchestrationError,
    PersistentBackendError,
    ValidationError,
)
from learnassist.core.logging import get_logger, set_session_id, set_user_id
from learnassist.core.metrics import (
    record_complexity_score,
    record_mode_transition,
    record_orchestration,
    record_session_write_conflict,
)
from learnassist.models.domain import (
    AIResponse,
    ConversationTurn,
    Mode,
    ModeSwitchResult,
    ModeTransition,
    Query,
    Role,
    Session,
    TopicThread,
    UserProfile,
    utcnow,
)
from learnassist.services.ai.complexity import ComplexityAnalyzer
from learnassist.services.ai.llm_client import LLMClient, get_llm_client
from learnassist.services.ai.personality import ModeRegistry, get_mode_registry
from learnassist.services.ai.prompt import GENERAL_KNOWLEDGE_DISCLAIMER, PromptComposer
from learnassist.services.ai.tiers import estimate_cost
from learnassist.services.cache.response_cache import ResponseCache
from learnassist.services.retrieval.retriever import ContentRetriever
from learnassist.services.session.store import ProfileStore, SessionStore, build_stores

logger = get_logger(__name__)

GROUNDED_CONFIDENCE = 0.85
UNGROUNDED_CONFIDENCE = 0.6
MAX_WRITE_ATTEMPTS = 3

_REQUEST_ALIASES = {
    "userId": "user_id",
    "sessionId": "session_id",
    "query": "text",
    "topicId": "topic_id",
    "conversationHistory": "conversation_history",
}

Mutation = Callable[[Session], None]


def parse_mode(value: Union[Mode, str], field: str = "mode") -> Mode:
    if isinstance(value, Mode):
        return value
    try:
        return Mode(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {', '.join(m.value for m in Mode)}",
            fields=[field],
        )


def ensure_disclaimer(text: str) -> str:
    """Prefix the general-knowledge disclaimer unless the model already opened with it."""
    stripped = text.lstrip().lstrip('"')
    if stripped.startswith(GENERAL_KNOWLEDGE_DISCLAIMER):
        return text
    return f"{GENERAL_KNOWLEDGE_DISCLAIMER}\n\n{text}"


def _log_detached_outcome(cycle: "asyncio.Future[AIResponse]") -> None:
    """Collect the result of a cycle whose caller was cancelled."""
    if cycle.cancelled():
        logger.warning("orchestration_detached_cancelled")
        return
    exc = cycle.exception()
    if exc is not None:
        logger.error(
            "orchestration_detached_failed",
            error=str(exc),
            error_type=type(exc).__name__,
        )
    else:
        logger.info("orchestration_detached_completed")


class SessionContextManager:
    def __init__(
        self,
        session_store: Optional[SessionStore] = None,
        profile_store: Optional[ProfileStore] = None,
        retriever: Optional[ContentRetriever] = None,
        complexity: Optional[ComplexityAnalyzer] = None,
        composer: Optional[PromptComposer] = None,
        llm_client: Optional[LLMClient] = None,
        response_cache: Optional[ResponseCache] = None,
        registry: Optional[ModeRegistry] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if session_store is None or profile_store is None:
            default_sessions, default_profiles = build_stores()
            session_store = session_store or default_sessions
            profile_store = profile_store or default_profiles

        self.settings = settings or get_settings()
        self.session_store = session_store
        self.profile_store = profile_store
        self.registry = registry or get_mode_registry()
        self.retriever = retriever or ContentRetriever()
        self.complexity = complexity or ComplexityAnalyzer()
        self.composer = composer or PromptComposer(self.registry)
        self._llm_client = llm_client
        self.response_cache = response_cache or ResponseCache()
        self._clock = clock

    @property
    def llm_client(self) -> LLMClient:
        return self._llm_client if self._llm_client is not None else get_llm_client()

    # ------------------------------------------------------------------
    # Request parsing
    # ------------------------------------------------------------------

    def parse_request(self, payload: Any) -> Query:
        """Validate a raw request body (camelCase or snake_case keys) into a Query."""
        if not isinstance(payload, Mapping):
            raise ValidationError("Request body must be a JSON object")

        data = {_REQUEST_ALIASES.get(key, key): value for key, value in payload.items()}
        try:
            return Query.model_validate(data)
        except PydanticValidationError as exc:
            fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
            raise ValidationError(
                f"Invalid request: {', '.join(fields)}",
                fields=fields,
            ) from exc

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def handle(self, query: Query) -> AIResponse:
        """
        Run one orchestration cycle.

        The cycle runs in its own task under asyncio.shield: if the caller
        goes away, the model call, cache write and session write still
        complete; only delivery of the response is abandoned. A failure in
        an abandoned cycle is logged by `_log_detached_outcome`.
        """
        set_user_id(query.user_id)
        set_session_id(query.session_id)
        cycle = asyncio.ensure_future(self._run_cycle(query))
        try:
            return await asyncio.shield(cycle)
        except asyncio.CancelledError:
            cycle.add_done_callback(_log_detached_outcome)
            raise

    async def _run_cycle(self, query: Query) -> AIResponse:
        start = time.perf_counter()
        session = await self._load_session(query.user_id, query.session_id, query.mode, query.language)
        profile = await self._load_profile(query.user_id, query.language)

        cached = await self.response_cache.get(query.user_id, query.text)
        if cached is not None:
            response = cached.response.model_copy(update={"mode": query.mode})
            await self._persist_cycle(session, profile, query, response)
            record_orchestration(query.mode.value, response.model_tier.value, "cache_hit", time.perf_counter() - start)
            logger.info(
                "orchestration_completed",
                cached=True,
                mode=query.mode.value,
                tier=response.model_tier.value,
            )
            return response

        history = query.conversation_history if query.conversation_history is not None else session.history
        retrieval, score = await asyncio.gather(
            self.retriever.retrieve(query.user_id, query.text),
            self._score(query.text, history),
        )
        tier = self.complexity.select_tier(score)

        personality = self.registry.config_for(query.mode, profile.skill_level, profile.explanation_style)
        payload = self.composer.compose(
            query.mode,
            query.language,
            retrieval.sources,
            history,
            query.text,
            personality=personality,
        )

        try:
            result = await self.llm_client.invoke(payload, tier)
        except OrchestrationError as exc:
            record_orchestration(query.mode.value, tier.value, "failed", time.perf_counter() - start)
            if retrieval.degraded:
                logger.error(
                    "orchestration_failed",
                    reason="retrieval_and_model_failed",
                    retrieval_reason=retrieval.reason,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise PersistentBackendError(
                    "Content retrieval and the model backend both failed",
                    cause="retrieval_and_model",
                ) from exc
            logger.error(
                "orchestration_failed",
                reason="model_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise

        text = result.text if payload.grounded else ensure_disclaimer(result.text)
        cost = estimate_cost(self.llm_client.tier_config(tier), result.input_tokens, result.output_tokens)
        response = AIResponse(
            text=text,
            mode=query.mode,
            confidence=GROUNDED_CONFIDENCE if payload.grounded else UNGROUNDED_CONFIDENCE,
            sources=retrieval.sources,
            follow_up_suggestions=self.registry.follow_ups(query.mode),
            model_tier=tier,
            cached=False,
            estimated_cost=cost,
        )

        if retrieval.degraded:
            logger.warning("response_cache_skipped", reason="retrieval_degraded", retrieval_reason=retrieval.reason)
        else:
            await self.response_cache.put(query.user_id, query.text, response)

        await self._persist_cycle(session, profile, query, response)

        duration = time.perf_counter() - start
        record_orchestration(query.mode.value, tier.value, "degraded" if retrieval.degraded else "success", duration)
        logger.info(
            "orchestration_completed",
            cached=False,
            mode=query.mode.value,
            tier=tier.value,
            complexity_score=score,
            source_count=len(retrieval.sources),
            degraded=retrieval.degraded,
            estimated_cost=cost,
            duration_ms=round(duration * 1000, 2),
        )
        return response

    async def _score(self, text: str, history: Sequence[ConversationTurn]) -> float:
        score = self.complexity.score(text, history)
        record_complexity_score(score)
        return score

    async def _persist_cycle(self, session: Session, profile: UserProfile, query: Query, response: AIResponse) -> None:
        now = self._clock()
        topic_id = query.topic_id or session.current_topic_id
        user_turn = ConversationTurn(role=Role.USER, content=query.text, timestamp=now, mode=query.mode, topic_id=topic_id)
        assistant_turn = ConversationTurn(
            role=Role.ASSISTANT,
            content=response.text,
            timestamp=now,
            mode=query.mode,
            topic_id=topic_id,
        )
        # Mode of the session version the write actually landed on.
        observed: Dict[str, Any] = {}

        def mutate(target: Session) -> None:
            observed["existing"] = target.version > 0
            observed["mode"] = target.mode
            target.mode = query.mode
            target.language = query.language
            if topic_id and topic_id not in target.topic_threads:
                target.topic_threads[topic_id] = TopicThread(
                    topic_id=topic_id,
                    topic_name=topic_id,
                    mode=query.mode,
                    started_at=now,
                    last_updated=now,
                )
            if topic_id:
                target.current_topic_id = topic_id
            self._append_turns(target, [user_turn, assistant_turn], now)

        await self._commit(session, mutate)
        if observed["existing"] and observed["mode"] != query.mode:
            transition = ModeTransition(
                from_mode=observed["mode"],
                to_mode=query.mode,
                timestamp=now,
                reason="mode selected in query",
            )
            await self._record_transition(query.user_id, transition, default=profile)

    # ------------------------------------------------------------------
    # Mode management
    # ------------------------------------------------------------------

    def validate_transition(self, from_mode: Union[Mode, str, None], to_mode: Union[Mode, str]) -> bool:
        source = parse_mode(from_mode, "from_mode") if from_mode is not None else None
        return self.registry.is_valid_transition(source, parse_mode(to_mode, "to_mode"))

    async def switch_mode(
        self,
        user_id: str,
        session_id: Optional[str],
        target: Union[Mode, str],
        reason: str = "user requested",
        display_name: Optional[str] = None,
    ) -> ModeSwitchResult:
        """
        Switch the session's mode and append the audit record.

        A switch to the current mode is still recorded. Requires an existing
        profile; the session is optional (no session means only the profile
        default changes).
        """
        target_mode = parse_mode(target)
        profile = await self.profile_store.get_profile(user_id)
        if profile is None:
            raise NotFoundError(f"User profile {user_id} not found")

        session = await self.session_store.get(session_id) if session_id else None
        if session is not None and session.user_id != user_id:
            session = None
        previous = session.mode if session is not None else profile.current_mode

        if not self.registry.is_valid_transition(previous, target_mode):
            raise ValidationError(
                f"Transition from {previous.value} to {target_mode.value} is not allowed",
                fields=["mode"],
            )

        now = self._clock()
        name = display_name or profile.display_name
        message = self.registry.transition_message(previous, target_mode, name)
        recorded_from = previous

        if session is not None:
            system_turn = ConversationTurn(role=Role.SYSTEM, content=message, timestamp=now, mode=target_mode)
            observed: Dict[str, Mode] = {}

            def mutate(target_session: Session) -> None:
                observed["mode"] = target_session.mode
                target_session.mode = target_mode
                self._append_turns(target_session, [system_turn], now)

            await self._commit(session, mutate)
            recorded_from = observed["mode"]

        transition = ModeTransition(from_mode=recorded_from, to_mode=target_mode, timestamp=now, reason=reason)
        await self._record_transition(user_id, transition)

        return ModeSwitchResult(
            success=True,
            current_mode=target_mode,
            previous_mode=previous,
            transition_message=message,
            personality_config=self.registry.config_for(target_mode, profile.skill_level, profile.explanation_style),
        )

    async def get_current_mode(self, user_id: str, session_id: Optional[str] = None) -> Mode:
        if session_id:
            session = await self.session_store.get(session_id)
            if session is not None and session.user_id == user_id and not self._is_expired(session):
                return session.mode
        profile = await self.profile_store.get_profile(user_id)
        if profile is None:
            raise NotFoundError(f"User profile {user_id} not found")
        return profile.current_mode

    async def _record_transition(
        self,
        user_id: str,
        transition: ModeTransition,
        default: Optional[UserProfile] = None,
    ) -> None:
        await self.profile_store.append_transition(user_id, transition, default=default)
        record_mode_transition(
            transition.from_mode.value if transition.from_mode else None,
            transition.to_mode.value,
        )
        logger.info(
            "mode_transition_recorded",
            from_mode=transition.from_mode.value if transition.from_mode else None,
            to_mode=transition.to_mode.value,
            reason=transition.reason,
        )

    # ------------------------------------------------------------------
    # Topics, understanding, reads
    # ------------------------------------------------------------------

    async def switch_topic(
        self,
        user_id: str,
        session_id: str,
        topic_id: str,
        topic_name: Optional[str] = None,
    ) -> Session:
        if not topic_id or not topic_id.strip():
            raise ValidationError("topic_id is required", fields=["topic_id"])
        session = await self._require_session(user_id, session_id)
        now = self._clock()

        def mutate(target: Session) -> None:
            thread = target.topic_threads.get(topic_id)
            if thread is None:
                target.topic_threads[topic_id] = TopicThread(
                    topic_id=topic_id,
                    topic_name=topic_name or topic_id,
                    mode=target.mode,
                    started_at=now,
                    last_updated=now,
                )
            else:
                thread.last_updated = now
            target.current_topic_id = topic_id
            target.last_updated = now

        saved = await self._commit(session, mutate)
        logger.info("topic_switched", topic_id=topic_id)
        return saved

    async def update_understanding(self, user_id: str, session_id: str, level: float) -> Session:
        if not 0.0 <= level <= 1.0:
            raise ValidationError("understanding level must be between 0 and 1", fields=["level"])
        session = await self._require_session(user_id, session_id)
        now = self._clock()

        def mutate(target: Session) -> None:
            target.understanding_level = level
            thread = target.current_topic
            if thread is not None:
                thread.understanding_level = level
                thread.last_updated = now
            target.last_updated = now

        return await self._commit(session, mutate)

    async def get_context(self, user_id: str, session_id: str) -> Session:
        return await self._require_session(user_id, session_id)

    async def get_history(self, user_id: str, session_id: str, limit: Optional[int] = None) -> List[ConversationTurn]:
        session = await self._require_session(user_id, session_id)
        if limit is None:
            return list(session.history)
        if limit <= 0:
            return []
        return list(session.history[-limit:])

    async def invalidate_user_cache(self, user_id: str) -> int:
        """Called by the ingestion side when a user's materials change."""
        return await self.response_cache.invalidate_user(user_id)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _is_expired(self, session: Session) -> bool:
        window = timedelta(seconds=self.settings.session_inactivity_seconds)
        return self._clock() - session.last_updated > window

    async def _require_session(self, user_id: str, session_id: str) -> Session:
        session = await self.session_store.get(session_id)
        if session is None or session.user_id != user_id or self._is_expired(session):
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def _fresh_session(self, user_id: str, session_id: str, mode: Mode, language: str, version: int = 0) -> Session:
        now = self._clock()
        return Session(
            session_id=session_id,
            user_id=user_id,
            mode=mode,
            language=language,
            created_at=now,
            last_updated=now,
            version=version,
        )

    async def _load_session(self, user_id: str, session_id: str, mode: Mode, language: str) -> Session:
        session = await self.session_store.get(session_id)
        if session is None:
            logger.info("session_created")
            return self._fresh_session(user_id, session_id, mode, language)
        if session.user_id != user_id:
            # Reported exactly like an unknown session.
            logger.warning("session_owner_mismatch")
            raise NotFoundError(f"Session {session_id} not found")
        if self._is_expired(session):
            # Same id, empty state; version carried so the overwrite stays conditional.
            logger.info("session_expired", last_updated=session.last_updated.isoformat())
            return self._fresh_session(user_id, session_id, mode, language, version=session.version)
        return session

    async def _load_profile(self, user_id: str, language: str) -> UserProfile:
        profile = await self.profile_store.get_profile(user_id)
        if profile is None:
            return UserProfile(user_id=user_id, preferred_language=language)
        return profile

    def _append_turns(self, session: Session, turns: Sequence[ConversationTurn], now: datetime) -> None:
        cap = self.settings.session_history_cap
        for turn in turns:
            session.history.append(turn)
            thread = session.topic_threads.get(turn.topic_id) if turn.topic_id else None
            if thread is not None:
                thread.history.append(turn)
                if len(thread.history) > cap:
                    del thread.history[:-cap]
                thread.last_updated = now
        if len(session.history) > cap:
            del session.history[:-cap]
        session.last_updated = now

    async def _commit(self, session: Session, mutate: Mutation) -> Session:
        """
        Apply `mutate` and write conditionally on the session version.

        On conflict: reload, re-apply, retry. After MAX_WRITE_ATTEMPTS the
        write falls back to last-write-wins.
        """
        base = session
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            candidate, expected = self._apply(base, mutate)
            try:
                return await self.session_store.save(candidate, expected_version=expected)
            except ConflictError as exc:
                record_session_write_conflict()
                logger.warning(
                    "session_write_conflict",
                    attempt=attempt,
                    expected_version=exc.expected_version,
                    actual_version=exc.actual_version,
                )
                base = await self._reload(session)

        logger.warning("session_write_forced", attempts=MAX_WRITE_ATTEMPTS)
        candidate, expected = self._apply(base, mutate)
        return await self.session_store.save(candidate, expected_version=expected, force=True)

    def _apply(self, base: Session, mutate: Mutation) -> Tuple[Session, int]:
        candidate = base.model_copy(deep=True)
        mutate(candidate)
        return candidate, base.version

    async def _reload(self, original: Session) -> Session:
        latest = await self.session_store.get(original.session_id)
        if latest is None:
            return self._fresh_session(original.user_id, original.session_id, original.mode, original.language)
        if latest.user_id != original.user_id:
            raise NotFoundError(f"Session {original.session_id} not found")
        if self._is_expired(latest):
            return self._fresh_session(
                original.user_id,
                original.session_id,
                original.mode,
                original.language,
                version=latest.version,
            )
        return latest


_session_manager: Optional[SessionContextManager] = None


def get_session_manager() -> SessionContextManager:
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionContextManager()
    return _session_manager


def reset_session_manager() -> None:
    global _session_manager
    _session_manager = None
