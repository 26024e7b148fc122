"""
Durable stores for sessions and user profiles.

`SessionStore.save(session, expected_version)` is a conditional write: it
succeeds only if the stored version still equals `expected_version` (0 means
"must not exist yet"), and returns the stored copy with its version bumped.
A mismatch raises ConflictError. `force=True` skips the check
(last-write-wins).

Supabase tables:
- sessions(session_id pk, user_id, version int, data jsonb, last_updated, expires_at)
- profiles(user_id pk, version int not null default 0, data jsonb)

Mode transitions are appended with `append_transition`, never by saving a
whole profile read earlier, so a slow request cannot drop a concurrent
switch from the audit trail.

`expires_at` is the store's passive expiry attribute; the manager enforces
the inactivity window itself on read.
"""
import asyncio
from datetime import timedelta
from typing import Any, Dict, Optional, Protocol

from supabase import Client

from learnassist.core.config import get_settings
from learnassist.core.database import get_supabase_client
from learnassist.core.errors import ConflictError
from learnassist.core.logging import get_logger
from learnassist.models.domain import ModeTransition, Session, UserProfile

logger = get_logger(__name__)

MAX_APPEND_ATTEMPTS = 5


class SessionStore(Protocol):
    async def get(self, session_id: str) -> Optional[Session]:
        ...

    async def save(self, session: Session, expected_version: int, force: bool = False) -> Session:
        ...


class ProfileStore(Protocol):
    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        ...

    async def append_transition(
        self,
        user_id: str,
        transition: ModeTransition,
        default: Optional[UserProfile] = None,
    ) -> UserProfile:
        ...


class InMemorySessionStore:
    """Process-local store. Used in tests and when Supabase is not configured."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    async def get(self, session_id: str) -> Optional[Session]:
        stored = self._sessions.get(session_id)
        return stored.model_copy(deep=True) if stored else None

    async def save(self, session: Session, expected_version: int, force: bool = False) -> Session:
        stored = self._sessions.get(session.session_id)
        actual = stored.version if stored else 0
        if not force and actual != expected_version:
            raise ConflictError(
                f"Session {session.session_id} changed concurrently",
                expected_version=expected_version,
                actual_version=actual,
            )
        saved = session.model_copy(deep=True, update={"version": actual + 1})
        self._sessions[session.session_id] = saved
        return saved.model_copy(deep=True)

    def clear(self) -> None:
        self._sessions.clear()


class InMemoryProfileStore:
    def __init__(self):
        self._profiles: Dict[str, UserProfile] = {}

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        stored = self._profiles.get(user_id)
        return stored.model_copy(deep=True) if stored else None

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        self._profiles[profile.user_id] = profile.model_copy(deep=True)
        return profile

    async def append_transition(
        self,
        user_id: str,
        transition: ModeTransition,
        default: Optional[UserProfile] = None,
    ) -> UserProfile:
        """No await between read and write: concurrent appends never overwrite each other."""
        stored = self._profiles.get(user_id)
        if stored is None:
            stored = (default or UserProfile(user_id=user_id)).model_copy(deep=True)
            self._profiles[user_id] = stored
        stored.mode_history.append(transition)
        stored.current_mode = transition.to_mode
        return stored.model_copy(deep=True)

    def clear(self) -> None:
        self._profiles.clear()


class SupabaseSessionStore:
    def __init__(
        self,
        client: Optional[Client] = None,
        table: str = "sessions",
        inactivity_seconds: Optional[int] = None,
    ):
        self._client = client
        self.table = table
        self.inactivity_seconds = inactivity_seconds or get_settings().session_inactivity_seconds

    @property
    def client(self) -> Client:
        client = self._client if self._client is not None else get_supabase_client()
        if client is None:
            raise RuntimeError("Supabase client not configured")
        return client

    def _row(self, session: Session, version: int) -> Dict[str, Any]:
        return {
            "session_id": session.session_id,
            "user_id": session.user_id,
            "version": version,
            "data": session.model_dump(mode="json", exclude={"version"}),
            "last_updated": session.last_updated.isoformat(),
            "expires_at": (session.last_updated + timedelta(seconds=self.inactivity_seconds)).isoformat(),
        }

    def _fetch(self, session_id: str) -> Optional[Dict[str, Any]]:
        result = (
            self.client.table(self.table)
            .select("version, data")
            .eq("session_id", session_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    @staticmethod
    def _to_session(row: Dict[str, Any]) -> Session:
        return Session.model_validate({**row["data"], "version": row["version"]})

    def _save_sync(self, session: Session, expected_version: int, force: bool) -> Session:
        table = self.client.table(self.table)

        if force:
            current = self._fetch(session.session_id)
            version = (current["version"] if current else 0) + 1
            table.upsert(self._row(session, version)).execute()
            return session.model_copy(update={"version": version})

        version = expected_version + 1
        if expected_version == 0:
            try:
                table.insert(self._row(session, version)).execute()
            except Exception:
                current = self._fetch(session.session_id)
                if current is None:
                    raise
                raise ConflictError(
                    f"Session {session.session_id} created concurrently",
                    expected_version=0,
                    actual_version=current["version"],
                )
            return session.model_copy(update={"version": version})

        result = (
            table.update(self._row(session, version))
            .eq("session_id", session.session_id)
            .eq("version", expected_version)
            .execute()
        )
        if not result.data:
            current = self._fetch(session.session_id)
            raise ConflictError(
                f"Session {session.session_id} changed concurrently",
                expected_version=expected_version,
                actual_version=current["version"] if current else 0,
            )
        return session.model_copy(update={"version": version})

    async def get(self, session_id: str) -> Optional[Session]:
        row = await asyncio.to_thread(self._fetch, session_id)
        return self._to_session(row) if row else None

    async def save(self, session: Session, expected_version: int, force: bool = False) -> Session:
        return await asyncio.to_thread(self._save_sync, session, expected_version, force)


class SupabaseProfileStore:
    def __init__(self, client: Optional[Client] = None, table: str = "profiles"):
        self._client = client
        self.table = table

    @property
    def client(self) -> Client:
        client = self._client if self._client is not None else get_supabase_client()
        if client is None:
            raise RuntimeError("Supabase client not configured")
        return client

    def _fetch(self, user_id: str) -> Optional[Dict[str, Any]]:
        result = (
            self.client.table(self.table)
            .select("version, data")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def _get_sync(self, user_id: str) -> Optional[UserProfile]:
        row = self._fetch(user_id)
        if row is None:
            return None
        return UserProfile.model_validate(row["data"])

    def _save_sync(self, profile: UserProfile) -> UserProfile:
        current = self._fetch(profile.user_id)
        self.client.table(self.table).upsert({
            "user_id": profile.user_id,
            "version": (current.get("version") or 0) + 1 if current else 1,
            "data": profile.model_dump(mode="json"),
        }).execute()
        return profile

    def _append_sync(
        self,
        user_id: str,
        transition: ModeTransition,
        default: Optional[UserProfile],
    ) -> UserProfile:
        table = self.client.table(self.table)
        version = 0
        for attempt in range(1, MAX_APPEND_ATTEMPTS + 1):
            row = self._fetch(user_id)
            if row is None:
                profile = (default or UserProfile(user_id=user_id)).model_copy(deep=True)
            else:
                profile = UserProfile.model_validate(row["data"])
            profile.mode_history.append(transition)
            profile.current_mode = transition.to_mode
            data = profile.model_dump(mode="json")

            if row is None:
                try:
                    table.insert({"user_id": user_id, "version": 1, "data": data}).execute()
                    return profile
                except Exception:
                    if self._fetch(user_id) is None:
                        raise
            else:
                version = row.get("version") or 0
                result = (
                    table.update({"version": version + 1, "data": data})
                    .eq("user_id", user_id)
                    .eq("version", version)
                    .execute()
                )
                if result.data:
                    return profile

            logger.warning("profile_append_conflict", user_id=user_id, attempt=attempt)

        raise ConflictError(
            f"Profile {user_id} changed concurrently",
            expected_version=version,
        )

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return await asyncio.to_thread(self._get_sync, user_id)

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        return await asyncio.to_thread(self._save_sync, profile)

    async def append_transition(
        self,
        user_id: str,
        transition: ModeTransition,
        default: Optional[UserProfile] = None,
    ) -> UserProfile:
        return await asyncio.to_thread(self._append_sync, user_id, transition, default)


def build_stores(client: Optional[Client] = None):
    """Supabase-backed stores when configured, in-memory otherwise."""
    client = client if client is not None else get_supabase_client()
    if client is None:
        logger.warning(
            "session_store_in_memory",
            message="Supabase not configured; sessions and profiles are process-local",
        )
        return InMemorySessionStore(), InMemoryProfileStore()
    return SupabaseSessionStore(client), SupabaseProfileStore(client)
