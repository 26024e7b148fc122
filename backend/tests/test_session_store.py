"""
Unit tests for session and profile stores.
"""
from unittest.mock import MagicMock

import pytest

from learnassist.core.errors import ConflictError
from learnassist.models.domain import Mode, ModeTransition, Session, UserProfile
from learnassist.services.session.store import (
    InMemoryProfileStore,
    InMemorySessionStore,
    SupabaseProfileStore,
    SupabaseSessionStore,
    build_stores,
)


def make_session(**kwargs) -> Session:
    return Session(session_id="session-1", user_id="student-1", **kwargs)


@pytest.mark.asyncio
async def test_in_memory_create_then_conditional_update():
    store = InMemorySessionStore()

    created = await store.save(make_session(), expected_version=0)
    assert created.version == 1

    created.mode = Mode.MENTOR
    updated = await store.save(created, expected_version=1)
    assert updated.version == 2
    assert (await store.get("session-1")).mode == Mode.MENTOR


@pytest.mark.asyncio
async def test_in_memory_stale_write_conflicts():
    store = InMemorySessionStore()
    await store.save(make_session(), expected_version=0)

    with pytest.raises(ConflictError) as exc_info:
        await store.save(make_session(), expected_version=0)

    assert exc_info.value.expected_version == 0
    assert exc_info.value.actual_version == 1


@pytest.mark.asyncio
async def test_in_memory_forced_write_wins():
    store = InMemorySessionStore()
    await store.save(make_session(), expected_version=0)

    saved = await store.save(make_session(language="hi"), expected_version=0, force=True)

    assert saved.version == 2
    assert (await store.get("session-1")).language == "hi"


@pytest.mark.asyncio
async def test_in_memory_returns_copies():
    store = InMemorySessionStore()
    await store.save(make_session(), expected_version=0)

    loaded = await store.get("session-1")
    loaded.language = "fr"

    assert (await store.get("session-1")).language == "en"


@pytest.mark.asyncio
async def test_in_memory_profile_round_trip():
    store = InMemoryProfileStore()
    profile = UserProfile(user_id="student-1")
    profile.mode_history.append(ModeTransition(to_mode=Mode.TUTOR, reason="first visit"))

    await store.save_profile(profile)

    loaded = await store.get_profile("student-1")
    assert loaded.mode_history[0].reason == "first visit"
    assert await store.get_profile("unknown") is None


@pytest.mark.asyncio
async def test_supabase_update_is_conditional_on_version():
    client = MagicMock()
    table = client.table.return_value
    table.update.return_value.eq.return_value.eq.return_value.execute.return_value = MagicMock(data=[{"version": 4}])
    store = SupabaseSessionStore(client=client, inactivity_seconds=60)

    saved = await store.save(make_session(version=3), expected_version=3)

    assert saved.version == 4
    row = table.update.call_args.args[0]
    assert row["version"] == 4
    assert row["user_id"] == "student-1"
    assert "version" not in row["data"]
    assert row["expires_at"] > row["last_updated"]
    table.update.return_value.eq.return_value.eq.assert_called_with("version", 3)


@pytest.mark.asyncio
async def test_supabase_lost_update_raises_conflict():
    client = MagicMock()
    table = client.table.return_value
    table.update.return_value.eq.return_value.eq.return_value.execute.return_value = MagicMock(data=[])
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(
        data=[{"version": 5, "data": make_session().model_dump(mode="json", exclude={"version"})}]
    )
    store = SupabaseSessionStore(client=client)

    with pytest.raises(ConflictError) as exc_info:
        await store.save(make_session(version=3), expected_version=3)

    assert exc_info.value.actual_version == 5


@pytest.mark.asyncio
async def test_supabase_get_restores_version():
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(
        data=[{"version": 7, "data": make_session(mode=Mode.INTERVIEWER).model_dump(mode="json", exclude={"version"})}]
    )
    store = SupabaseSessionStore(client=client)

    session = await store.get("session-1")

    assert session.version == 7
    assert session.mode == Mode.INTERVIEWER
    client.table.assert_called_with("sessions")


@pytest.mark.asyncio
async def test_supabase_profile_store_upserts_json():
    client = MagicMock()
    client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(data=[])
    store = SupabaseProfileStore(client=client)

    await store.save_profile(UserProfile(user_id="student-1", display_name="Asha"))

    client.table.assert_called_with("profiles")
    row = client.table.return_value.upsert.call_args.args[0]
    assert row["user_id"] == "student-1"
    assert row["version"] == 1
    assert row["data"]["display_name"] == "Asha"


@pytest.mark.asyncio
async def test_in_memory_append_transition_keeps_concurrent_records():
    store = InMemoryProfileStore()
    await store.save_profile(UserProfile(user_id="student-1"))
    stale = await store.get_profile("student-1")

    await store.append_transition("student-1", ModeTransition(from_mode=Mode.TUTOR, to_mode=Mode.INTERVIEWER, reason="user requested"))
    await store.append_transition("student-1", ModeTransition(from_mode=Mode.INTERVIEWER, to_mode=Mode.MENTOR, reason="mode selected in query"))

    loaded = await store.get_profile("student-1")
    assert [t.reason for t in loaded.mode_history] == ["user requested", "mode selected in query"]
    assert loaded.current_mode == Mode.MENTOR
    assert stale.mode_history == []


@pytest.mark.asyncio
async def test_in_memory_append_transition_creates_profile_from_default():
    store = InMemoryProfileStore()

    profile = await store.append_transition(
        "student-1",
        ModeTransition(from_mode=Mode.TUTOR, to_mode=Mode.MENTOR, reason="mode selected in query"),
        default=UserProfile(user_id="student-1", preferred_language="hi"),
    )

    assert profile.preferred_language == "hi"
    assert profile.current_mode == Mode.MENTOR
    assert len((await store.get_profile("student-1")).mode_history) == 1


@pytest.mark.asyncio
async def test_supabase_append_transition_is_conditional_on_version():
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(
        data=[{"version": 2, "data": UserProfile(user_id="student-1").model_dump(mode="json")}]
    )
    table.update.return_value.eq.return_value.eq.return_value.execute.return_value = MagicMock(data=[{"version": 3}])
    store = SupabaseProfileStore(client=client)

    profile = await store.append_transition("student-1", ModeTransition(to_mode=Mode.MENTOR, reason="user requested"))

    assert profile.current_mode == Mode.MENTOR
    row = table.update.call_args.args[0]
    assert row["version"] == 3
    assert row["data"]["mode_history"][0]["reason"] == "user requested"
    table.update.return_value.eq.return_value.eq.assert_called_with("version", 2)


@pytest.mark.asyncio
async def test_supabase_append_transition_retries_lost_update():
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(
        data=[{"version": 2, "data": UserProfile(user_id="student-1").model_dump(mode="json")}]
    )
    table.update.return_value.eq.return_value.eq.return_value.execute.side_effect = [
        MagicMock(data=[]),
        MagicMock(data=[{"version": 3}]),
    ]
    store = SupabaseProfileStore(client=client)

    await store.append_transition("student-1", ModeTransition(to_mode=Mode.MENTOR, reason="user requested"))

    assert table.update.call_count == 2


@pytest.mark.asyncio
async def test_supabase_append_transition_gives_up_after_repeated_conflicts():
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(
        data=[{"version": 2, "data": UserProfile(user_id="student-1").model_dump(mode="json")}]
    )
    table.update.return_value.eq.return_value.eq.return_value.execute.return_value = MagicMock(data=[])
    store = SupabaseProfileStore(client=client)

    with pytest.raises(ConflictError):
        await store.append_transition("student-1", ModeTransition(to_mode=Mode.MENTOR, reason="user requested"))


@pytest.mark.asyncio
async def test_supabase_append_transition_inserts_missing_profile():
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(data=[])
    store = SupabaseProfileStore(client=client)

    await store.append_transition("student-1", ModeTransition(to_mode=Mode.TUTOR, reason="mode selected in query"))

    row = table.insert.call_args.args[0]
    assert row["user_id"] == "student-1"
    assert row["version"] == 1
    assert len(row["data"]["mode_history"]) == 1


def test_build_stores_falls_back_to_memory(monkeypatch):
    monkeypatch.setattr("learnassist.services.session.store.get_supabase_client", lambda: None)

    sessions, profiles = build_stores()

    assert isinstance(sessions, InMemorySessionStore)
    assert isinstance(profiles, InMemoryProfileStore)
