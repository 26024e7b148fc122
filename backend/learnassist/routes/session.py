"""
Session endpoints: topic threads, understanding level, context and history reads.

Every call names the owning user; a session belonging to someone else reads
as not found.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from learnassist.core.logging import set_session_id, set_user_id
from learnassist.services.session.manager import SessionContextManager, get_session_manager

router = APIRouter()


class SwitchTopicRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    topic_id: str = Field(..., min_length=1)
    topic_name: Optional[str] = None


class UnderstandingRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    level: float


@router.post("/topic")
async def switch_topic(body: SwitchTopicRequest, manager: SessionContextManager = Depends(get_session_manager)):
    set_user_id(body.user_id)
    set_session_id(body.session_id)
    session = await manager.switch_topic(body.user_id, body.session_id, body.topic_id, body.topic_name)
    return {
        "session_id": session.session_id,
        "current_topic_id": session.current_topic_id,
        "topic": session.current_topic.model_dump(mode="json") if session.current_topic else None,
    }


@router.post("/understanding")
async def update_understanding(body: UnderstandingRequest, manager: SessionContextManager = Depends(get_session_manager)):
    set_user_id(body.user_id)
    set_session_id(body.session_id)
    session = await manager.update_understanding(body.user_id, body.session_id, body.level)
    return {
        "session_id": session.session_id,
        "understanding_level": session.understanding_level,
        "current_topic_id": session.current_topic_id,
    }


@router.get("/{session_id}/context")
async def get_context(
    session_id: str,
    user_id: str = Query(..., min_length=1),
    manager: SessionContextManager = Depends(get_session_manager),
):
    set_user_id(user_id)
    set_session_id(session_id)
    session = await manager.get_context(user_id, session_id)
    return session.model_dump(mode="json")


@router.get("/{session_id}/history")
async def get_history(
    session_id: str,
    user_id: str = Query(..., min_length=1),
    limit: Optional[int] = Query(None, ge=1),
    manager: SessionContextManager = Depends(get_session_manager),
):
    set_user_id(user_id)
    set_session_id(session_id)
    turns = await manager.get_history(user_id, session_id, limit)
    return {
        "session_id": session_id,
        "count": len(turns),
        "history": [turn.model_dump(mode="json") for turn in turns],
    }
