"""
Mode management endpoints.

POST /mode/switch
POST /mode/validate
GET  /mode/current
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from learnassist.core.logging import get_logger, set_session_id, set_user_id
from learnassist.services.session.manager import SessionContextManager, get_session_manager

logger = get_logger(__name__)
router = APIRouter()


class SwitchModeRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="User ID")
    session_id: Optional[str] = Field(None, description="Session to switch; omit to change only the profile default")
    mode: str = Field(..., description="Target mode: tutor, interviewer or mentor")
    reason: str = Field("user requested", description="Audit reason")
    display_name: Optional[str] = Field(None, description="Name used in the transition message")


class ValidateTransitionRequest(BaseModel):
    from_mode: Optional[str] = None
    to_mode: str


@router.post("/switch")
async def switch_mode(body: SwitchModeRequest, manager: SessionContextManager = Depends(get_session_manager)):
    set_user_id(body.user_id)
    set_session_id(body.session_id)
    result = await manager.switch_mode(
        body.user_id,
        body.session_id,
        body.mode,
        reason=body.reason,
        display_name=body.display_name,
    )
    return result.model_dump(mode="json")


@router.post("/validate")
async def validate_transition(
    body: ValidateTransitionRequest,
    manager: SessionContextManager = Depends(get_session_manager),
):
    return {
        "from_mode": body.from_mode,
        "to_mode": body.to_mode,
        "valid": manager.validate_transition(body.from_mode, body.to_mode),
    }


@router.get("/current")
async def current_mode(
    user_id: str = Query(..., min_length=1),
    session_id: Optional[str] = Query(None),
    manager: SessionContextManager = Depends(get_session_manager),
):
    mode = await manager.get_current_mode(user_id, session_id)
    return {"user_id": user_id, "session_id": session_id, "mode": mode.value}
