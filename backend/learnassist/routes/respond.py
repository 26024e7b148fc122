"""
Orchestration endpoint.

POST /respond
Body: {userId, sessionId, query, mode, language, conversationHistory?}
(snake_case keys are accepted too). Returns the AIResponse as a flat object.
"""
import json

from fastapi import APIRouter, Depends, Request

from learnassist.core.errors import ValidationError
from learnassist.core.logging import get_logger
from learnassist.services.session.manager import SessionContextManager, get_session_manager

logger = get_logger(__name__)
router = APIRouter()


@router.post("")
async def respond(request: Request, manager: SessionContextManager = Depends(get_session_manager)):
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON")

    query = manager.parse_request(payload)
    logger.info(
        "respond_request_received",
        mode=query.mode.value,
        language=query.language,
        query_length=len(query.text),
    )
    response = await manager.handle(query)
    return response.model_dump(mode="json")
