"""Conversation history API.

Reads degrade to an empty history when the datastore fails; an explicit
clear surfaces the failure.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from migration_expert.api.body import read_body
from migration_expert.core.auth import require_identity
from migration_expert.core.dependencies import Services, get_services
from migration_expert.core.errors import PersistenceError
from migration_expert.core.logging import log_event
from migration_expert.features.history.store import MAX_PAGE_SIZE
from migration_expert.features.identity.provider import Identity
from migration_expert.features.plans.service import validate_conversation_id

router = APIRouter(prefix="/api/chat", tags=["chat"])


class ConversationRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    limit: int = Field(default=MAX_PAGE_SIZE, ge=1)

    @field_validator("conversation_id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


async def _history(identity: Identity, services: Services, conversation_id: Optional[str], limit: int) -> dict:
    conversation = validate_conversation_id(conversation_id)
    try:
        messages = await services.history.list(identity.id, conversation, limit)
    except PersistenceError:
        log_event(
            "warning",
            "history.list_failed",
            user_id=identity.id,
            conversation_id=conversation,
            error_code=PersistenceError.code,
            exc_info=True,
        )
        return {"history": []}
    return {"history": [m.public_dict() for m in messages]}


@router.get("/history")
async def history_get(
    conversation_id: Optional[str] = Query(default=None, alias="conversationId"),
    limit: int = Query(default=MAX_PAGE_SIZE, ge=1),
    identity: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
):
    return await _history(identity, services, conversation_id, limit)


@router.post("/history")
async def history_post(
    request: Request,
    identity: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
):
    body = await read_body(request, ConversationRef)
    return await _history(identity, services, body.conversation_id, body.limit)


@router.post("/clear")
async def clear_endpoint(
    request: Request,
    identity: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
):
    body = await read_body(request, ConversationRef)
    conversation = validate_conversation_id(body.conversation_id)
    removed = await services.history.clear(identity.id, conversation)
    log_event("info", "history.cleared", user_id=identity.id, conversation_id=conversation, extra={"removed": removed})
    return {"success": True}
