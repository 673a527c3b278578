"""Plan generation API.

Rate limiting happens in middleware before this router is reached; the
handler only sees requests that are within budget and authenticated.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from migration_expert.api.body import read_body
from migration_expert.core.auth import require_identity
from migration_expert.core.dependencies import Services, get_services
from migration_expert.features.identity.provider import Identity
from migration_expert.features.plans.service import generate_plan

router = APIRouter(prefix="/api", tags=["plans"])


def _as_text(value):
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    return value


class QAItem(BaseModel):
    question: str = ""
    answer: str = ""

    @field_validator("question", "answer", mode="before")
    @classmethod
    def coerce_text(cls, value):
        return "" if value is None else _as_text(value)


class GeneratePlanRequest(BaseModel):
    # Unknown keys (e.g. a client-supplied userId) are dropped
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    country: Optional[str] = None
    qa_list: Optional[List[QAItem]] = Field(default=None, alias="qaList")

    @field_validator("conversation_id", "country", mode="before")
    @classmethod
    def coerce_scalars(cls, value):
        return _as_text(value)


@router.post("/generate-plan")
async def generate_plan_endpoint(
    request: Request,
    identity: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
):
    body = await read_body(request, GeneratePlanRequest)
    plan = await generate_plan(
        identity=identity,
        conversation_id=body.conversation_id,
        country=body.country,
        qa_list=body.qa_list,
        generator=services.generator,
        recorder=services.recorder,
    )
    return {"plan": plan}
