"""Plan generation pipeline: validate → build prompt → generate → record.

The user id always comes from the verified identity; nothing in the request
body can change the scope a plan is recorded under.
"""

from typing import List, Optional, Sequence

from migration_expert.core.errors import InvalidRequestError
from migration_expert.core.logging import log_event
from migration_expert.features.history.models import NewChatMessage
from migration_expert.features.history.recorder import PlanRecorder
from migration_expert.features.identity.provider import Identity
from migration_expert.features.plans.generator import PlanGenerator
from migration_expert.features.plans.prompts import MAX_COUNTRY_CHARS, build_plan_prompt

MAX_CONVERSATION_ID_CHARS = 200


def validate_conversation_id(conversation_id: Optional[str]) -> str:
    if not conversation_id or not str(conversation_id).strip():
        raise InvalidRequestError("conversationId is required")
    value = str(conversation_id).strip()
    if len(value) > MAX_CONVERSATION_ID_CHARS:
        raise InvalidRequestError("conversationId is too long")
    return value


def validate_plan_request(conversation_id: Optional[str], country: Optional[str], qa_list: Optional[Sequence]) -> tuple[str, str, List]:
    """Check required fields before any external call is made."""
    conversation = validate_conversation_id(conversation_id)
    if not country or not country.strip():
        raise InvalidRequestError("country is required")
    if not qa_list:
        raise InvalidRequestError("qaList must contain at least one answer")
    return conversation, country.strip(), list(qa_list)


async def generate_plan(
    *,
    identity: Identity,
    conversation_id: Optional[str],
    country: Optional[str],
    qa_list: Optional[Sequence],
    generator: PlanGenerator,
    recorder: PlanRecorder,
) -> str:
    """Generate a plan and schedule its history record.

    Returns the plan text as soon as generation succeeds. The history write
    is handed to the recorder; its failure is logged, never raised here.

    Raises:
        InvalidRequestError: missing conversationId, country or qaList
        GenerationFailedError: the generative-text service failed
    """
    conversation, destination, answers = validate_plan_request(conversation_id, country, qa_list)

    prompt = build_plan_prompt(destination, answers)
    log_event(
        "info",
        "plan.generate",
        user_id=identity.id,
        conversation_id=conversation,
        event_type="plan_requested",
        extra={"country": destination, "answers": len(answers), "prompt_chars": len(prompt)},
    )

    plan = await generator.generate(prompt)

    await recorder.record(
        identity.id,
        conversation,
        NewChatMessage(role="assistant", message=plan, country=destination[:MAX_COUNTRY_CHARS], is_plan=True),
    )
    return plan
