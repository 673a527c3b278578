"""Chat history message models."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

Role = Literal["user", "assistant"]


class NewChatMessage(BaseModel):
    """What the caller supplies to HistoryStore.append.

    Carries no user id: the scope comes from the verified identity.
    """
    model_config = ConfigDict(frozen=True)

    role: Role
    message: str
    country: Optional[str] = None
    is_plan: bool = False


class ChatMessage(BaseModel):
    """A stored message. Immutable once written."""
    model_config = ConfigDict(frozen=True)

    id: int
    conversation_id: str
    user_id: str
    role: Role
    message: str
    country: Optional[str] = None
    is_plan: bool = False
    created_at: datetime

    def public_dict(self) -> dict:
        return self.model_dump(mode="json", include={"id", "role", "message", "country", "is_plan", "created_at"})
