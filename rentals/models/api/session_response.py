from datetime import datetime

from pydantic import BaseModel, Field

from rentals.models.domain.messaging_domain import Conversation, Message
from rentals.models.domain.user_domain import Identity, Language


class SessionResponse(BaseModel):
    """API response format for the /me endpoint."""

    status: str = Field(..., description="initializing, anonymous or authenticated")
    is_authenticated: bool
    language: Language
    identity: Identity | None = None


class ConversationsResponse(BaseModel):
    conversations: list[Conversation]
    selected_conversation_id: int | None = None
    loading: bool = False


class MessagesResponse(BaseModel):
    conversation: Conversation | None
    messages: list[Message]
    loading: bool = False


class MessageSentResponse(BaseModel):
    conversation_id: int
    sent_at: datetime
