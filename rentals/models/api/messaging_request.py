from pydantic import BaseModel, Field


class StartConversationRequest(BaseModel):
    """Contact another user, typically a landlord from a listing."""

    recipient_id: str = Field(..., min_length=1)
    message: str | None = Field(None, description="Optional first message")


class SendMessageRequest(BaseModel):
    content: str = Field(..., max_length=4000)
    conversation_id: int | None = Field(
        None, description="Target conversation; defaults to the selected one"
    )
