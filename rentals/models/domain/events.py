"""
Typed events pushed by the backend's auth-state stream and real-time feed.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict

from rentals.models.domain.messaging_domain import Message


class SignedIn(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["signed_in"] = "signed_in"
    user_id: str
    email: str | None = None


class SignedOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["signed_out"] = "signed_out"


AuthEvent = SignedIn | SignedOut


class MessageInserted(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["message_inserted"] = "message_inserted"
    message: Message


RealtimeEvent = MessageInserted
