from datetime import datetime

from pydantic import BaseModel, ConfigDict

UNKNOWN_PARTICIPANT_NAME = "Unknown User"


class Message(BaseModel):
    """Immutable text event in a conversation (`messages` table)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    conversation_id: int
    sender_id: str
    content: str
    created_at: datetime

    def sort_key(self) -> tuple[datetime, int]:
        return (self.created_at, self.id)


class ConversationRecord(BaseModel):
    """
    Conversation row as returned by the backend.

    Participant names and the latest message come from joins and are
    None when the related rows are missing or not visible.
    """

    model_config = ConfigDict(extra="ignore")

    id: int
    participant_one_id: str
    participant_two_id: str
    created_at: datetime
    participant_one_name: str | None = None
    participant_two_name: str | None = None
    last_message_content: str | None = None
    last_message_time: datetime | None = None

    def involves(self, user_id: str) -> bool:
        return user_id in (self.participant_one_id, self.participant_two_id)


class Conversation(BaseModel):
    """Conversation as seen by one participant."""

    model_config = ConfigDict(frozen=True)

    id: int
    participant_one_id: str
    participant_two_id: str
    created_at: datetime
    other_participant_id: str
    other_participant_name: str = UNKNOWN_PARTICIPANT_NAME
    last_message_content: str | None = None
    last_message_time: datetime | None = None

    @classmethod
    def for_viewer(cls, record: ConversationRecord, viewer_id: str) -> "Conversation":
        if record.participant_one_id == viewer_id:
            other_id, other_name = record.participant_two_id, record.participant_two_name
        else:
            other_id, other_name = record.participant_one_id, record.participant_one_name

        return cls(
            id=record.id,
            participant_one_id=record.participant_one_id,
            participant_two_id=record.participant_two_id,
            created_at=record.created_at,
            other_participant_id=other_id,
            other_participant_name=other_name or UNKNOWN_PARTICIPANT_NAME,
            last_message_content=record.last_message_content,
            last_message_time=record.last_message_time,
        )

    def last_activity(self) -> datetime:
        return self.last_message_time or self.created_at
