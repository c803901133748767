"""
contract.py
-----------
Purpose:
    The request/response contract the session and messaging components
    consume. Any backend meeting this shape can be substituted; the
    production implementation is `SupabaseBackend`.

Notes:
    - Every method raises `RemoteServiceError` on failure.
    - `subscribe_auth_events` delivers the current state as its first event.
    - Subscriptions must be closed by the caller (they are async context managers).
"""

from typing import Any, Protocol

from rentals.backend.events import Subscription
from rentals.models.domain.events import AuthEvent, MessageInserted
from rentals.models.domain.messaging_domain import ConversationRecord, Message
from rentals.models.domain.user_domain import Profile, SignupMetadata


class MarketplaceBackend(Protocol):
    # Auth
    def subscribe_auth_events(self) -> Subscription[AuthEvent]: ...

    async def sign_in_with_password(self, email: str, password: str) -> None: ...

    async def sign_up(self, email: str, password: str, metadata: SignupMetadata) -> None: ...

    async def sign_out(self) -> None: ...

    # Profiles
    async def get_profile(self, user_id: str) -> Profile | None: ...

    async def update_profile(self, user_id: str, fields: dict[str, Any]) -> Profile: ...

    async def list_profiles(self) -> list[Profile]: ...

    async def delete_profile(self, user_id: str) -> None: ...

    # Conversations and messages
    async def find_conversation(self, user_a: str, user_b: str) -> ConversationRecord | None: ...

    async def create_conversation(self, user_a: str, user_b: str) -> ConversationRecord: ...

    async def list_conversations(self, user_id: str) -> list[ConversationRecord]: ...

    async def list_messages(self, conversation_id: int) -> list[Message]: ...

    async def insert_message(self, conversation_id: int, sender_id: str, content: str) -> None: ...

    # Real-time
    def subscribe_message_inserts(self) -> Subscription[MessageInserted]: ...

    # Privileged functions
    async def invoke_delete_user(self, user_id: str) -> None: ...
