"""
SupabaseBackend: the production `MarketplaceBackend`.

Usage:
    backend = SupabaseBackend.from_settings()
    ...
    await backend.close()
"""

from typing import Any

import httpx

from rentals.backend.events import Subscription
from rentals.backend.supabase.auth import SupabaseAuthClient
from rentals.backend.supabase.http import create_http_client
from rentals.backend.supabase.realtime import PostgresMessageFeed
from rentals.backend.supabase.rest import SupabaseRestClient
from rentals.config import settings
from rentals.infrastructure.observability.logging import get_logger
from rentals.models.domain.events import AuthEvent, MessageInserted
from rentals.models.domain.messaging_domain import ConversationRecord, Message
from rentals.models.domain.user_domain import Profile, SignupMetadata

logger = get_logger(__name__)


class SupabaseBackend:
    def __init__(
        self,
        http: httpx.AsyncClient,
        auth: SupabaseAuthClient,
        rest: SupabaseRestClient,
        feed: PostgresMessageFeed,
    ):
        self._http = http
        self.auth = auth
        self.rest = rest
        self.feed = feed

    @classmethod
    def from_settings(cls, transport: httpx.AsyncBaseTransport | None = None) -> "SupabaseBackend":
        http = create_http_client(transport)
        auth = SupabaseAuthClient(http)
        rest = SupabaseRestClient(http, auth.get_access_token)
        feed = PostgresMessageFeed()
        logger.info(
            "Supabase backend configured",
            project_ref=settings.project_ref(),
            realtime=settings.realtime_enabled(),
            verify_tokens=settings.VERIFY_ACCESS_TOKENS,
        )
        return cls(http, auth, rest, feed)

    async def close(self) -> None:
        self.auth.close()
        await self.feed.close()
        await self._http.aclose()

    # Auth
    def subscribe_auth_events(self) -> Subscription[AuthEvent]:
        return self.auth.subscribe()

    async def sign_in_with_password(self, email: str, password: str) -> None:
        await self.auth.sign_in_with_password(email, password)

    async def sign_up(self, email: str, password: str, metadata: SignupMetadata) -> None:
        await self.auth.sign_up(email, password, metadata)

    async def sign_out(self) -> None:
        await self.auth.sign_out()

    # Profiles
    async def get_profile(self, user_id: str) -> Profile | None:
        return await self.rest.get_profile(user_id)

    async def update_profile(self, user_id: str, fields: dict[str, Any]) -> Profile:
        return await self.rest.update_profile(user_id, fields)

    async def list_profiles(self) -> list[Profile]:
        return await self.rest.list_profiles()

    async def delete_profile(self, user_id: str) -> None:
        await self.rest.delete_profile(user_id)

    # Conversations and messages
    async def find_conversation(self, user_a: str, user_b: str) -> ConversationRecord | None:
        return await self.rest.find_conversation(user_a, user_b)

    async def create_conversation(self, user_a: str, user_b: str) -> ConversationRecord:
        return await self.rest.create_conversation(user_a, user_b)

    async def list_conversations(self, user_id: str) -> list[ConversationRecord]:
        return await self.rest.list_conversations(user_id)

    async def list_messages(self, conversation_id: int) -> list[Message]:
        return await self.rest.list_messages(conversation_id)

    async def insert_message(self, conversation_id: int, sender_id: str, content: str) -> None:
        await self.rest.insert_message(conversation_id, sender_id, content)

    # Real-time
    def subscribe_message_inserts(self) -> Subscription[MessageInserted]:
        return self.feed.subscribe()

    # Privileged functions
    async def invoke_delete_user(self, user_id: str) -> None:
        await self.rest.invoke_function(settings.ADMIN_DELETE_FUNCTION, {"user_id": user_id})
