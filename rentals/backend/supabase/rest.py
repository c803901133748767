"""
PostgREST and Edge Function access for profiles, conversations and messages.

Requests carry the signed-in user's access token, so the project's
row-level security policies decide what each user can read and write.
Expected schema (public):

    profiles(id uuid pk -> auth.users, role text, saved_properties int[],
             preferred_language text, contact_name text, contact_phone text,
             email text null)
    conversations(id bigint pk, participant_one_id uuid -> profiles,
                  participant_two_id uuid -> profiles, created_at timestamptz)
    messages(id bigint pk, conversation_id bigint -> conversations,
             sender_id uuid, content text, created_at timestamptz)
"""

from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from rentals.backend.supabase.http import send
from rentals.config import settings
from rentals.core.errors import RemoteServiceError
from rentals.infrastructure.observability.logging import get_logger
from rentals.models.domain.messaging_domain import ConversationRecord, Message
from rentals.models.domain.user_domain import Profile

logger = get_logger(__name__)

TokenProvider = Callable[[], Awaitable[str | None]]

CONVERSATION_SELECT = (
    "*,"
    "participant_one:profiles!participant_one_id(contact_name),"
    "participant_two:profiles!participant_two_id(contact_name),"
    "messages(content,created_at)"
)


def _pair_filter(user_a: str, user_b: str) -> str:
    return (
        f"(and(participant_one_id.eq.{user_a},participant_two_id.eq.{user_b}),"
        f"and(participant_one_id.eq.{user_b},participant_two_id.eq.{user_a}))"
    )


def _conversation_from_row(row: dict[str, Any]) -> ConversationRecord:
    participant_one = row.get("participant_one") or {}
    participant_two = row.get("participant_two") or {}
    latest = (row.get("messages") or [None])[0] or {}

    return ConversationRecord(
        id=row["id"],
        participant_one_id=row["participant_one_id"],
        participant_two_id=row["participant_two_id"],
        created_at=row["created_at"],
        participant_one_name=participant_one.get("contact_name"),
        participant_two_name=participant_two.get("contact_name"),
        last_message_content=latest.get("content"),
        last_message_time=latest.get("created_at"),
    )


class SupabaseRestClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        token_provider: TokenProvider,
        *,
        rest_url: str | None = None,
        functions_url: str | None = None,
    ):
        self._http = http
        self._token_provider = token_provider
        self._rest_url = rest_url or settings.rest_url()
        self._functions_url = functions_url or settings.functions_url()

    async def _headers(self, prefer: str | None = None) -> dict[str, str]:
        token = await self._token_provider() or settings.SUPABASE_ANON_KEY
        headers = {"Authorization": f"Bearer {token}"}
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        operation: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        response = await send(
            self._http,
            method,
            f"{self._rest_url}/{table}",
            operation,
            params=params,
            json=json,
            headers=await self._headers(prefer),
        )
        if not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> Profile | None:
        rows = await self._request(
            "GET", "profiles", "get_profile", params={"select": "*", "id": f"eq.{user_id}"}
        )
        return Profile.model_validate(rows[0]) if rows else None

    async def update_profile(self, user_id: str, fields: dict[str, Any]) -> Profile:
        rows = await self._request(
            "PATCH",
            "profiles",
            "update_profile",
            params={"id": f"eq.{user_id}", "select": "*"},
            json=fields,
            prefer="return=representation",
        )
        if not rows:
            # RLS hides rows the caller may not write instead of failing
            raise RemoteServiceError("Profile not found", code="PGRST116", status=406)
        return Profile.model_validate(rows[0])

    async def list_profiles(self) -> list[Profile]:
        rows = await self._request("GET", "profiles", "list_profiles", params={"select": "*"})
        return [Profile.model_validate(row) for row in rows or []]

    async def delete_profile(self, user_id: str) -> None:
        await self._request(
            "DELETE", "profiles", "delete_profile", params={"id": f"eq.{user_id}"}
        )

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def find_conversation(self, user_a: str, user_b: str) -> ConversationRecord | None:
        rows = await self._request(
            "GET",
            "conversations",
            "find_conversation",
            params={
                "select": "*",
                "or": _pair_filter(user_a, user_b),
                "order": "id.asc",
                "limit": "1",
            },
        )
        return ConversationRecord.model_validate(rows[0]) if rows else None

    async def create_conversation(self, user_a: str, user_b: str) -> ConversationRecord:
        rows = await self._request(
            "POST",
            "conversations",
            "create_conversation",
            params={"select": "*"},
            json={"participant_one_id": user_a, "participant_two_id": user_b},
            prefer="return=representation",
        )
        return ConversationRecord.model_validate(rows[0])

    async def list_conversations(self, user_id: str) -> list[ConversationRecord]:
        rows = await self._request(
            "GET",
            "conversations",
            "list_conversations",
            params={
                "select": CONVERSATION_SELECT,
                "or": f"(participant_one_id.eq.{user_id},participant_two_id.eq.{user_id})",
                "messages.order": "created_at.desc",
                "messages.limit": "1",
            },
        )
        return [_conversation_from_row(row) for row in rows or []]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def list_messages(self, conversation_id: int) -> list[Message]:
        rows = await self._request(
            "GET",
            "messages",
            "list_messages",
            params={
                "select": "*",
                "conversation_id": f"eq.{conversation_id}",
                "order": "created_at.asc,id.asc",
            },
        )
        return [Message.model_validate(row) for row in rows or []]

    async def insert_message(self, conversation_id: int, sender_id: str, content: str) -> None:
        await self._request(
            "POST",
            "messages",
            "insert_message",
            json={"conversation_id": conversation_id, "sender_id": sender_id, "content": content},
            prefer="return=minimal",
        )

    # ------------------------------------------------------------------
    # Edge Functions
    # ------------------------------------------------------------------

    async def invoke_function(self, name: str, body: dict[str, Any]) -> Any:
        response = await send(
            self._http,
            "POST",
            f"{self._functions_url}/{name}",
            f"invoke:{name}",
            json=body,
            headers=await self._headers(),
        )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
