import asyncio
import itertools
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from rentals.backend.events import EventHub
from rentals.core.errors import RemoteServiceError
from rentals.models.domain.events import MessageInserted, SignedIn, SignedOut
from rentals.models.domain.messaging_domain import ConversationRecord, Message
from rentals.models.domain.user_domain import Profile, SignupMetadata
from rentals.services.conversation_coordinator import ConversationCoordinator
from rentals.services.session_manager import SessionManager

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class FakeBackend:
    """In-memory stand-in for Supabase that records every remote call."""

    def __init__(self):
        self.accounts: dict[str, tuple[str, str]] = {}
        self.emails: dict[str, str] = {}
        self.profiles: dict[str, Profile] = {}
        self.conversations: dict[int, ConversationRecord] = {}
        self.messages: list[Message] = []
        self.calls: list[str] = []
        self.failures: dict[str, RemoteServiceError] = {}
        self.signed_in: SignedIn | None = None

        self.auth_events: EventHub = EventHub("fake-auth")
        self.message_events: EventHub = EventHub("fake-messages")

        self._conversation_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._user_ids = itertools.count(1)
        self._ticks = itertools.count(1)

    # -- test helpers --------------------------------------------------

    def add_user(
        self,
        user_id: str,
        role: str = "renter",
        name: str | None = None,
        email: str | None = None,
        password: str = "secret123",
        saved: list[int] | None = None,
    ) -> Profile:
        email = email or f"{user_id}@example.com"
        self.accounts[email] = (password, user_id)
        self.emails[user_id] = email
        profile = Profile(
            id=user_id,
            role=role,
            saved_properties=saved or [],
            contact_name=name,
            email=email,
        )
        self.profiles[user_id] = profile
        return profile

    def fail(self, operation: str, message: str = "backend unavailable", code=None, status=None):
        self.failures[operation] = RemoteServiceError(message, code=code, status=status)

    def emit_sign_in(self, user_id: str) -> None:
        self.signed_in = SignedIn(user_id=user_id, email=self.emails.get(user_id))
        self.auth_events.publish(self.signed_in)

    def emit_sign_out(self) -> None:
        self.signed_in = None
        self.auth_events.publish(SignedOut())

    def store_message(self, conversation_id: int, sender_id: str, content: str, created_at=None):
        message = Message(
            id=next(self._message_ids),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            created_at=created_at or BASE_TIME + timedelta(seconds=next(self._ticks)),
        )
        self.messages.append(message)
        return message

    def remote_calls(self, operation: str) -> int:
        return self.calls.count(operation)

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failures:
            raise self.failures[operation]

    # -- auth ----------------------------------------------------------

    def subscribe_auth_events(self):
        return self.auth_events.subscribe(initial=self.signed_in or SignedOut())

    async def sign_in_with_password(self, email: str, password: str) -> None:
        self._call("sign_in_with_password")
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise RemoteServiceError(
                "Invalid login credentials", code="invalid_credentials", status=400
            )
        self.emit_sign_in(account[1])

    async def sign_up(self, email: str, password: str, metadata: SignupMetadata) -> None:
        self._call("sign_up")
        if email in self.accounts:
            raise RemoteServiceError("User already registered", code="user_already_exists", status=422)
        user_id = f"user-{next(self._user_ids)}"
        self.accounts[email] = (password, user_id)
        self.emails[user_id] = email
        # Mirrors the database trigger that provisions profiles from user metadata
        self.profiles[user_id] = Profile(id=user_id, **metadata.model_dump())

    async def sign_out(self) -> None:
        self._call("sign_out")
        self.emit_sign_out()

    # -- profiles --------------------------------------------------------

    async def get_profile(self, user_id: str) -> Profile | None:
        self._call("get_profile")
        return self.profiles.get(user_id)

    async def update_profile(self, user_id: str, fields: dict) -> Profile:
        self._call("update_profile")
        if user_id not in self.profiles:
            raise RemoteServiceError("Profile not found", code="PGRST116", status=406)
        updated = self.profiles[user_id].model_copy(update=fields)
        self.profiles[user_id] = updated
        return updated

    async def list_profiles(self) -> list[Profile]:
        self._call("list_profiles")
        return list(self.profiles.values())

    async def delete_profile(self, user_id: str) -> None:
        self._call("delete_profile")
        self.profiles.pop(user_id, None)

    # -- conversations and messages --------------------------------------

    async def find_conversation(self, user_a: str, user_b: str) -> ConversationRecord | None:
        self._call("find_conversation")
        pair = {user_a, user_b}
        matches = [
            c
            for c in self.conversations.values()
            if {c.participant_one_id, c.participant_two_id} == pair
        ]
        return min(matches, key=lambda c: c.id) if matches else None

    async def create_conversation(self, user_a: str, user_b: str) -> ConversationRecord:
        self._call("create_conversation")
        record = ConversationRecord(
            id=next(self._conversation_ids),
            participant_one_id=user_a,
            participant_two_id=user_b,
            created_at=BASE_TIME + timedelta(seconds=next(self._ticks)),
        )
        self.conversations[record.id] = record
        return record

    async def list_conversations(self, user_id: str) -> list[ConversationRecord]:
        self._call("list_conversations")
        records = []
        for record in self.conversations.values():
            if not record.involves(user_id):
                continue
            one = self.profiles.get(record.participant_one_id)
            two = self.profiles.get(record.participant_two_id)
            history = [m for m in self.messages if m.conversation_id == record.id]
            latest = max(history, key=Message.sort_key) if history else None
            records.append(
                record.model_copy(
                    update={
                        "participant_one_name": one.contact_name if one else None,
                        "participant_two_name": two.contact_name if two else None,
                        "last_message_content": latest.content if latest else None,
                        "last_message_time": latest.created_at if latest else None,
                    }
                )
            )
        return records

    async def list_messages(self, conversation_id: int) -> list[Message]:
        self._call("list_messages")
        history = [m for m in self.messages if m.conversation_id == conversation_id]
        return sorted(history, key=Message.sort_key)

    async def insert_message(self, conversation_id: int, sender_id: str, content: str) -> None:
        self._call("insert_message")
        message = self.store_message(conversation_id, sender_id, content)
        self.message_events.publish(MessageInserted(message=message))

    def subscribe_message_inserts(self):
        return self.message_events.subscribe()

    # -- functions -------------------------------------------------------

    async def invoke_delete_user(self, user_id: str) -> None:
        self._call("invoke_delete_user")
        self.profiles.pop(user_id, None)
        email = self.emails.pop(user_id, None)
        self.accounts.pop(email, None)


async def settle(rounds: int = 20) -> None:
    """Let background consumer tasks drain their queues."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def languages():
    return []


@pytest_asyncio.fixture
async def session(fake_backend, languages):
    manager = SessionManager(fake_backend, on_language_change=languages.append)
    await manager.start()
    await manager.wait_ready(timeout=1)
    yield manager
    await manager.stop()


@pytest_asyncio.fixture
async def coordinator(fake_backend, session):
    coordinator = ConversationCoordinator(fake_backend, session)
    await coordinator.mount()
    yield coordinator
    await coordinator.unmount()


@pytest.fixture
def sign_in(fake_backend, session):
    async def _sign_in(user_id: str) -> None:
        fake_backend.emit_sign_in(user_id)
        await settle()

    return _sign_in
