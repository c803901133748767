"""
Conversation coordinator: conversations, the selected thread and live delivery.

Owns the conversation list of the signed-in identity, the selected
conversation and its message history (only one history is held at a time),
plus exactly one real-time message-insert subscription while mounted with a
known identity.

Sent messages are not appended locally. They show up through the real-time
feed like every other message, so there is a single arrival path.

Creating a conversation and sending the first message must not depend on
`selected_conversation` having been updated: pass the conversation returned
by `start_conversation` to `send_message(conversation_id=...)`, or use
`contact_landlord`, which does exactly that.
"""

import asyncio
from contextlib import suppress

from rentals.backend.contract import MarketplaceBackend
from rentals.backend.events import Subscription
from rentals.core.errors import (
    InvalidInput,
    NoActiveConversation,
    NotAuthenticated,
    OperationResult,
    RemoteServiceError,
    RemoteServiceFailure,
)
from rentals.infrastructure.observability.logging import get_logger
from rentals.models.domain.events import MessageInserted
from rentals.models.domain.messaging_domain import Conversation, ConversationRecord, Message
from rentals.models.domain.user_domain import Identity
from rentals.services.session_manager import SessionManager

logger = get_logger(__name__)


def _dedupe_by_pair(records: list[ConversationRecord]) -> list[ConversationRecord]:
    """Keep the oldest conversation per unordered participant pair."""
    by_pair: dict[frozenset[str], ConversationRecord] = {}
    for record in records:
        pair = frozenset((record.participant_one_id, record.participant_two_id))
        kept = by_pair.get(pair)
        if kept is None or record.id < kept.id:
            by_pair[pair] = record

    if len(by_pair) != len(records):
        logger.warning(
            "Duplicate conversations for the same participants",
            received=len(records),
            kept=len(by_pair),
        )
    return list(by_pair.values())


class ConversationCoordinator:
    def __init__(self, backend: MarketplaceBackend, session: SessionManager):
        self._backend = backend
        self._session = session

        self.conversations: list[Conversation] = []
        self.selected_conversation: Conversation | None = None
        self.messages: list[Message] = []
        self.loading_conversations = False
        self.loading_messages = False

        self._mounted = False
        self._remove_listener = None
        self._subscription: Subscription[MessageInserted] | None = None
        self._feed_task: asyncio.Task | None = None

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def mount(self) -> None:
        if self._mounted:
            return
        self._mounted = True
        self._remove_listener = self._session.add_listener(self._on_identity_change)
        if self._session.identity is not None:
            await self._activate()
        logger.info("Conversation coordinator mounted", user_id=self._session.current_user_id)

    async def unmount(self) -> None:
        if not self._mounted:
            return
        self._mounted = False
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        await self._release_subscription()
        self._reset_state()
        logger.info("Conversation coordinator unmounted")

    async def __aenter__(self) -> "ConversationCoordinator":
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unmount()

    async def _on_identity_change(self, identity: Identity | None) -> None:
        await self._release_subscription()
        self._reset_state()
        if identity is not None and self._mounted:
            await self._activate()

    async def _activate(self) -> None:
        self._acquire_subscription()
        await self.refresh_conversations()

    def _acquire_subscription(self) -> None:
        if self.subscribed:
            return
        self._subscription = self._backend.subscribe_message_inserts()
        self._feed_task = asyncio.create_task(
            self._consume_feed(self._subscription), name="conversation-message-feed"
        )

    async def _release_subscription(self) -> None:
        subscription, task = self._subscription, self._feed_task
        self._subscription = None
        self._feed_task = None

        # Closed here as well as in the task: a task cancelled before it ever
        # ran never enters its `async with`.
        if subscription is not None:
            subscription.close()
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _consume_feed(self, subscription: Subscription[MessageInserted]) -> None:
        async with subscription:
            async for event in subscription:
                await self.handle_message_inserted(event)

    def _reset_state(self) -> None:
        self.conversations = []
        self.selected_conversation = None
        self.messages = []
        self.loading_conversations = False
        self.loading_messages = False

    # ------------------------------------------------------------------
    # Real-time delivery
    # ------------------------------------------------------------------

    async def handle_message_inserted(self, event: MessageInserted) -> None:
        if self._session.identity is None:
            return

        message = event.message
        selected = self.selected_conversation
        if selected is not None and message.conversation_id == selected.id:
            if any(existing.id == message.id for existing in self.messages):
                logger.debug("Duplicate message delivery ignored", message_id=message.id)
            else:
                self.messages.append(message)

        await self.refresh_conversations()

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def _summary_for(self, record: ConversationRecord, viewer_id: str) -> Conversation:
        for conversation in self.conversations:
            if conversation.id == record.id:
                return conversation
        return Conversation.for_viewer(record, viewer_id)

    async def refresh_conversations(self) -> OperationResult[list[Conversation]]:
        """Reload every conversation of the signed-in identity, replacing the list."""
        identity = self._session.identity
        if identity is None:
            return OperationResult.failure(
                NotAuthenticated("User not authenticated", "refresh_conversations")
            )

        self.loading_conversations = True
        try:
            records = await self._backend.list_conversations(identity.id)
        except RemoteServiceError as e:
            logger.error("Error fetching conversations", user_id=identity.id, error=e.message)
            return OperationResult.failure(
                RemoteServiceFailure.from_remote(e, "refresh_conversations")
            )
        finally:
            self.loading_conversations = False

        if self._session.current_user_id != identity.id:
            logger.info("Discarding conversations for a previous session", user_id=identity.id)
            return OperationResult.success([])

        records = _dedupe_by_pair([r for r in records if r.involves(identity.id)])
        conversations = [Conversation.for_viewer(record, identity.id) for record in records]
        conversations.sort(key=Conversation.last_activity, reverse=True)
        self.conversations = conversations

        selected = self.selected_conversation
        if selected is not None:
            self.selected_conversation = next(
                (c for c in conversations if c.id == selected.id), selected
            )

        return OperationResult.success(conversations)

    async def select_conversation(self, conversation: Conversation) -> OperationResult[list[Message]]:
        """Select a conversation and reload its full history (oldest first)."""
        self.selected_conversation = conversation
        self.loading_messages = True
        try:
            messages = await self._backend.list_messages(conversation.id)
        except RemoteServiceError as e:
            logger.error(
                "Error fetching messages", conversation_id=conversation.id, error=e.message
            )
            if self._is_selected(conversation):
                self.messages = []
            return OperationResult.failure(
                RemoteServiceFailure.from_remote(e, "select_conversation")
            )
        finally:
            self.loading_messages = False

        messages = sorted(messages, key=Message.sort_key)
        if self._is_selected(conversation):
            self.messages = messages
        return OperationResult.success(messages)

    def _is_selected(self, conversation: Conversation) -> bool:
        selected = self.selected_conversation
        return selected is not None and selected.id == conversation.id

    async def start_conversation(self, recipient_id: str) -> OperationResult[Conversation]:
        """
        Return the conversation with `recipient_id`, creating it if needed.

        Use the returned value directly for a follow-up send; the list
        refresh that follows a creation is not something to wait on.
        """
        identity = self._session.identity
        if identity is None:
            return OperationResult.failure(
                NotAuthenticated("User not authenticated", "start_conversation")
            )
        if recipient_id == identity.id:
            return OperationResult.failure(
                InvalidInput("Cannot start a conversation with yourself", "start_conversation")
            )

        try:
            existing = await self._backend.find_conversation(identity.id, recipient_id)
        except RemoteServiceError as e:
            logger.error("Error looking up conversation", recipient_id=recipient_id, error=e.message)
            return OperationResult.failure(
                RemoteServiceFailure.from_remote(e, "start_conversation")
            )

        if existing is not None:
            return OperationResult.success(self._summary_for(existing, identity.id))

        try:
            created = await self._backend.create_conversation(identity.id, recipient_id)
        except RemoteServiceError as e:
            logger.error("Error creating conversation", recipient_id=recipient_id, error=e.message)
            return OperationResult.failure(
                RemoteServiceFailure.from_remote(e, "start_conversation")
            )

        logger.info(
            "Conversation created",
            conversation_id=created.id,
            user_id=identity.id,
            recipient_id=recipient_id,
        )
        await self.refresh_conversations()
        return OperationResult.success(self._summary_for(created, identity.id))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(
        self, content: str, conversation_id: int | None = None
    ) -> OperationResult[int]:
        """
        Insert a message into `conversation_id`, or the selected conversation.

        Returns the id of the conversation written to. The message itself
        appears in `messages` when the real-time feed delivers it.
        """
        identity = self._session.identity
        if identity is None:
            return OperationResult.failure(
                NotAuthenticated("User not authenticated", "send_message")
            )

        text = content.strip()
        if not text:
            return OperationResult.failure(InvalidInput("Message is empty", "send_message"))

        target = conversation_id
        if target is None and self.selected_conversation is not None:
            target = self.selected_conversation.id
        if target is None:
            return OperationResult.failure(
                NoActiveConversation("No conversation selected", "send_message")
            )

        try:
            await self._backend.insert_message(target, identity.id, text)
        except RemoteServiceError as e:
            logger.error("Error sending message", conversation_id=target, error=e.message)
            return OperationResult.failure(RemoteServiceFailure.from_remote(e, "send_message"))

        return OperationResult.success(target)

    async def contact_landlord(
        self, landlord_id: str, first_message: str | None = None
    ) -> OperationResult[Conversation]:
        """Open (or reuse) the conversation with a landlord and optionally send a first message."""
        started = await self.start_conversation(landlord_id)
        if not started.ok:
            return started

        conversation = started.data
        if first_message is not None:
            sent = await self.send_message(first_message, conversation_id=conversation.id)
            if not sent.ok:
                return OperationResult.failure(sent.error)

        await self.select_conversation(conversation)
        return OperationResult.success(conversation)
