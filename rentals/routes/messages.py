from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status

from rentals.models.api.messaging_request import SendMessageRequest, StartConversationRequest
from rentals.models.api.session_response import (
    ConversationsResponse,
    MessageSentResponse,
    MessagesResponse,
)
from rentals.models.domain.messaging_domain import Conversation
from rentals.routes.deps import get_coordinator, unwrap
from rentals.services.conversation_coordinator import ConversationCoordinator

router = APIRouter()


def _conversations_response(coordinator: ConversationCoordinator) -> ConversationsResponse:
    selected = coordinator.selected_conversation
    return ConversationsResponse(
        conversations=coordinator.conversations,
        selected_conversation_id=selected.id if selected else None,
        loading=coordinator.loading_conversations,
    )


@router.get("/conversations", response_model=ConversationsResponse)
async def list_conversations(
    refresh: bool = False, coordinator: ConversationCoordinator = Depends(get_coordinator)
):
    if refresh:
        unwrap(await coordinator.refresh_conversations())
    return _conversations_response(coordinator)


@router.post("/conversations", response_model=Conversation)
async def start_conversation(
    body: StartConversationRequest,
    coordinator: ConversationCoordinator = Depends(get_coordinator),
):
    return unwrap(await coordinator.contact_landlord(body.recipient_id, body.message))


@router.post("/conversations/{conversation_id}/select", response_model=MessagesResponse)
async def select_conversation(
    conversation_id: int, coordinator: ConversationCoordinator = Depends(get_coordinator)
):
    conversation = next((c for c in coordinator.conversations if c.id == conversation_id), None)
    if conversation is None:
        unwrap(await coordinator.refresh_conversations())
        conversation = next(
            (c for c in coordinator.conversations if c.id == conversation_id), None
        )
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")

    messages = unwrap(await coordinator.select_conversation(conversation))
    return MessagesResponse(conversation=conversation, messages=messages)


@router.get("/messages", response_model=MessagesResponse)
async def list_messages(coordinator: ConversationCoordinator = Depends(get_coordinator)):
    return MessagesResponse(
        conversation=coordinator.selected_conversation,
        messages=coordinator.messages,
        loading=coordinator.loading_messages,
    )


@router.post("/messages", response_model=MessageSentResponse, status_code=status.HTTP_202_ACCEPTED)
async def send_message(
    body: SendMessageRequest, coordinator: ConversationCoordinator = Depends(get_coordinator)
):
    conversation_id = unwrap(
        await coordinator.send_message(body.content, conversation_id=body.conversation_id)
    )
    return MessageSentResponse(conversation_id=conversation_id, sent_at=datetime.now(UTC))
