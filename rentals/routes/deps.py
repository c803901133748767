"""
Shared dependencies for the view-layer routers.

The session manager and conversation coordinator are created once in the
application lifespan and stored on `app.state`; routers reach them through
these dependencies so tests can override them.
"""

from typing import TypeVar

from fastapi import HTTPException, Request, status

from rentals.core.errors import MarketplaceError, OperationResult, RemoteServiceFailure
from rentals.services.conversation_coordinator import ConversationCoordinator
from rentals.services.session_manager import SessionManager

T = TypeVar("T")

STATUS_BY_CODE = {
    "not_authenticated": status.HTTP_401_UNAUTHORIZED,
    "permission_denied": status.HTTP_403_FORBIDDEN,
    "already_registered": status.HTTP_409_CONFLICT,
    "no_active_conversation": status.HTTP_409_CONFLICT,
    "invalid_input": status.HTTP_400_BAD_REQUEST,
}


def get_session(request: Request) -> SessionManager:
    return request.app.state.session


def get_coordinator(request: Request) -> ConversationCoordinator:
    return request.app.state.coordinator


def status_for(error: MarketplaceError) -> int:
    if error.code in STATUS_BY_CODE:
        return STATUS_BY_CODE[error.code]
    # Pass through client errors from Supabase (bad credentials, RLS rejections)
    if isinstance(error, RemoteServiceFailure) and error.status and 400 <= error.status < 500:
        return error.status
    return status.HTTP_502_BAD_GATEWAY


def unwrap(result: OperationResult[T]) -> T:
    """Return the payload of a successful result or raise the matching HTTPException."""
    if result.ok:
        return result.data
    raise HTTPException(status_code=status_for(result.error), detail=result.error.to_dict())
