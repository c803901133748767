"""
admin.py
--------
Purpose:
    User management for administrators.

Notes:
    - The role check happens in the session manager and is a UX guard only;
      Supabase row-level security and the delete-user function enforce it.
    - A failed deletion reports which step failed (privileged_delete or
      profile_fallback_delete) so orphaned records can be reconciled.
"""

from fastapi import APIRouter, Depends

from rentals.models.domain.user_domain import Profile
from rentals.routes.deps import get_session, unwrap
from rentals.services.session_manager import SessionManager

router = APIRouter(prefix="/admin")


@router.get("/users", response_model=list[Profile])
async def list_users(session: SessionManager = Depends(get_session)):
    return unwrap(await session.fetch_all_users())


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, session: SessionManager = Depends(get_session)):
    deleted_id = unwrap(await session.delete_user_by_admin(user_id))
    return {"deleted": True, "user_id": deleted_id}
