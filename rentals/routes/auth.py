"""
auth.py
-------
Purpose:
    Sign-in, sign-up, sign-out and profile endpoints for the local client.

Notes:
    - Login/signup only submit credentials; the identity shows up on /me once
      the auth stream has delivered it.
    - Saved-property toggling is a no-op for non-renters.
"""

from fastapi import APIRouter, Depends, Request, status

from rentals.models.api.auth_request import LoginRequest, ProfileUpdateRequest, SignupRequest
from rentals.models.api.session_response import SessionResponse
from rentals.models.domain.user_domain import Profile
from rentals.routes.deps import get_session, unwrap
from rentals.services.session_manager import SessionManager

router = APIRouter()


@router.post("/auth/login", status_code=status.HTTP_204_NO_CONTENT)
async def login(body: LoginRequest, session: SessionManager = Depends(get_session)):
    unwrap(await session.login(body.email, body.password))


@router.post("/auth/signup", status_code=status.HTTP_201_CREATED)
async def signup(body: SignupRequest, session: SessionManager = Depends(get_session)):
    unwrap(await session.signup(body.email, body.password, body.role, body.preferred_language))
    return {"status": "registered", "email": body.email}


@router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(session: SessionManager = Depends(get_session)):
    unwrap(await session.logout())


@router.get("/me", response_model=SessionResponse)
async def me(request: Request, session: SessionManager = Depends(get_session)):
    return SessionResponse(
        status=session.status.value,
        is_authenticated=session.is_authenticated,
        language=request.app.state.language.current,
        identity=session.identity,
    )


@router.patch("/me/profile", response_model=Profile)
async def update_profile(
    body: ProfileUpdateRequest, session: SessionManager = Depends(get_session)
):
    return unwrap(await session.update_profile(body.model_dump(exclude_unset=True)))


@router.post("/me/saved-properties/{property_id}", response_model=Profile | None)
async def toggle_saved_property(property_id: int, session: SessionManager = Depends(get_session)):
    return unwrap(await session.toggle_save_property(property_id))
