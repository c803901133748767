"""
GoTrue (Supabase Auth) client.

Holds the current session, publishes SignedIn / SignedOut events to every
auth subscription and hands out a fresh access token to the other
Supabase surfaces. The first event of each subscription is a snapshot of
the current state, so subscribers never need a separate "get session" call.
"""

import time
from dataclasses import dataclass

import httpx

from rentals.auth.verify import TokenVerificationError, read_unverified_claims, verify_access_token
from rentals.backend.events import EventHub, Subscription
from rentals.backend.supabase.http import send
from rentals.config import settings
from rentals.core.errors import RemoteServiceError
from rentals.infrastructure.observability.logging import get_logger
from rentals.models.domain.events import AuthEvent, SignedIn, SignedOut
from rentals.models.domain.user_domain import SignupMetadata

logger = get_logger(__name__)

# Refresh this many seconds before the access token expires
REFRESH_MARGIN_SECONDS = 60


@dataclass
class AuthSession:
    access_token: str
    refresh_token: str | None
    expires_at: float | None
    user_id: str
    email: str | None

    def expires_soon(self) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at - time.time() < REFRESH_MARGIN_SECONDS

    def to_event(self) -> SignedIn:
        return SignedIn(user_id=self.user_id, email=self.email)


class SupabaseAuthClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        base_url: str | None = None,
        verify_tokens: bool | None = None,
    ):
        self._http = http
        self._base_url = base_url or settings.auth_url()
        self._verify_tokens = (
            settings.VERIFY_ACCESS_TOKENS if verify_tokens is None else verify_tokens
        )
        self._session: AuthSession | None = None
        self._events: EventHub[AuthEvent] = EventHub("auth")

    @property
    def session(self) -> AuthSession | None:
        return self._session

    def subscribe(self) -> Subscription[AuthEvent]:
        initial = self._session.to_event() if self._session else SignedOut()
        return self._events.subscribe(initial=initial)

    async def sign_in_with_password(self, email: str, password: str) -> None:
        response = await send(
            self._http,
            "POST",
            f"{self._base_url}/token",
            "sign_in_with_password",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        await self._set_session(response.json())
        logger.info("User signed in", user_id=self._session.user_id)

    async def sign_up(self, email: str, password: str, metadata: SignupMetadata) -> None:
        response = await send(
            self._http,
            "POST",
            f"{self._base_url}/signup",
            "sign_up",
            json={"email": email, "password": password, "data": metadata.model_dump()},
        )
        payload = response.json()

        # With e-mail confirmation disabled GoTrue returns a live session
        if payload.get("access_token"):
            await self._set_session(payload)
            logger.info("User signed up and signed in", user_id=self._session.user_id)
        else:
            logger.info("User signed up, confirmation pending", role=metadata.role)

    async def sign_out(self) -> None:
        session = self._session
        if session is None:
            self._events.publish(SignedOut())
            return

        try:
            await send(
                self._http,
                "POST",
                f"{self._base_url}/logout",
                "sign_out",
                headers={"Authorization": f"Bearer {session.access_token}"},
            )
        finally:
            self._clear_session()

    async def get_access_token(self) -> str | None:
        """Current access token, refreshed first when it is about to expire."""
        session = self._session
        if session is None:
            return None
        if session.expires_soon() and session.refresh_token:
            await self.refresh_session()
        return self._session.access_token if self._session else None

    async def refresh_session(self) -> None:
        session = self._session
        if session is None or not session.refresh_token:
            return

        try:
            response = await send(
                self._http,
                "POST",
                f"{self._base_url}/token",
                "refresh_session",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
            )
        except RemoteServiceError as e:
            if e.status is not None and 400 <= e.status < 500:
                logger.warning("Refresh token rejected, signing out", error=e.message)
                self._clear_session()
            raise

        await self._set_session(response.json(), publish=False)
        logger.debug("Access token refreshed", user_id=self._session.user_id)

    def close(self) -> None:
        self._events.close_all()

    async def _set_session(self, payload: dict, publish: bool = True) -> None:
        access_token = payload.get("access_token")
        if not access_token:
            raise RemoteServiceError("Auth response did not include a session", code="no_session")

        try:
            claims = (
                await verify_access_token(access_token)
                if self._verify_tokens
                else read_unverified_claims(access_token)
            )
        except TokenVerificationError as e:
            raise RemoteServiceError(str(e), code="invalid_token") from e

        user = payload.get("user") or {}
        expires_at = payload.get("expires_at") or claims.get("exp")
        if expires_at is None and payload.get("expires_in"):
            expires_at = time.time() + int(payload["expires_in"])

        self._session = AuthSession(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=float(expires_at) if expires_at is not None else None,
            user_id=user.get("id") or claims["sub"],
            email=user.get("email") or claims.get("email"),
        )
        if publish:
            self._events.publish(self._session.to_event())

    def _clear_session(self) -> None:
        had_session = self._session is not None
        self._session = None
        if had_session:
            logger.info("Session cleared")
        self._events.publish(SignedOut())
