"""
Session manager: the single owner of the signed-in identity and its profile.

State moves initializing -> anonymous | authenticated, driven only by the
backend's auth-event stream. The first event of the stream is the initial
snapshot; there is no separate "get current session" call.

Other components read the identity through `identity` / `current_identity`
and register listeners for identity changes. They never hold a copy.

Two consistency policies live here and are deliberately different:
- logout clears local state before the server round-trip and never rolls back;
- profile writes replace the local profile with the row the server returns.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from enum import Enum
from typing import Any

from rentals.backend.contract import MarketplaceBackend
from rentals.backend.events import Subscription
from rentals.core.errors import (
    AdminDeletionFailure,
    AlreadyRegistered,
    InvalidInput,
    NotAuthenticated,
    OperationResult,
    PermissionDenied,
    RemoteServiceError,
    RemoteServiceFailure,
)
from rentals.infrastructure.observability.logging import get_logger
from rentals.models.domain.events import AuthEvent, SignedIn
from rentals.models.domain.user_domain import (
    PROFILE_WRITABLE_FIELDS,
    Identity,
    Language,
    Profile,
    Role,
    SignupMetadata,
)

logger = get_logger(__name__)

IdentityListener = Callable[[Identity | None], Awaitable[None]]
LanguageListener = Callable[[Language], None]

# GoTrue error codes for a duplicate account
ALREADY_REGISTERED_CODES = frozenset({"user_already_exists", "email_exists"})
# Older GoTrue versions only say it in the message
ALREADY_REGISTERED_PHRASES = ("already registered", "already exists")


class SessionStatus(str, Enum):
    INITIALIZING = "initializing"
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


def is_already_registered(error: RemoteServiceError) -> bool:
    if error.code in ALREADY_REGISTERED_CODES:
        return True
    message = (error.message or "").lower()
    return any(phrase in message for phrase in ALREADY_REGISTERED_PHRASES)


class SessionManager:
    def __init__(
        self,
        backend: MarketplaceBackend,
        *,
        on_language_change: LanguageListener | None = None,
    ):
        self._backend = backend
        self._on_language_change = on_language_change

        self._status = SessionStatus.INITIALIZING
        self._identity: Identity | None = None
        self._listeners: list[IdentityListener] = []

        # Bumped by logout so a profile fetch already in flight cannot resurrect the session
        self._generation = 0

        self._subscription: Subscription[AuthEvent] | None = None
        self._task: asyncio.Task | None = None
        self._ready = asyncio.Event()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def identity(self) -> Identity | None:
        return self._identity

    def current_identity(self) -> Identity | None:
        return self._identity

    @property
    def current_user_id(self) -> str | None:
        return self._identity.id if self._identity else None

    @property
    def role(self) -> Role | None:
        return self._identity.role if self._identity else None

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    @property
    def loading(self) -> bool:
        return self._status is SessionStatus.INITIALIZING

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        """Register for identity changes (sign-in, sign-out, user switch)."""
        self._listeners.append(listener)

        def remove() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._task is not None:
            return
        self._subscription = self._backend.subscribe_auth_events()
        self._task = asyncio.create_task(
            self._consume(self._subscription), name="session-auth-events"
        )
        logger.info("Session manager started")

    async def wait_ready(self, timeout: float | None = None) -> None:
        """Wait until the initial auth snapshot has been applied."""
        await asyncio.wait_for(self._ready.wait(), timeout)

    async def stop(self) -> None:
        task, subscription = self._task, self._subscription
        self._task = None
        self._subscription = None

        if subscription is not None:
            subscription.close()
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        logger.info("Session manager stopped")

    async def __aenter__(self) -> "SessionManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _consume(self, subscription: Subscription[AuthEvent]) -> None:
        async with subscription:
            async for event in subscription:
                await self.handle_auth_event(event)

    # ------------------------------------------------------------------
    # Auth event handling
    # ------------------------------------------------------------------

    async def handle_auth_event(self, event: AuthEvent) -> None:
        """Apply one auth-stream event. Events must be applied in delivery order."""
        if isinstance(event, SignedIn):
            generation = self._generation
            profile = await self._fetch_profile(event.user_id)

            if generation != self._generation:
                logger.info("Discarding sign-in superseded by logout", user_id=event.user_id)
            else:
                identity = Identity(id=event.user_id, email=event.email, profile=profile)
                await self._set_identity(identity, SessionStatus.AUTHENTICATED)
                if profile is not None:
                    self._apply_language(profile.preferred_language)
        else:
            await self._set_identity(None, SessionStatus.ANONYMOUS)

        self._ready.set()

    async def _fetch_profile(self, user_id: str) -> Profile | None:
        try:
            profile = await self._backend.get_profile(user_id)
        except RemoteServiceError as e:
            logger.error("Error fetching profile", user_id=user_id, error=e.message)
            return None

        if profile is None:
            logger.warning("No profile for signed-in user", user_id=user_id)
        return profile

    async def _set_identity(self, identity: Identity | None, status: SessionStatus) -> None:
        previous_id = self.current_user_id
        self._identity = identity
        self._status = status

        new_id = identity.id if identity else None
        if new_id != previous_id:
            logger.info("Session identity changed", user_id=new_id, status=status.value)
            await self._notify(identity)

    async def _notify(self, identity: Identity | None) -> None:
        for listener in list(self._listeners):
            try:
                await listener(identity)
            except Exception as e:
                logger.error(
                    "Identity listener failed",
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def _apply_language(self, language: Language) -> None:
        if self._on_language_change is not None:
            self._on_language_change(language)

    def _replace_profile(self, user_id: str, profile: Profile) -> None:
        identity = self._identity
        if identity is None or identity.id != user_id:
            logger.info("Dropping profile for a session that has ended", user_id=user_id)
            return
        self._identity = identity.with_profile(profile)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> OperationResult[None]:
        """Submit credentials. The identity arrives later through the auth stream."""
        try:
            await self._backend.sign_in_with_password(email, password)
        except RemoteServiceError as e:
            logger.warning("Login failed", error=e.message, error_code=e.code)
            return OperationResult.failure(RemoteServiceFailure.from_remote(e, "login"))
        return OperationResult.success()

    async def signup(
        self, email: str, password: str, role: Role, preferred_language: Language
    ) -> OperationResult[None]:
        metadata = SignupMetadata.for_email(email, role, preferred_language)
        try:
            await self._backend.sign_up(email, password, metadata)
        except RemoteServiceError as e:
            if is_already_registered(e):
                logger.info("Signup for existing account", error_code=e.code)
                return OperationResult.failure(AlreadyRegistered(e.message, "signup"))
            logger.warning("Signup failed", error=e.message, error_code=e.code)
            return OperationResult.failure(RemoteServiceFailure.from_remote(e, "signup"))

        logger.info("Signup submitted", role=role, preferred_language=preferred_language)
        return OperationResult.success()

    async def logout(self) -> OperationResult[None]:
        user_id = self.current_user_id
        self._generation += 1
        await self._set_identity(None, SessionStatus.ANONYMOUS)

        try:
            await self._backend.sign_out()
        except RemoteServiceError as e:
            logger.error(
                "Server sign-out failed, local session already cleared",
                user_id=user_id,
                error=e.message,
            )
        return OperationResult.success()

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def update_profile(self, updates: dict[str, Any]) -> OperationResult[Profile]:
        identity = self._identity
        if identity is None:
            return OperationResult.failure(
                NotAuthenticated("User not authenticated", "update_profile")
            )

        unknown = set(updates) - PROFILE_WRITABLE_FIELDS
        if unknown:
            return OperationResult.failure(
                InvalidInput(f"Unknown profile fields: {', '.join(sorted(unknown))}", "update_profile")
            )
        if not updates:
            return OperationResult.failure(InvalidInput("No profile fields to update", "update_profile"))

        try:
            profile = await self._backend.update_profile(identity.id, updates)
        except RemoteServiceError as e:
            logger.error("Profile update failed", user_id=identity.id, error=e.message)
            return OperationResult.failure(RemoteServiceFailure.from_remote(e, "update_profile"))

        self._replace_profile(identity.id, profile)
        if "preferred_language" in updates:
            self._apply_language(profile.preferred_language)

        logger.info("Profile updated", user_id=identity.id, fields=sorted(updates))
        return OperationResult.success(profile)

    async def toggle_save_property(self, property_id: int) -> OperationResult[Profile]:
        identity = self._identity
        if identity is None:
            return OperationResult.failure(
                NotAuthenticated("User not authenticated", "toggle_save_property")
            )

        profile = identity.profile
        if profile is None or profile.role != "renter":
            return OperationResult.success(profile)

        if profile.is_saved(property_id):
            saved = [pid for pid in profile.saved_properties if pid != property_id]
        else:
            saved = [*profile.saved_properties, property_id]

        try:
            updated = await self._backend.update_profile(identity.id, {"saved_properties": saved})
        except RemoteServiceError as e:
            logger.error(
                "Saving property failed",
                user_id=identity.id,
                property_id=property_id,
                error=e.message,
            )
            return OperationResult.failure(
                RemoteServiceFailure.from_remote(e, "toggle_save_property")
            )

        self._replace_profile(identity.id, updated)
        return OperationResult.success(updated)

    # ------------------------------------------------------------------
    # Administration (client-side role check is a UX guard only)
    # ------------------------------------------------------------------

    def _require_admin(self, operation: str) -> PermissionDenied | None:
        if self.role != "admin":
            return PermissionDenied("Administrator role required", operation)
        return None

    async def fetch_all_users(self) -> OperationResult[list[Profile]]:
        denied = self._require_admin("fetch_all_users")
        if denied:
            return OperationResult.failure(denied)

        try:
            profiles = await self._backend.list_profiles()
        except RemoteServiceError as e:
            logger.error("Listing users failed", error=e.message)
            return OperationResult.failure(RemoteServiceFailure.from_remote(e, "fetch_all_users"))
        return OperationResult.success(profiles)

    async def delete_user_by_admin(self, user_id: str) -> OperationResult[str]:
        """
        Delete a user's credential and profile through the privileged function.

        If the function fails, only the profile row is deleted and the
        function's error is still reported, naming the step that failed.
        """
        operation = "delete_user_by_admin"
        denied = self._require_admin(operation)
        if denied:
            return OperationResult.failure(denied)
        if user_id == self.current_user_id:
            return OperationResult.failure(
                PermissionDenied("You cannot delete your own admin account.", operation)
            )

        try:
            await self._backend.invoke_delete_user(user_id)
            logger.info("User deleted", target_user_id=user_id)
            return OperationResult.success(user_id)
        except RemoteServiceError as e:
            original = e

        logger.error(
            "Privileged user deletion failed, deleting profile only",
            target_user_id=user_id,
            error=original.message,
        )
        try:
            await self._backend.delete_profile(user_id)
        except RemoteServiceError as fallback:
            logger.error(
                "Profile fallback deletion failed",
                target_user_id=user_id,
                error=fallback.message,
            )
            return OperationResult.failure(
                AdminDeletionFailure(
                    original.message,
                    failed_step="profile_fallback_delete",
                    fallback_succeeded=False,
                    remote_code=original.code,
                    status=original.status,
                    fallback_error=fallback.message,
                )
            )

        logger.warning("Profile deleted, auth credential may be orphaned", target_user_id=user_id)
        return OperationResult.failure(
            AdminDeletionFailure(
                original.message,
                failed_step="privileged_delete",
                fallback_succeeded=True,
                remote_code=original.code,
                status=original.status,
            )
        )
