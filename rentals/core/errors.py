"""
Error taxonomy and result values for the session and messaging components.

Components never let a failure escape as an exception: every public
operation returns an `OperationResult` whose `error` is one of the
`MarketplaceError` subclasses below. Backend adapters raise
`RemoteServiceError`; components catch it and wrap it in
`RemoteServiceFailure` so the backend message reaches the caller unchanged.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class RemoteServiceError(Exception):
    """Raised by backend adapters when a Supabase call fails."""

    def __init__(self, message: str, code: str | None = None, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class MarketplaceError(Exception):
    """Base class for errors reported to callers of the client components."""

    code = "marketplace_error"

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message)
        self.message = message
        self.operation = operation

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "operation": self.operation}


class NotAuthenticated(MarketplaceError):
    code = "not_authenticated"


class PermissionDenied(MarketplaceError):
    code = "permission_denied"


class AlreadyRegistered(MarketplaceError):
    code = "already_registered"


class NoActiveConversation(MarketplaceError):
    code = "no_active_conversation"


class InvalidInput(MarketplaceError):
    code = "invalid_input"


class RemoteServiceFailure(MarketplaceError):
    """Catch-all for network/backend failures; message is the backend's own."""

    code = "remote_service_failure"

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        remote_code: str | None = None,
        status: int | None = None,
    ):
        super().__init__(message, operation)
        self.remote_code = remote_code
        self.status = status

    @classmethod
    def from_remote(cls, error: RemoteServiceError, operation: str) -> "RemoteServiceFailure":
        return cls(error.message, operation=operation, remote_code=error.code, status=error.status)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["remote_code"] = self.remote_code
        return data


class AdminDeletionFailure(RemoteServiceFailure):
    """
    Privileged user deletion failed.

    `failed_step` names the sub-step that failed so an operator can reconcile
    orphaned records: "privileged_delete" when only the Edge Function failed
    and the profile fallback went through, "profile_fallback_delete" when the
    fallback failed as well.
    """

    code = "admin_deletion_failure"

    def __init__(
        self,
        message: str,
        failed_step: str,
        fallback_succeeded: bool,
        remote_code: str | None = None,
        status: int | None = None,
        fallback_error: str | None = None,
    ):
        super().__init__(
            message, operation="delete_user_by_admin", remote_code=remote_code, status=status
        )
        self.failed_step = failed_step
        self.fallback_succeeded = fallback_succeeded
        self.fallback_error = fallback_error

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            failed_step=self.failed_step,
            fallback_succeeded=self.fallback_succeeded,
            fallback_error=self.fallback_error,
        )
        return data


@dataclass
class OperationResult(Generic[T]):
    """Outcome of a component operation: a payload or an error, never both."""

    data: T | None = None
    error: MarketplaceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T | None = None) -> "OperationResult[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, error: MarketplaceError) -> "OperationResult[T]":
        return cls(error=error)
