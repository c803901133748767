from pydantic import BaseModel, Field

from rentals.models.domain.user_domain import Language, Role


class LoginRequest(BaseModel):
    """Request body for password sign-in."""

    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1)


class SignupRequest(BaseModel):
    """Request body for creating an account."""

    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=6)
    role: Role = "renter"
    preferred_language: Language = "en"


class ProfileUpdateRequest(BaseModel):
    """Partial profile update; only the fields sent are written."""

    preferred_language: Language | None = None
    contact_name: str | None = Field(None, max_length=100)
    contact_phone: str | None = Field(None, max_length=40)
