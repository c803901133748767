from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["renter", "landlord", "admin"]
Language = Literal["en", "es"]

# Columns a client may write through update_profile
PROFILE_WRITABLE_FIELDS = frozenset(
    {"role", "saved_properties", "preferred_language", "contact_name", "contact_phone"}
)


class Profile(BaseModel):
    """Application-level record keyed by the auth user id (`profiles` table)."""

    model_config = ConfigDict(extra="ignore")

    id: str
    role: Role
    saved_properties: list[int] = Field(default_factory=list)
    preferred_language: Language = "en"
    contact_name: str | None = None
    contact_phone: str | None = None

    # Only populated by the admin listing
    email: str | None = None

    def is_saved(self, property_id: int) -> bool:
        return property_id in self.saved_properties


class Identity(BaseModel):
    """Authenticated principal issued by Supabase Auth plus its Profile."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None
    profile: Profile | None = None

    @property
    def role(self) -> Role | None:
        return self.profile.role if self.profile else None

    def with_profile(self, profile: Profile | None) -> "Identity":
        return self.model_copy(update={"profile": profile})


class SignupMetadata(BaseModel):
    """User metadata sent with sign-up; the database provisions the profile from it."""

    role: Role
    preferred_language: Language
    contact_name: str
    contact_phone: str = "Not provided"

    @classmethod
    def for_email(cls, email: str, role: Role, preferred_language: Language) -> "SignupMetadata":
        return cls(
            role=role,
            preferred_language=preferred_language,
            contact_name=email.split("@")[0],
        )
