from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Supabase settings (local `supabase start` defaults)
    SUPABASE_URL: str = "http://127.0.0.1:54321"
    SUPABASE_ANON_KEY: str = ""
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_DB_URL: str | None = None

    # Reject sessions whose access token does not verify against the project JWKS
    VERIFY_ACCESS_TOKENS: bool = True

    # Edge Function that removes both the auth user and the profile row
    ADMIN_DELETE_FUNCTION: str = "delete-user"

    # Postgres NOTIFY channel fed by the messages insert trigger
    REALTIME_CHANNEL: str = "messages_insert"

    HTTP_TIMEOUT: float = 10.0
    DEFAULT_LANGUAGE: str = "en"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # derive sensible defaults if not provided
    def jwks_url(self) -> str:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        return f"{self.base_url()}/auth/v1/.well-known/jwks.json"

    def base_url(self) -> str:
        return self.SUPABASE_URL.rstrip("/")

    def auth_url(self) -> str:
        return f"{self.base_url()}/auth/v1"

    def rest_url(self) -> str:
        return f"{self.base_url()}/rest/v1"

    def functions_url(self) -> str:
        return f"{self.base_url()}/functions/v1"

    def project_ref(self) -> str | None:
        """
        Extract the Supabase project ref from SUPABASE_URL host, e.g.
        https://ykvceus...supabase.co -> ykvceus...
        """
        try:
            host = urlparse(self.SUPABASE_URL).hostname or ""
            return host.split(".")[0]
        except Exception:
            return None

    def realtime_enabled(self) -> bool:
        return bool(self.SUPABASE_DB_URL)


settings = Settings()
