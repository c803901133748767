"""
verify.py
---------
Purpose:
    Access-token verification using Supabase JWKS (ES256).

Notes:
    - Fetches JWKS from Supabase and caches keys (PyJWKClient).
    - Used by the auth client before an identity is published, so a
      tampered or expired session never reaches the session manager.
"""

import asyncio

import jwt
from jwt import PyJWKClient

from rentals.config import settings

SUPABASE_AUDIENCE = "authenticated"

_jwk_client: PyJWKClient | None = None


class TokenVerificationError(Exception):
    """Access token failed signature, audience or expiry checks."""


def _get_jwk_client() -> PyJWKClient:
    global _jwk_client
    if _jwk_client is None:
        _jwk_client = PyJWKClient(settings.jwks_url())
    return _jwk_client


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _get_jwk_client().get_signing_key_from_jwt(token)
        decoded = jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],  # Supabase asymmetric signing keys
            audience=SUPABASE_AUDIENCE,
            options={"verify_exp": True},
        )
        return decoded
    except Exception as e:
        raise TokenVerificationError(f"Invalid authentication token: {e}") from e


async def verify_access_token(token: str) -> dict:
    """Verify off the event loop; PyJWKClient fetches keys synchronously."""
    return await asyncio.to_thread(verify_jwt, token)


def read_unverified_claims(token: str) -> dict:
    """Claims without signature checks, for when verification is disabled."""
    return jwt.decode(token, options={"verify_signature": False})
