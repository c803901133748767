"""
Shared HTTP plumbing for the Supabase REST surfaces (GoTrue, PostgREST,
Edge Functions). Translates transport and status failures into
`RemoteServiceError` so callers only deal with one error type.
"""

from typing import Any

import httpx

from rentals.config import settings
from rentals.core.errors import RemoteServiceError
from rentals.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def create_http_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Build the shared AsyncClient used by every Supabase surface."""
    return httpx.AsyncClient(
        timeout=settings.HTTP_TIMEOUT,
        transport=transport,
        headers={"apikey": settings.SUPABASE_ANON_KEY},
    )


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def error_from_response(response: httpx.Response) -> RemoteServiceError:
    """
    Build a RemoteServiceError from a Supabase error body.

    GoTrue answers with {"error_code", "msg"} (or the older
    {"error", "error_description"}); PostgREST with {"code", "message"};
    Edge Functions with whatever the function returns, usually {"error"}.
    """
    payload = _error_payload(response)

    message = (
        payload.get("msg")
        or payload.get("message")
        or payload.get("error_description")
        or (payload.get("error") if isinstance(payload.get("error"), str) else None)
        or response.text
        or response.reason_phrase
    )
    code = payload.get("error_code") or payload.get("code") or payload.get("error")
    if code is not None and not isinstance(code, str):
        code = str(code)

    return RemoteServiceError(message, code=code, status=response.status_code)


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    operation: str,
    **kwargs: Any,
) -> httpx.Response:
    """Perform a request and raise RemoteServiceError on transport or HTTP failure."""
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.RequestError as e:
        logger.error(
            "Supabase request failed",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise RemoteServiceError(f"{operation} failed: {e}") from e

    if response.is_error:
        error = error_from_response(response)
        logger.warning(
            "Supabase returned an error",
            operation=operation,
            status_code=response.status_code,
            error_code=error.code,
            error=error.message,
        )
        raise error

    return response
