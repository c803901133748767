"""
Local client application: wires the Supabase backend, session manager and
conversation coordinator together and serves them to the view layer.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from rentals.backend.supabase.client import SupabaseBackend
from rentals.config import settings
from rentals.infrastructure.observability.logging import (
    bind_request_context,
    get_logger,
    log_request,
    setup_logging,
)
from rentals.routes import admin, auth, health, messages
from rentals.services.conversation_coordinator import ConversationCoordinator
from rentals.services.language import LanguagePreference
from rentals.services.session_manager import SessionManager

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.environment != "development")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build components in dependency order and tear them down in reverse."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    backend = SupabaseBackend.from_settings()
    language = LanguagePreference()
    session = SessionManager(backend, on_language_change=language.set)
    coordinator = ConversationCoordinator(backend, session)

    startup_tasks = []
    try:
        await session.start()
        startup_tasks.append("session")

        await coordinator.mount()
        startup_tasks.append("coordinator")

        logger.info("All components started", components=startup_tasks)

    except Exception as e:
        logger.error("Failed to start components", error=str(e), completed_tasks=startup_tasks)

        if "coordinator" in startup_tasks:
            await coordinator.unmount()
        if "session" in startup_tasks:
            await session.stop()
        await backend.close()
        raise

    app.state.backend = backend
    app.state.language = language
    app.state.session = session
    app.state.coordinator = coordinator

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []
    for name, close in (
        ("coordinator", coordinator.unmount),
        ("session", session.stop),
        ("backend", backend.close),
    ):
        try:
            await close()
        except Exception as e:
            logger.error("Error during shutdown", component=name, error=str(e))
            shutdown_errors.append(f"{name}: {e}")

    if shutdown_errors:
        logger.warning("Some components had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All components closed successfully")


app = FastAPI(
    title="Rental Marketplace Client",
    description="Session and messaging core for the rental marketplace, backed by Supabase",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(messages.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing and a request id."""
    request_id = bind_request_context(request.method, request.url.path)
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    session = getattr(request.app.state, "session", None)
    log_request(
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
        user_id=session.current_user_id if session else None,
    )
    response.headers["X-Request-ID"] = request_id
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
