"""Main entry point for the chat gateway."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from hlchat.api import auth_router, messages_router, system_router
from hlchat.core.errors import HTTP_BAD_REQUEST, ChatError
from hlchat.core.settings import settings
from hlchat.services.names import get_name_cache
from hlchat.services.replay import ReplaySweeper, get_nonce_guard, get_rate_limiter

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Wallet-authenticated chat rooms for trading pairs",
    version=settings.app_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)
app.add_middleware(GZipMiddleware)

app.include_router(system_router)
app.include_router(auth_router)
app.include_router(messages_router)

_VALIDATION_ERRORS: dict[str, str] = {
    "/auth": "address, signature, timestamp required",
    "/message": "signature and message required",
}


@app.exception_handler(ChatError)
async def chat_error_handler(_request: Request, exc: ChatError) -> JSONResponse:
    """Render domain errors as ``{"error": detail}``."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed bodies and query strings as 400 ``{"error": ...}``."""
    logger.debug("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    detail = _VALIDATION_ERRORS.get(request.url.path, "invalid request")
    return JSONResponse(status_code=HTTP_BAD_REQUEST, content={"error": detail})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Never leak internals; the auth flow keeps its own generic message."""
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
    detail = "invalid auth request" if request.url.path == "/auth" else "invalid request"
    return JSONResponse(status_code=HTTP_BAD_REQUEST, content={"error": detail})


@app.on_event("startup")
async def on_startup() -> None:
    sweeper = ReplaySweeper([get_nonce_guard(), get_rate_limiter(), get_name_cache()])
    await sweeper.start()
    app.state.replay_sweeper = sweeper


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper: ReplaySweeper | None = getattr(app.state, "replay_sweeper", None)
    if sweeper:
        await sweeper.stop()
    await get_name_cache().registry.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("hlchat.main:app", host="0.0.0.0", port=3000, reload=settings.debug)
