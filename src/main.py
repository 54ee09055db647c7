from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from api.endpoints import router
from core.config import HOST, PORT, Settings, load_settings
from core.logging import logger
from services.relay import ChatRelay
from services.store import RequestStore, create_store
from services.webhook_client import WebhookClient


def create_app(
    settings: Settings | None = None,
    store: RequestStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Builds the relay app; the store and HTTP transport can be injected for tests."""
    settings = settings if settings is not None else load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manages startup and shutdown events for the FastAPI app."""
        # Startup
        logger.info("Application startup...")
        request_store = (
            store if store is not None else create_store(settings.redis_url)
        )
        await request_store.start()
        http = httpx.AsyncClient(
            timeout=settings.webhook_timeout, transport=transport, follow_redirects=True
        )
        app.state.relay = ChatRelay(
            request_store, WebhookClient(http, settings.webhook_url), settings
        )
        if not settings.webhook_url:
            logger.warning("N8N_WEBHOOK_URL is not set; chat requests will fail.")
        if not settings.callback_secret:
            logger.warning("CALLBACK_SECRET is not set; callbacks are not verified.")
        yield
        # Shutdown
        logger.info("Application shutdown...")
        await http.aclose()
        await request_store.stop()

    app = FastAPI(lifespan=lifespan)

    @app.middleware("http")
    async def limit_body_size(request: Request, call_next):
        """Rejects requests whose declared body exceeds the configured cap."""
        content_length = request.headers.get("content-length", "")
        if content_length.isdigit() and int(content_length) > settings.max_body_bytes:
            logger.warning(f"Rejected {content_length}-byte body on {request.url.path}")
            return JSONResponse(
                status_code=413, content={"detail": "Request body too large."}
            )
        return await call_next(request)

    # Added after the size limit so it wraps it and 413s still carry CORS headers.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Client-Id"],
        max_age=86400,
    )
    app.include_router(router)

    # Mounted last so API routes take precedence over static files.
    static_dir = Path(settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
    else:
        logger.info(f"Static directory {static_dir} not found; serving API only.")
    return app


app = create_app()


def run() -> None:
    uvicorn.run("main:app", host=HOST, port=PORT)


if __name__ == "__main__":
    run()
