from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from api.schemas import CallbackResponse, StartResponse
from services.errors import (
    CallbackForbiddenError,
    ConfigurationError,
    InvalidCallbackError,
    StoreError,
    UnknownRequestError,
    UpstreamError,
)
from services.relay import DEFAULT_CLIENT_ID, ChatRelay

router = APIRouter()


def get_relay(request: Request) -> ChatRelay:
    return request.app.state.relay


def resolve_client_id(body: dict[str, Any], header_value: str | None) -> str:
    """Body clientId wins over the X-Client-Id header; anonymous otherwise."""
    return body.get("clientId") or header_value or DEFAULT_CLIENT_ID


@router.get("/health", response_class=PlainTextResponse)
async def health_check() -> str:
    """Simple health check endpoint."""
    return "ok"


@router.post("/api/chat")
async def chat_proxy(
    body: dict[str, Any] | None = Body(default=None),
    x_client_id: str | None = Header(default=None),
    relay: ChatRelay = Depends(get_relay),
) -> Response:
    """Forwards the chat message and blocks until the webhook answers.

    Kept for clients that do not poll; long-running workflows should use
    /api/chat/start instead.
    """
    body = body or {}
    try:
        result = await relay.proxy(body, resolve_client_id(body, x_client_id))
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    except UpstreamError as e:
        return JSONResponse(
            status_code=502,
            content={"error": "Upstream fetch failed", "detail": str(e)},
        )
    return Response(
        content=result.content,
        status_code=result.status_code,
        media_type=result.media_type,
    )


@router.post("/api/chat/start", status_code=202)
async def start_chat(
    request: Request,
    body: dict[str, Any] | None = Body(default=None),
    x_client_id: str | None = Header(default=None),
    relay: ChatRelay = Depends(get_relay),
) -> StartResponse:
    """Accepts a chat message and hands it to the webhook asynchronously.

    Returns immediately with a requestID that the client polls at
    /api/chat/result/{requestID}.
    """
    body = body or {}
    try:
        request_id = await relay.dispatch(
            body, resolve_client_id(body, x_client_id), str(request.base_url)
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    except UpstreamError as e:
        raise HTTPException(status_code=502, detail="Upstream request failed.") from e
    except StoreError as e:
        raise HTTPException(status_code=502, detail="Request store unavailable.") from e
    return StartResponse(
        message="Request accepted for processing.",
        status="processing",
        requestID=request_id,
    )


@router.post("/api/chat/callback")
async def chat_callback(
    request: Request,
    signature: str | None = None,
    x_callback_signature: str | None = Header(default=None),
    relay: ChatRelay = Depends(get_relay),
) -> CallbackResponse:
    """Receives the workflow result for a previously dispatched request.

    The body is parsed here rather than by a schema so that any malformed
    callback, including unparseable JSON, is answered with 400.
    """
    try:
        payload = await request.json()
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Callback body must be JSON.") from e

    try:
        request_id = await relay.complete(payload, signature or x_callback_signature)
    except InvalidCallbackError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except CallbackForbiddenError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    except UnknownRequestError as e:
        raise HTTPException(status_code=404, detail="Unknown requestID.") from e
    except StoreError as e:
        raise HTTPException(status_code=500, detail="Could not store result.") from e
    return CallbackResponse(status="ok", requestID=request_id)


@router.get("/api/chat/result/{request_id}")
async def chat_result(
    request_id: str, relay: ChatRelay = Depends(get_relay)
) -> dict[str, Any]:
    """Polls for a result; a completed result is returned once, then removed."""
    try:
        return await relay.poll(request_id)
    except UnknownRequestError as e:
        raise HTTPException(
            status_code=404, detail="Result not found or request expired."
        ) from e
    except StoreError as e:
        raise HTTPException(status_code=500, detail="Request store unavailable.") from e
