import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from core.config import Settings
from core.logging import logger
from services.errors import (
    CallbackForbiddenError,
    ConfigurationError,
    InvalidCallbackError,
    StoreError,
    UnknownRequestError,
    UpstreamError,
)
from services.store import RequestRecord, RequestStore, now_ms
from services.webhook_client import WebhookClient

CALLBACK_PATH = "/api/chat/callback"
ACCEPTED_STATUSES = (200, 202)
DEFAULT_CLIENT_ID = "anon"


def _is_token(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def new_request_id() -> str:
    """Time-based id with a random suffix; collisions are unlikely, not impossible."""
    return f"{now_ms()}-{uuid.uuid4().hex[:8]}"


@dataclass
class ProxyResult:
    status_code: int
    media_type: str
    content: str


class ChatRelay:
    """Correlates dispatched webhook requests with their callbacks and pollers."""

    def __init__(
        self, store: RequestStore, webhook: WebhookClient, settings: Settings
    ) -> None:
        self.store = store
        self.webhook = webhook
        self.settings = settings

    def sign(self, request_id: str) -> str:
        return hmac.new(
            self.settings.callback_secret.encode("utf-8"),
            request_id.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def callback_url(self, request_id: str, base_url: str) -> str:
        base = (self.settings.public_base_url or base_url).rstrip("/")
        url = f"{base}{CALLBACK_PATH}"
        if self.settings.callback_secret:
            url = f"{url}?{urlencode({'signature': self.sign(request_id)})}"
        return url

    async def _discard(self, request_id: str) -> None:
        try:
            await self.store.delete(request_id)
        except StoreError as e:
            logger.error(f"Could not remove in-flight record {request_id}: {e}")

    async def dispatch(
        self, body: dict[str, Any], client_id: str, base_url: str
    ) -> str:
        """Records a processing entry and forwards the body to the webhook.

        The record is written before the webhook is called and removed again
        if the webhook rejects the request or cannot be reached.
        """
        if not self.webhook.url:
            raise ConfigurationError("N8N_WEBHOOK_URL is not configured.")

        request_id = new_request_id()
        record = RequestRecord(status="processing", timestamp=now_ms())
        await self.store.set(request_id, record, self.settings.request_ttl_seconds)

        payload = {
            **body,
            "clientId": client_id,
            "requestID": request_id,
            "callbackURL": self.callback_url(request_id, base_url),
        }
        try:
            response = await self.webhook.post(payload, client_id)
        except UpstreamError:
            await self._discard(request_id)
            raise

        if response.status_code not in ACCEPTED_STATUSES:
            logger.error(
                f"Webhook rejected request_id {request_id}: "
                f"{response.status_code} {response.text}"
            )
            await self._discard(request_id)
            raise UpstreamError(f"Webhook responded with {response.status_code}")

        logger.info(f"Dispatched request_id {request_id} for client {client_id}")
        return request_id

    async def complete(self, payload: Any, signature: str | None = None) -> str:
        """Stores the callback result for a request, overwriting any prior state.

        The payload must be a JSON object with non-empty string requestID and
        clientId and a text value; anything else is an InvalidCallbackError.
        """
        if not isinstance(payload, dict):
            raise InvalidCallbackError("Callback body must be a JSON object.")
        request_id = payload.get("requestID")
        client_id = payload.get("clientId")
        text = payload.get("text")
        if not _is_token(request_id) or not _is_token(client_id) or text is None:
            raise InvalidCallbackError("requestID, clientId and text are required.")

        if self.settings.callback_secret:
            if not signature or not hmac.compare_digest(signature, self.sign(request_id)):
                logger.warning(f"Rejected callback with bad signature for {request_id}")
                raise CallbackForbiddenError("Invalid callback signature.")

        existing = await self.store.get(request_id)
        if existing is None:
            if self.settings.strict_callbacks:
                logger.warning(f"Rejected callback for unknown request_id {request_id}")
                raise UnknownRequestError(request_id)
            logger.warning(f"Callback for unknown or expired request_id {request_id}")

        data = {key: value for key, value in payload.items() if key != "requestID"}
        record = RequestRecord(status="completed", data=data, timestamp=now_ms())
        await self.store.set(request_id, record, self.settings.request_ttl_seconds)
        logger.info(f"Stored callback result for request_id {request_id}")
        return request_id

    async def poll(self, request_id: str) -> dict[str, Any]:
        """Returns the request state, delivering a completed result exactly once."""
        record = await self.store.get(request_id)
        if record is None:
            raise UnknownRequestError(request_id)
        if record.status == "processing":
            return {"status": "processing", "requestID": request_id}

        # Another poller may have taken the result between get and pop.
        delivered = await self.store.pop(request_id)
        if delivered is None:
            raise UnknownRequestError(request_id)
        logger.info(f"Delivered result for request_id {request_id}")
        return {
            **(delivered.data or {}),
            "status": "completed",
            "requestID": request_id,
            "timestamp": delivered.timestamp,
        }

    async def proxy(self, body: dict[str, Any], client_id: str) -> ProxyResult:
        """Forwards the body to the webhook and relays its answer synchronously."""
        response = await self.webhook.post({**body, "clientId": client_id}, client_id)
        content_type = response.headers.get("content-type", "")
        raw = response.text

        if not response.is_success:
            logger.error(f"Upstream error: {response.status_code} {raw}")
            return ProxyResult(
                status_code=response.status_code,
                media_type=content_type or "application/json",
                content=raw or json.dumps({"error": "chat error"}),
            )
        if "application/json" in content_type:
            return ProxyResult(200, "application/json", raw or "{}")
        return ProxyResult(
            200, "application/json", json.dumps({"text": raw}, ensure_ascii=False)
        )
