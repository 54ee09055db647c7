from typing import Any

import httpx

from core.config import USER_AGENT
from core.logging import logger
from services.errors import ConfigurationError, UpstreamError


class WebhookClient:
    """Posts JSON payloads to the external workflow webhook."""

    def __init__(self, http: httpx.AsyncClient, url: str) -> None:
        self.http = http
        self.url = url

    async def post(self, payload: dict[str, Any], client_id: str) -> httpx.Response:
        """Sends the payload and returns the raw upstream response.

        Raises ConfigurationError when no webhook URL is configured and
        UpstreamError when the webhook cannot be reached.
        """
        if not self.url:
            raise ConfigurationError("N8N_WEBHOOK_URL is not configured.")

        headers = {
            "Content-Type": "application/json",
            # Some WAFs block requests without a User-Agent
            "User-Agent": USER_AGENT,
            "X-Client-Id": client_id,
        }
        try:
            return await self.http.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Webhook request failed: {type(e).__name__}: {e}")
            raise UpstreamError(str(e) or type(e).__name__) from e
