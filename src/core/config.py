import os
from dataclasses import dataclass

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

USER_AGENT = "chat-relay/1.0"
# Same cap as the JSON body parser in front of the original Node relay
MAX_BODY_BYTES = 1024 * 1024


def _split_origins(raw: str) -> tuple[str, ...]:
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


def _flag(raw: str) -> bool:
    return raw.lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the relay."""

    webhook_url: str = ""
    redis_url: str = ""
    allowed_origins: tuple[str, ...] = ("http://localhost:3000",)
    public_base_url: str = ""
    request_ttl_seconds: int = 3600
    webhook_timeout: float = 30.0
    callback_secret: str = ""
    strict_callbacks: bool = False
    static_dir: str = "public"
    max_body_bytes: int = MAX_BODY_BYTES


def load_settings() -> Settings:
    """Builds settings from the environment as it is at call time."""
    return Settings(
        webhook_url=os.getenv("N8N_WEBHOOK_URL", ""),
        redis_url=os.getenv("REDIS_URL", ""),
        allowed_origins=_split_origins(
            os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")
        ),
        public_base_url=os.getenv("PUBLIC_BASE_URL", ""),
        request_ttl_seconds=int(os.getenv("REQUEST_TTL_SECONDS", "3600")),
        webhook_timeout=float(os.getenv("WEBHOOK_TIMEOUT", "30")),
        callback_secret=os.getenv("CALLBACK_SECRET", ""),
        strict_callbacks=_flag(os.getenv("STRICT_CALLBACKS", "false")),
        static_dir=os.getenv("STATIC_DIR", "public"),
        max_body_bytes=int(os.getenv("MAX_BODY_BYTES", str(MAX_BODY_BYTES))),
    )
