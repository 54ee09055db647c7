import asyncio
import contextlib
import time
from collections.abc import Callable
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from core.logging import logger
from services.errors import StoreError

KEY_PREFIX = "chat:"


def now_ms() -> int:
    return int(time.time() * 1000)


class RequestRecord(BaseModel):
    """State of one relayed request, keyed by its correlation id."""

    status: Literal["processing", "completed"]
    data: dict[str, Any] | None = None
    timestamp: int


class RequestStore(Protocol):
    """Key-value store holding request records with a TTL."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def get(self, request_id: str) -> RequestRecord | None: ...

    async def set(self, request_id: str, record: RequestRecord, ttl: int) -> None: ...

    async def delete(self, request_id: str) -> None: ...

    async def pop(self, request_id: str) -> RequestRecord | None: ...


class MemoryRequestStore:
    """A process-local store with lazy expiry and a background purge task.

    The clock is injectable so tests can fast-forward past the TTL.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        purge_interval: float = 60.0,
    ) -> None:
        self._clock = clock
        self._purge_interval = purge_interval
        self._entries: dict[str, tuple[RequestRecord, float]] = {}
        self._purge_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    async def _purge_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._purge_interval)
                purged = self.purge_expired()
                if purged:
                    logger.info(f"Purged {purged} expired request records.")
        except asyncio.CancelledError:
            logger.info("Store purge task was cancelled.")

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (_, deadline) in self._entries.items() if deadline <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def start(self) -> None:
        self._purge_task = asyncio.create_task(self._purge_loop())
        logger.info("In-memory request store started.")

    async def stop(self) -> None:
        if self._purge_task:
            self._purge_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._purge_task, timeout=5)
            self._purge_task = None
        logger.info("In-memory request store stopped.")

    async def get(self, request_id: str) -> RequestRecord | None:
        entry = self._entries.get(request_id)
        if entry is None:
            return None
        record, deadline = entry
        if deadline <= self._clock():
            del self._entries[request_id]
            return None
        return record

    async def set(self, request_id: str, record: RequestRecord, ttl: int) -> None:
        self._entries[request_id] = (record, self._clock() + ttl)

    async def delete(self, request_id: str) -> None:
        self._entries.pop(request_id, None)

    async def pop(self, request_id: str) -> RequestRecord | None:
        # get() never suspends, so nothing runs between the read and the delete.
        record = await self.get(request_id)
        self._entries.pop(request_id, None)
        return record


class RedisRequestStore:
    """Stores records as JSON strings in Redis, relying on EX for expiry."""

    def __init__(self, url: str, prefix: str = KEY_PREFIX) -> None:
        self.redis = Redis.from_url(url, decode_responses=True)
        self.prefix = prefix

    def _key(self, request_id: str) -> str:
        return f"{self.prefix}{request_id}"

    @staticmethod
    def _decode(raw: str | None) -> RequestRecord | None:
        if raw is None:
            return None
        try:
            return RequestRecord.model_validate_json(raw)
        except ValidationError as e:
            raise StoreError(f"Corrupt request record: {e}") from e

    async def start(self) -> None:
        try:
            await self.redis.ping()
        except RedisError as e:
            raise StoreError(f"Redis is unreachable: {e}") from e
        logger.info("Redis request store connected.")

    async def stop(self) -> None:
        await self.redis.aclose()
        logger.info("Redis request store closed.")

    async def get(self, request_id: str) -> RequestRecord | None:
        try:
            raw = await self.redis.get(self._key(request_id))
        except RedisError as e:
            raise StoreError(str(e)) from e
        return self._decode(raw)

    async def set(self, request_id: str, record: RequestRecord, ttl: int) -> None:
        try:
            await self.redis.set(self._key(request_id), record.model_dump_json(), ex=ttl)
        except RedisError as e:
            raise StoreError(str(e)) from e

    async def delete(self, request_id: str) -> None:
        try:
            await self.redis.delete(self._key(request_id))
        except RedisError as e:
            raise StoreError(str(e)) from e

    async def pop(self, request_id: str) -> RequestRecord | None:
        try:
            raw = await self.redis.getdel(self._key(request_id))
        except RedisError as e:
            raise StoreError(str(e)) from e
        return self._decode(raw)


def create_store(redis_url: str) -> RequestStore:
    if redis_url:
        return RedisRequestStore(redis_url)
    logger.warning("REDIS_URL is not set; using the in-memory request store.")
    return MemoryRequestStore()
