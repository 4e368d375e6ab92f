"""
Redis-backed cache provider for Bridge Service.

Holds user sessions, entity documents, and the modifiedOn timestamps that
etag-supported routes use to decide freshness.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger
from shared.errors import ExternalServiceError
from .cache_key import CacheKey
from ..auth.models import UserSession


class CacheProvider:
    """Async access to the shared Redis cache."""

    def __init__(self, redis_url: str, socket_timeout: int = 5, session_ttl: Optional[int] = None):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.session_ttl = session_ttl
        self.logger = get_logger("bridge.cache.provider")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
                retry_on_timeout=True,
                health_check_interval=30
            )
        return self._redis

    async def start(self):
        """Connect and verify the Redis cache."""
        try:
            redis_client = await self._get_redis()
            await redis_client.ping()
            self.logger.info("Redis cache started")
        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise ExternalServiceError("redis", str(e))

    async def stop(self):
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis cache stopped")

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            redis_client = await self._get_redis()
            await redis_client.ping()
            return True
        except Exception:
            return False

    # Sessions

    async def get_user_session(self, session_token: Optional[str]) -> Optional[UserSession]:
        """Load the session stored under a token, or None if there is none."""
        if not session_token:
            return None

        raw = await self._read(CacheKey.user_session(session_token))
        if raw is None:
            return None

        try:
            return UserSession.model_validate_json(raw)
        except PydanticValidationError as e:
            self.logger.warning("Discarding unreadable session", error=str(e))
            return None

    async def set_user_session(self, session: UserSession) -> None:
        await self._write(
            CacheKey.user_session(session.session_token),
            session.model_dump_json(),
            ttl=self.session_ttl
        )

    async def remove_user_session(self, session_token: str) -> None:
        await self._delete(CacheKey.user_session(session_token))

    # Etag timestamps

    async def get_etag(self, cache_key: CacheKey) -> Optional[datetime]:
        """
        Get the modifiedOn timestamp stored under an etag key.

        A missing or unreadable value is reported as None, which callers
        treat as unknown freshness.
        """
        try:
            raw = await self._read(cache_key)
        except ExternalServiceError as e:
            self.logger.error("Etag lookup failed", cache_key=str(cache_key), error=e.message)
            return None

        if raw is None:
            return None

        timestamp = parse_timestamp(raw)
        if timestamp is None:
            self.logger.warning("Unparseable etag timestamp", cache_key=str(cache_key), value=raw)
        return timestamp

    async def set_etag(self, cache_key: CacheKey, timestamp: datetime) -> None:
        """Record that the entity behind ``cache_key`` changed at ``timestamp``."""
        await self._write(cache_key, format_timestamp(timestamp))
        self.logger.debug("Updated etag timestamp", cache_key=str(cache_key))

    async def remove_etag(self, cache_key: CacheKey) -> None:
        await self._delete(cache_key)
        self.logger.debug("Removed etag timestamp", cache_key=str(cache_key))

    # Documents

    async def get_object(self, cache_key: CacheKey) -> Optional[Any]:
        raw = await self._read(cache_key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            self.logger.warning("Failed to deserialize cached object", cache_key=str(cache_key))
            return None

    async def set_object(self, cache_key: CacheKey, value: Any, ttl: Optional[int] = None) -> None:
        await self._write(cache_key, json.dumps(value), ttl=ttl)

    async def remove_object(self, cache_key: CacheKey) -> None:
        await self._delete(cache_key)

    async def _read(self, cache_key: CacheKey) -> Optional[str]:
        try:
            redis_client = await self._get_redis()
            return await redis_client.get(str(cache_key))
        except RedisError as e:
            raise ExternalServiceError("redis", str(e))

    async def _write(self, cache_key: CacheKey, value: str, ttl: Optional[int] = None) -> None:
        try:
            redis_client = await self._get_redis()
            if ttl:
                await redis_client.setex(str(cache_key), ttl, value)
            else:
                await redis_client.set(str(cache_key), value)
        except RedisError as e:
            raise ExternalServiceError("redis", str(e))

    async def _delete(self, cache_key: CacheKey) -> None:
        try:
            redis_client = await self._get_redis()
            await redis_client.delete(str(cache_key))
        except RedisError as e:
            raise ExternalServiceError("redis", str(e))


def format_timestamp(value: datetime) -> str:
    """Serialize a timestamp as ISO 8601 in UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse ISO timestamp strings safely."""
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except ValueError:
        return None
