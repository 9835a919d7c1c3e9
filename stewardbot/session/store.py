"""Redis-backed session store — one JSON document per conversation identity.

Key layout: ``<prefix>:chat:session:<identity>`` with an idle TTL.

Usage:
    store = RedisSessionStore(redis_client, key_prefix="mc")
    session = await store.load("+6591234567")
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError
from redis.exceptions import RedisError

from stewardbot.schemas.session import ChatSession

logger = logging.getLogger(__name__)


class SessionStoreError(Exception):
    """Raised when a session document cannot be written."""


class RedisSessionStore:
    """Load, save and delete ChatSession documents in Redis."""

    def __init__(self, redis: Any, key_prefix: str = "mc") -> None:
        self._redis = redis
        self._prefix = key_prefix

    def key_for(self, identity: str) -> str:
        return f"{self._prefix}:chat:session:{identity}"

    async def load(self, identity: str) -> ChatSession:
        """Return the stored document, or an empty one.

        A miss, an expired key, a corrupt document and a Redis outage all
        look the same to the caller: a fresh session.
        """
        key = self.key_for(identity)
        try:
            raw = await self._redis.get(key)
        except (RedisError, OSError):
            logger.exception("Session store unavailable, starting fresh for %s", identity)
            return ChatSession(identity=identity)

        if raw is None:
            return ChatSession(identity=identity)

        try:
            session = ChatSession.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable session document at %s", key)
            return ChatSession(identity=identity)

        if session.identity != identity:
            logger.warning("Session document at %s belongs to %s, ignoring", key, session.identity)
            return ChatSession(identity=identity)
        return session

    async def save(self, session: ChatSession, ttl_seconds: int) -> None:
        """Write the whole document and (re)set its TTL.

        Raises:
            SessionStoreError: If Redis rejects or cannot take the write.
        """
        try:
            await self._redis.set(self.key_for(session.identity), session.model_dump_json(), ex=ttl_seconds)
        except (RedisError, OSError) as exc:
            raise SessionStoreError(f"Could not save session for {session.identity}") from exc

    async def delete(self, identity: str) -> None:
        try:
            await self._redis.delete(self.key_for(identity))
        except (RedisError, OSError) as exc:
            raise SessionStoreError(f"Could not delete session for {identity}") from exc
