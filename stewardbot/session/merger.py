"""Read-modify-write updates of the session document.

Every handler goes through ``SessionMerger.merge`` with only the fields it
changes; everything else in the stored document is kept. Concurrent merges
for the same identity are last-write-wins.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from stewardbot.config import SessionSettings
from stewardbot.schemas.session import SESSION_FIELDS, ChatSession, reset_fields
from stewardbot.session.store import RedisSessionStore, SessionStoreError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionMerger:
    """Applies partial updates to a stored ChatSession."""

    def __init__(self, store: RedisSessionStore, settings: SessionSettings) -> None:
        self._store = store
        self._ttl = settings.session_ttl_seconds
        self._history = settings.session_message_history

    async def load(self, identity: str) -> ChatSession:
        return await self._store.load(identity)

    async def merge(self, identity: str, partial: dict[str, Any]) -> ChatSession:
        """Merge ``partial`` into the stored document and write it back.

        Args:
            identity: Conversation identity (the inspector's chat phone number).
            partial: Field name → new value. ``None`` clears a field.

        Returns:
            The merged document, even if the write back to Redis failed.

        Raises:
            ValueError: If ``partial`` names an unknown field or the merged
                document does not validate.
        """
        unknown = set(partial) - SESSION_FIELDS
        if unknown:
            msg = f"Unknown session fields: {sorted(unknown)}"
            raise ValueError(msg)
        if partial.get("identity", identity) != identity:
            msg = "The identity of a session cannot be changed"
            raise ValueError(msg)

        current = await self._store.load(identity)
        now = _utcnow()

        data = dict(current)
        data.update(partial)
        data["created_at"] = current.created_at or now
        data["last_updated_at"] = now
        if len(data["recent_message_ids"]) > self._history:
            data["recent_message_ids"] = data["recent_message_ids"][-self._history:]

        try:
            merged = ChatSession.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid session update for {identity}: {exc}") from exc

        try:
            await self._store.save(merged, self._ttl)
        except SessionStoreError:
            logger.exception("Session write failed for %s, continuing with in-memory state", identity)
        return merged

    async def reset(self, identity: str, keep_identity: bool = True) -> ChatSession:
        """Explicit reset of the job attempt.

        With ``keep_identity`` the inspector binding and buffered media survive
        while job, cursors, drafts and menus are cleared. Without it the
        document is deleted and the next message starts at identification.
        """
        if keep_identity:
            return await self.merge(identity, reset_fields())

        try:
            await self._store.delete(identity)
        except SessionStoreError:
            logger.exception("Session delete failed for %s", identity)
        return ChatSession(identity=identity)
