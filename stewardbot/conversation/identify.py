"""Inspector identification.

The chat number is tried first. If it is not on file the inspector is asked
for their name and phone number, which are matched together.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from stewardbot.conversation import replies
from stewardbot.events.bus import emit
from stewardbot.schemas.events import EventType, SystemEvent
from stewardbot.schemas.session import ChatSession, InspectorRef, MenuKind

if TYPE_CHECKING:
    from stewardbot.config import InspectionSettings
    from stewardbot.conversation.jobs import JobController
    from stewardbot.conversation.router import InputEvent
    from stewardbot.persistence.adapter import InspectorRecord, PersistenceAdapter
    from stewardbot.session.merger import SessionMerger

logger = logging.getLogger(__name__)

_NAME_PHONE_RE = re.compile(r"^\s*(?P<name>[^\d,]+?)\s*[,;\s]\s*(?P<phone>\+?[\d\s()-]{6,})\s*$")


def normalize_phone(raw: str, default_country_code: str = "+65") -> str:
    """Return ``raw`` as +<digits>, adding the default country code when missing.

    >>> normalize_phone("9123 4567")
    '+6591234567'
    >>> normalize_phone("6591234567")
    '+6591234567'
    """
    digits = re.sub(r"\D", "", raw)
    if raw.strip().startswith("+"):
        return f"+{digits}"
    country = default_country_code.lstrip("+")
    if digits.startswith(country) and len(digits) > 8:
        return f"+{digits}"
    return f"+{country}{digits}"


def parse_name_and_phone(text: str) -> tuple[str, str] | None:
    """Split 'Full name, phone' into its parts, or None if it doesn't look like that."""
    match = _NAME_PHONE_RE.match(text)
    if match is None:
        return None
    name = " ".join(match.group("name").split())
    if not name:
        return None
    return name, match.group("phone").strip()


class IdentifyController:
    """Binds a conversation identity to an inspector."""

    def __init__(
        self,
        persistence: PersistenceAdapter,
        merger: SessionMerger,
        settings: InspectionSettings,
        jobs: JobController,
    ) -> None:
        self._persistence = persistence
        self._merger = merger
        self._country_code = settings.inspection_default_country_code
        self._jobs = jobs

    async def identify(self, session: ChatSession, event: InputEvent) -> str:
        if session.last_menu != MenuKind.IDENTIFY:
            phone = normalize_phone(session.identity, self._country_code)
            inspector = await self._persistence.find_inspector_by_phone(phone)
            if inspector is not None:
                return await self._bind(session, inspector)
            await self._merger.merge(session.identity, {"last_menu": MenuKind.IDENTIFY})
            return replies.ASK_IDENTITY

        parsed = parse_name_and_phone(event.text)
        if parsed is None:
            return replies.IDENTITY_FORMAT

        name, phone = parsed
        inspector = await self._persistence.find_inspector(name, normalize_phone(phone, self._country_code))
        if inspector is None:
            logger.info("No inspector matched for %s", session.identity)
            return replies.IDENTITY_NOT_FOUND
        return await self._bind(session, inspector)

    async def _bind(self, session: ChatSession, inspector: InspectorRecord) -> str:
        session = await self._merger.merge(
            session.identity,
            {
                "inspector": InspectorRef(id=inspector.id, name=inspector.name, phone=inspector.phone),
                "identified_at": datetime.now(timezone.utc),
            },
        )
        logger.info("Identity %s bound to inspector %s", session.identity, inspector.id)
        await emit(SystemEvent(
            event_type=EventType.INSPECTOR_IDENTIFIED,
            identity=session.identity,
            inspector_id=inspector.id,
            source_module="conversation.identify",
        ))
        menu = await self._jobs.show_menu(session)
        return f"{replies.greeting(inspector.name)}\n\n{menu}"
