"""WhatsApp Business API adapter — receives webhooks from the Meta Cloud API.

Handles:
- GET  /webhook/whatsapp  → Meta verification handshake
- POST /webhook/whatsapp  → Incoming messages (text, interactive, image, video)

Photos and videos are downloaded from the Graph API, uploaded to object
storage and handed to the conversation engine as attachments. Replies go out
through the WhatsApp Cloud API.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import weakref

import httpx
from fastapi import APIRouter, Query, Request, Response

from stewardbot.config import settings
from stewardbot.conversation import replies
from stewardbot.conversation.engine import ConversationEngine
from stewardbot.db.engine import async_session_factory, redis_client
from stewardbot.media.storage import ObjectStorage, StorageError
from stewardbot.models.enums import MediaType
from stewardbot.persistence.sql import SqlPersistenceAdapter
from stewardbot.schemas.messages import Attachment, InboundMessage
from stewardbot.security.rate_limiter import RateLimiter
from stewardbot.session.merger import SessionMerger
from stewardbot.session.store import RedisSessionStore

logger = logging.getLogger(__name__)

whatsapp_router = APIRouter(prefix="/webhook", tags=["whatsapp"])

# ── Wiring ───────────────────────────────────────────────────────────

rate_limiter = RateLimiter(redis_client)
object_storage = ObjectStorage(settings.storage)
conversation_engine = ConversationEngine(
    merger=SessionMerger(
        RedisSessionStore(redis_client, key_prefix=settings.session.session_key_prefix),
        settings.session,
    ),
    persistence=SqlPersistenceAdapter(async_session_factory),
    settings=settings.inspection,
)

# Messages from one sender are handled one at a time.
_sender_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

_background_tasks: set[asyncio.Task[None]] = set()

_MEDIA_TYPES: dict[str, MediaType] = {"image": MediaType.PHOTO, "video": MediaType.VIDEO}

UNSUPPORTED_MESSAGE = "Sorry, I can only read text messages, photos and videos. Please try again."
MEDIA_FAILED_MESSAGE = "Sorry, I couldn't receive that photo or video. Please send it again."

# ── Helpers ──────────────────────────────────────────────────────────


def _is_configured() -> bool:
    wa = settings.whatsapp
    return bool(wa.whatsapp_api_url and wa.whatsapp_api_token and wa.whatsapp_verify_token)


def _verify_signature(payload: bytes, signature_header: str) -> bool:
    """Verify X-Hub-Signature-256 from Meta. Skipped when no app secret is set."""
    app_secret = settings.whatsapp.whatsapp_app_secret
    if not app_secret:
        return True

    if not signature_header.startswith("sha256="):
        return False

    expected = hmac.new(app_secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header.removeprefix("sha256="))


def _auth_headers() -> dict[str, str]:
    return {
        "Authorization": f"Bearer {settings.whatsapp.whatsapp_api_token}",
        "Content-Type": "application/json",
    }


def _graph_base() -> str:
    """https://graph.facebook.com/vXX.X from the phone-number-scoped API URL."""
    base_url = settings.whatsapp.whatsapp_api_url.rstrip("/")
    parts = base_url.split("/")
    return "/".join(parts[:4]) if len(parts) >= 4 else base_url


# ── Webhook endpoints ────────────────────────────────────────────────


@whatsapp_router.get("/whatsapp")
async def verify_webhook(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
) -> Response:
    """Meta webhook verification handshake (GET)."""
    if not _is_configured():
        return Response(content="WhatsApp not configured", status_code=503)

    if (
        hub_mode == "subscribe"
        and hub_verify_token == settings.whatsapp.whatsapp_verify_token
        and hub_challenge is not None
    ):
        logger.info("WhatsApp webhook verified successfully")
        return Response(content=hub_challenge, media_type="text/plain")

    logger.warning("WhatsApp webhook verification failed: mode=%s", hub_mode)
    return Response(content="Verification failed", status_code=403)


@whatsapp_router.post("/whatsapp")
async def receive_webhook(request: Request) -> dict[str, str]:
    """Receive incoming messages (POST) and process them in the background.

    Meta retries on slow responses, so the webhook returns immediately;
    redeliveries are caught by message id in the engine.
    """
    if not _is_configured():
        return {"status": "not_configured"}

    body = await request.body()
    signature = request.headers.get("X-Hub-Signature-256", "")
    if not _verify_signature(body, signature):
        logger.warning("WhatsApp webhook signature verification failed")
        return {"status": "invalid_signature"}

    payload = await request.json()

    # payload.entry[].changes[].value.messages[]
    for entry in payload.get("entry", []):
        for change in entry.get("changes", []):
            for message in change.get("value", {}).get("messages", []):
                task = asyncio.create_task(_handle_whatsapp_message(message))
                _background_tasks.add(task)
                task.add_done_callback(_background_tasks.discard)

    return {"status": "ok"}


# ── Message handling ─────────────────────────────────────────────────


async def _handle_whatsapp_message(message: dict) -> None:
    """Serialize per sender, then route one message to the conversation engine."""
    wa_id = message.get("from", "")
    lock = _sender_locks.get(wa_id)
    if lock is None:
        lock = asyncio.Lock()
        _sender_locks[wa_id] = lock
    async with lock:
        await _process_whatsapp_message(message)


async def _process_whatsapp_message(message: dict) -> None:
    wa_id = message.get("from", "")
    msg_type = message.get("type", "")

    wa = settings.whatsapp
    allowed, retry_after = await rate_limiter.check(
        f"rate:{wa_id}:msg", limit=wa.whatsapp_rate_limit, window=wa.whatsapp_rate_window
    )
    if not allowed:
        logger.warning("Rate limit hit for %s (retry in %ds)", wa_id, retry_after)
        await send_whatsapp_message(
            wa_id, f"You're sending messages too quickly. Please wait {retry_after} seconds."
        )
        return

    text = ""
    attachments: list[Attachment] = []

    if msg_type == "text":
        text = message.get("text", {}).get("body", "")
    elif msg_type == "interactive":
        interactive = message.get("interactive", {})
        reply = interactive.get(interactive.get("type", ""), {})
        text = reply.get("title", "")
    elif msg_type in _MEDIA_TYPES:
        media = message.get(msg_type, {})
        attachment = await _store_whatsapp_media(
            wa_id, media.get("id", ""), _MEDIA_TYPES[msg_type], media.get("caption")
        )
        if attachment is None:
            await send_whatsapp_message(wa_id, MEDIA_FAILED_MESSAGE)
            return
        attachments.append(attachment)
    else:
        await send_whatsapp_message(wa_id, UNSUPPORTED_MESSAGE)
        return

    inbound = InboundMessage(
        conversation_identity=wa_id,
        raw_text=text,
        attachments=attachments,
        message_id=message.get("id"),
    )
    try:
        response = (await conversation_engine.process_message(inbound)).reply_text
    except Exception:
        logger.exception("Error processing WhatsApp message from %s", wa_id)
        response = replies.GENERIC_ERROR

    await send_whatsapp_message(wa_id, response)


# ── Media ────────────────────────────────────────────────────────────


async def _download_whatsapp_media(media_id: str) -> tuple[bytes, str] | None:
    """Download media from the Cloud API (two steps: metadata → bytes).

    Returns (bytes, mime type), or None if either step fails.
    """
    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            meta_resp = await client.get(f"{_graph_base()}/{media_id}", headers=_auth_headers())
            meta_resp.raise_for_status()
            meta = meta_resp.json()
            media_url = meta.get("url", "")
            if not media_url:
                logger.warning("No URL in media metadata for %s", media_id)
                return None

            data_resp = await client.get(media_url, headers=_auth_headers())
            data_resp.raise_for_status()
            return data_resp.content, meta.get("mime_type", "application/octet-stream")
    except httpx.HTTPError:
        logger.exception("Failed to download WhatsApp media %s", media_id)
        return None


async def _store_whatsapp_media(
    wa_id: str,
    media_id: str,
    media_type: MediaType,
    caption: str | None,
) -> Attachment | None:
    """Copy one WhatsApp media item into object storage."""
    if not media_id:
        return None
    downloaded = await _download_whatsapp_media(media_id)
    if downloaded is None:
        return None

    data, mime_type = downloaded
    # Keyed by the WhatsApp media id: a redelivered webhook overwrites its own object
    key = object_storage.build_key(wa_id, mime_type, source_id=media_id)
    try:
        url = await object_storage.put(data, key, mime_type)
    except StorageError:
        logger.exception("Failed to store WhatsApp media %s", media_id)
        return None
    return Attachment(url=url, storage_key=key, media_type=media_type, caption=caption)


# ── Message sending ──────────────────────────────────────────────────


async def send_whatsapp_message(to: str, text: str) -> bool:
    """Send a plain text message via the Cloud API. Returns True on success."""
    url = f"{settings.whatsapp.whatsapp_api_url.rstrip('/')}/messages"
    payload = {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "text",
        "text": {"body": text},
    }

    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.post(url, json=payload, headers=_auth_headers())
            resp.raise_for_status()
            return True
    except httpx.HTTPError:
        logger.exception("Failed to send WhatsApp message to %s", to)
        return False
