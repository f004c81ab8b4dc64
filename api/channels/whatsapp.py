"""
WhatsApp transport via the Meta Cloud API.

Outbound sends go to the Graph API; inbound messages arrive on the
webhook route and are parsed here.
"""

import hashlib
import hmac
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from llm.errors import TransportSendError

from .base import ChannelTransport, InboundMessage, TransportStatus

logger = logging.getLogger(__name__)

MEDIA_TYPES = {"image", "audio", "video", "document", "sticker"}


class WhatsAppCloudTransport(ChannelTransport):
    """WhatsApp via Meta Cloud API."""

    BASE_URL = "https://graph.facebook.com/v18.0"

    def __init__(self, api_token: str, phone_number_id: str, client: Optional[httpx.AsyncClient] = None):
        super().__init__()
        self.api_token = api_token
        self.phone_number_id = phone_number_id
        self._client = client
        self._owns_client = client is None

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10)
        self._status = TransportStatus.READY
        logger.info(f"WhatsApp transport ready for {self.phone_number_id}")

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._status = TransportStatus.DISCONNECTED
        logger.info(f"WhatsApp transport stopped for {self.phone_number_id}")

    async def send_message(self, to: str, text: str) -> None:
        self._require_ready()
        url = f"{self.BASE_URL}/{self.phone_number_id}/messages"
        headers = {"Authorization": f"Bearer {self.api_token}", "Content-Type": "application/json"}
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": text},
        }
        try:
            resp = await self._client.post(url, json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Meta WhatsApp send failed: {e}")
            raise TransportSendError(f"WhatsApp send to {to} failed: {e}") from e
        msg_id = (resp.json().get("messages") or [{}])[0].get("id")
        logger.debug(f"WhatsApp message sent: {msg_id}")


def verify_signature(body: bytes, signature_header: Optional[str], app_secret: Optional[str]) -> bool:
    """Check ``X-Hub-Signature-256``; always passes when no secret is configured."""
    if not app_secret:
        return True
    if not signature_header:
        return False
    digest = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature_header, f"sha256={digest}")


def _parse_timestamp(raw: Any) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return int(time.time())


def parse_webhook_payload(payload: Mapping[str, Any]) -> List[Tuple[str, InboundMessage]]:
    """
    Extract customer messages from a Cloud API webhook body.

    Returns:
        ``(phone_number_id, message)`` pairs; status callbacks yield nothing
    """
    parsed = []
    for entry in payload.get("entry", []) or []:
        for change in entry.get("changes", []) or []:
            value = change.get("value", {}) or {}
            phone_number_id = (value.get("metadata") or {}).get("phone_number_id", "")
            contacts: Dict[str, Dict] = {c.get("wa_id"): c for c in value.get("contacts", []) or []}
            for message in value.get("messages", []) or []:
                sender = message.get("from") or ""
                message_type = message.get("type")
                body = ""
                media: Dict[str, Any] = {}
                if message_type == "text":
                    body = (message.get("text") or {}).get("body", "")
                elif message_type in MEDIA_TYPES:
                    media = message.get(message_type) or {}
                    body = media.get("caption", "")
                elif message_type == "interactive":
                    interactive = message.get("interactive") or {}
                    reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
                    body = reply.get("title", "")

                parsed.append((phone_number_id, InboundMessage(
                    id=message.get("id", ""),
                    sender=sender,
                    body=body,
                    timestamp=_parse_timestamp(message.get("timestamp")),
                    has_media=bool(media),
                    media_type=message_type if media else None,
                    media_filename=media.get("filename"),
                    media_mime_type=media.get("mime_type"),
                    sender_name=((contacts.get(sender) or {}).get("profile") or {}).get("name"),
                )))
    return parsed
