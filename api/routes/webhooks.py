"""
Webhook Routes for Groundline Support Bot.

Receives WhatsApp Cloud API callbacks and hands each customer message to
the message pipeline in the background.
"""

import json
import logging
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from config.settings import get_settings
from ..channels.registry import EVENT_MESSAGE
from ..channels.whatsapp import parse_webhook_payload, verify_signature
from ..services import get_services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/webhooks/whatsapp")
async def verify_whatsapp_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: str = Query(default="", alias="hub.challenge"),
):
    """Meta subscription handshake: echo the challenge when the token matches."""
    settings = get_settings()
    if mode == "subscribe" and settings.whatsapp_verify_token and token == settings.whatsapp_verify_token:
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(challenge)
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/webhooks/whatsapp")
async def receive_whatsapp_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Receive inbound WhatsApp messages.

    Always answers quickly; the pipeline runs after the response is sent.
    """
    settings = get_settings()
    body = await request.body()
    if not verify_signature(body, request.headers.get("X-Hub-Signature-256"), settings.whatsapp_app_secret):
        logger.warning("Rejected WhatsApp webhook with bad signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    messages = parse_webhook_payload(payload)
    if not messages:
        return {"status": "ok", "accepted": 0}

    services = get_services()
    if services.pipeline is None:
        logger.warning(f"Pipeline unavailable, dropping {len(messages)} inbound message(s)")
        return {"status": "ok", "accepted": 0}

    org_ids: Dict[str, Optional[str]] = {}
    accepted = 0
    for phone_number_id, message in messages:
        if phone_number_id not in org_ids:
            org_ids[phone_number_id] = await services.org_id_for_phone_number_id(phone_number_id)

        org_id = org_ids[phone_number_id]
        if org_id is None:
            logger.warning(f"No organization for phone number id {phone_number_id}, message ignored")
            continue

        background_tasks.add_task(services.registry.dispatch, EVENT_MESSAGE, org_id, message)
        accepted += 1

    return {"status": "ok", "accepted": accepted}
