"""
Escalation API routes for Groundline Support Bot.

Lets operators see open escalations, take a conversation over and hand it
back to the bot.
"""

import logging

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from ..services import get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/escalations")


class TakeoverRequest(BaseModel):
    operator: str


def _manager():
    services = get_services()
    if services.escalation_manager is None:
        raise HTTPException(status_code=503, detail="Escalation service unavailable")
    return services.escalation_manager


@router.get("")
async def list_escalations(org_id: str = Query(...)):
    """List open escalations for an organization, oldest first."""
    escalations = await _manager().list_open(org_id)
    return {"escalations": [e.to_dict() for e in escalations]}


@router.get("/stats")
async def escalation_stats(org_id: str = Query(...)):
    return await _manager().stats(org_id)


@router.post("/{escalation_id}/takeover")
async def takeover_escalation(escalation_id: str, request: TakeoverRequest):
    """An operator takes the conversation over from the bot."""
    escalation = await _manager().takeover(escalation_id, request.operator)
    if escalation is None:
        raise HTTPException(status_code=404, detail="Escalation not found")
    logger.info(f"Escalation {escalation_id} taken over by {request.operator}")
    return escalation.to_dict()


@router.post("/{escalation_id}/resolve")
async def resolve_escalation(escalation_id: str):
    """Close the escalation and return the conversation to the bot."""
    escalation = await _manager().resolve(escalation_id)
    if escalation is None:
        raise HTTPException(status_code=404, detail="Escalation not found")
    return escalation.to_dict()
