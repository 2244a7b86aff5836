"""
Campaigns API
Lifecycle transitions and progress for outreach campaigns
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from outreach_engine.domain.services.campaign_state_machine import (
    CampaignNotFoundError,
    CampaignStateMachine,
    InvalidCampaignTransition,
)
from outreach_engine.api.v1.dependencies import get_campaign_state_machine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/campaigns", tags=["campaigns"])

TRANSITIONS = ("activate", "pause", "resume", "cancel", "complete")


@router.post("/{campaign_id}/{action}")
async def transition_campaign(
    campaign_id: str,
    action: str,
    machine: CampaignStateMachine = Depends(get_campaign_state_machine)
):
    """
    Apply a lifecycle transition.

    Cancelling does not touch pending recipients; each one resolves skipped
    when its task is next evaluated.
    """
    if action not in TRANSITIONS:
        raise HTTPException(status_code=404, detail=f"Unknown campaign action: {action}")

    try:
        campaign = await getattr(machine, action)(campaign_id)
    except CampaignNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidCampaignTransition as e:
        raise HTTPException(status_code=409, detail=e.message)

    return {"campaign": campaign.model_dump(mode="json")}


@router.get("/{campaign_id}/progress")
async def campaign_progress(
    campaign_id: str,
    machine: CampaignStateMachine = Depends(get_campaign_state_machine)
):
    """Per-status recipient counts plus reasons for skipped/failed recipients"""
    try:
        progress = await machine.progress(campaign_id)
    except CampaignNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {**progress.model_dump(mode="json"), "remaining": progress.remaining}
