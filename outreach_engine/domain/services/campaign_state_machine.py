"""
Campaign State Machine
Lifecycle transitions, send counters and progress for outreach campaigns.

    draft -> active <-> paused
    active -> completed          (only when no recipient is pending/queued)
    draft | active | paused -> cancelled

Transitions are conditional updates on the current status, so two operators
racing on the same campaign cannot both succeed.
"""
import logging
from typing import Dict, Optional, Set

from supabase import Client

from outreach_engine.domain.models.campaign import (
    Campaign,
    CampaignProgress,
    CampaignStatus,
    OPEN_RECIPIENT_STATUSES,
    RecipientStatus,
)
from outreach_engine.utils.timestamps import utc_now

logger = logging.getLogger(__name__)


class InvalidCampaignTransition(Exception):
    """Raised when a transition is not allowed from the current status."""

    def __init__(self, campaign_id: str, current: str, target: str, detail: Optional[str] = None):
        self.campaign_id = campaign_id
        self.current = current
        self.target = target
        message = f"Cannot move campaign {campaign_id} from {current} to {target}"
        if detail:
            message = f"{message}: {detail}"
        self.message = message
        super().__init__(self.message)


class CampaignNotFoundError(Exception):
    """Raised when a campaign does not exist."""
    pass


# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: Dict[CampaignStatus, Set[CampaignStatus]] = {
    CampaignStatus.ACTIVE: {CampaignStatus.DRAFT, CampaignStatus.PAUSED},
    CampaignStatus.PAUSED: {CampaignStatus.ACTIVE},
    CampaignStatus.COMPLETED: {CampaignStatus.ACTIVE},
    CampaignStatus.CANCELLED: {CampaignStatus.DRAFT, CampaignStatus.ACTIVE, CampaignStatus.PAUSED},
}


class CampaignStateMachine:
    """Applies lifecycle transitions to campaigns rows."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def get(self, campaign_id: str, organization_id: Optional[str] = None) -> Campaign:
        query = self.supabase.table("campaigns").select("*").eq("id", campaign_id)
        if organization_id:
            query = query.eq("organization_id", organization_id)
        response = query.limit(1).execute()
        if not response.data:
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")
        return Campaign.from_row(response.data[0])

    async def _transition(
        self,
        campaign_id: str,
        target: CampaignStatus,
        allowed_from: Set[CampaignStatus],
        extra: Optional[Dict] = None
    ) -> Campaign:
        campaign = await self.get(campaign_id)
        if campaign.status not in allowed_from:
            raise InvalidCampaignTransition(campaign_id, campaign.status.value, target.value)

        update_data = {"status": target.value, **(extra or {})}
        response = self.supabase.table("campaigns").update(update_data).eq(
            "id", campaign_id
        ).eq("status", campaign.status.value).execute()

        if not response.data:
            # Status moved underneath us
            current = await self.get(campaign_id)
            raise InvalidCampaignTransition(campaign_id, current.status.value, target.value)

        logger.info(f"Campaign {campaign_id[:8]}: {campaign.status.value} -> {target.value}")
        return Campaign.from_row(response.data[0])

    async def activate(self, campaign_id: str) -> Campaign:
        campaign = await self.get(campaign_id)
        if campaign.status == CampaignStatus.PAUSED:
            raise InvalidCampaignTransition(campaign_id, campaign.status.value, "active", "use resume")
        return await self._transition(
            campaign_id,
            CampaignStatus.ACTIVE,
            {CampaignStatus.DRAFT},
            {"started_at": utc_now().isoformat()},
        )

    async def pause(self, campaign_id: str) -> Campaign:
        return await self._transition(
            campaign_id, CampaignStatus.PAUSED, ALLOWED_TRANSITIONS[CampaignStatus.PAUSED]
        )

    async def resume(self, campaign_id: str) -> Campaign:
        return await self._transition(campaign_id, CampaignStatus.ACTIVE, {CampaignStatus.PAUSED})

    async def cancel(self, campaign_id: str) -> Campaign:
        """
        Cancel a campaign.

        Pending recipients are not touched here; each resolves skipped when
        its own task is next evaluated.
        """
        return await self._transition(
            campaign_id,
            CampaignStatus.CANCELLED,
            ALLOWED_TRANSITIONS[CampaignStatus.CANCELLED],
            {"cancelled_at": utc_now().isoformat()},
        )

    async def complete(self, campaign_id: str) -> Campaign:
        """Complete an active campaign. Fails while recipients remain open."""
        remaining = await self.count_open(campaign_id)
        if remaining:
            campaign = await self.get(campaign_id)
            raise InvalidCampaignTransition(
                campaign_id,
                campaign.status.value,
                "completed",
                f"{remaining} recipients still pending or queued",
            )
        return await self._transition(
            campaign_id,
            CampaignStatus.COMPLETED,
            ALLOWED_TRANSITIONS[CampaignStatus.COMPLETED],
            {"completed_at": utc_now().isoformat()},
        )

    async def count_open(self, campaign_id: str) -> int:
        """Recipients still pending or queued."""
        response = self.supabase.table("campaign_recipients").select(
            "id", count="exact"
        ).eq("campaign_id", campaign_id).in_("status", OPEN_RECIPIENT_STATUSES).execute()
        return response.count or 0

    async def refresh_sent_count(self, campaign_id: str) -> int:
        """
        Recompute sent_count from recipient rows.

        Counting instead of incrementing keeps the value correct under
        concurrent sends.
        """
        response = self.supabase.table("campaign_recipients").select(
            "id", count="exact"
        ).eq("campaign_id", campaign_id).eq("status", RecipientStatus.SENT.value).execute()
        sent_count = response.count or 0

        self.supabase.table("campaigns").update(
            {"sent_count": sent_count}
        ).eq("id", campaign_id).execute()
        return sent_count

    async def maybe_complete(self, campaign_id: str) -> bool:
        """
        Complete an active campaign once no recipient is pending or queued.

        Returns:
            True if this call moved the campaign to completed
        """
        if await self.count_open(campaign_id):
            return False

        response = self.supabase.table("campaigns").update({
            "status": CampaignStatus.COMPLETED.value,
            "completed_at": utc_now().isoformat(),
        }).eq("id", campaign_id).eq("status", CampaignStatus.ACTIVE.value).execute()

        completed = bool(response.data)
        if completed:
            logger.info(f"Campaign {campaign_id[:8]} completed: no recipients remaining")
        return completed

    async def progress(self, campaign_id: str) -> CampaignProgress:
        """Per-status recipient counts plus reasons for skipped/failed recipients."""
        campaign = await self.get(campaign_id)

        response = self.supabase.table("campaign_recipients").select(
            "id, lead_id, status, error_message"
        ).eq("campaign_id", campaign_id).execute()

        counts = {status.value: 0 for status in RecipientStatus}
        reasons = []
        for row in response.data or []:
            status = row.get("status") or RecipientStatus.PENDING.value
            counts[status] = counts.get(status, 0) + 1
            if status in (RecipientStatus.SKIPPED.value, RecipientStatus.FAILED.value):
                reasons.append({
                    "recipient_id": row["id"],
                    "lead_id": row.get("lead_id"),
                    "status": status,
                    "reason": row.get("error_message"),
                })

        return CampaignProgress(
            campaign_id=campaign_id,
            status=campaign.status,
            sent_count=counts[RecipientStatus.SENT.value],
            counts=counts,
            reasons=reasons,
        )
