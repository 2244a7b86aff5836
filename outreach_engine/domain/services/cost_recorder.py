"""
Cost Recorder
Appends provider usage costs to cost_records after each successful send.
"""
import logging
from typing import Optional, Tuple

from supabase import Client

from outreach_engine.core.config import Settings, get_settings
from outreach_engine.domain.models.communication import CostEntry

logger = logging.getLogger(__name__)


class CostRecorder:
    """
    Maps a channel to its billed service and writes one CostEntry per send.

    Default rates come from Settings; a cost reported by the provider
    replaces the configured unit cost.
    """

    def __init__(self, supabase: Client, settings: Optional[Settings] = None):
        self.supabase = supabase
        self.settings = settings or get_settings()

    def rate_for(self, channel: str) -> Tuple[str, float, str, float]:
        """Return (service, quantity, unit, unit_cost) for a channel."""
        if channel == "sms":
            return "vonage_sms", 1.0, "message", self.settings.sms_unit_cost
        if channel == "email":
            return "resend_email", 1.0, "email", self.settings.email_unit_cost
        if channel == "call":
            return (
                "bland_ai",
                self.settings.voice_estimated_minutes,
                "minute",
                self.settings.voice_unit_cost_per_minute,
            )
        raise ValueError(f"No cost rate for channel: {channel}")

    def build_entry(
        self,
        organization_id: str,
        channel: str,
        lead_id: Optional[str] = None,
        communication_id: Optional[str] = None,
        reported_cost: Optional[float] = None
    ) -> CostEntry:
        service, quantity, unit, unit_cost = self.rate_for(channel)
        if reported_cost is not None:
            unit_cost = reported_cost

        return CostEntry(
            organization_id=organization_id,
            service=service,
            usage_quantity=quantity,
            usage_unit=unit,
            unit_cost=unit_cost,
            total_cost=round(quantity * unit_cost, 6),
            lead_id=lead_id,
            communication_id=communication_id,
        )

    async def record(
        self,
        organization_id: str,
        channel: str,
        lead_id: Optional[str] = None,
        communication_id: Optional[str] = None,
        reported_cost: Optional[float] = None
    ) -> CostEntry:
        """
        Record the cost of one send.

        Args:
            organization_id: Billed organization
            channel: sms, email or call
            lead_id: Recipient lead
            communication_id: The Communication row for the send
            reported_cost: Provider-reported unit cost, if any

        Returns:
            The CostEntry written
        """
        entry = self.build_entry(organization_id, channel, lead_id, communication_id, reported_cost)
        self.supabase.table("cost_records").insert(entry.to_row()).execute()

        logger.debug(f"Recorded {entry.service} cost {entry.total_cost} for org {organization_id[:8]}")
        return entry

