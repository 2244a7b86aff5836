"""
Rate Limiter
Sliding 60-minute send ceiling per campaign.

The count is derived from campaign_recipients rows on every check, so any
number of concurrent workers share the same budget without in-process state.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from outreach_engine.domain.models.campaign import RecipientStatus

logger = logging.getLogger(__name__)

WINDOW = timedelta(minutes=60)


def reschedule_delay(max_per_hour: int) -> int:
    """Minutes to push a throttled task forward."""
    return math.ceil(60 / max_per_hour) + 1


@dataclass
class RateLimitDecision:
    allowed: bool
    in_window: int = 0
    ceiling: Optional[int] = None

    @property
    def retry_after_minutes(self) -> Optional[int]:
        if self.allowed or not self.ceiling:
            return None
        return reschedule_delay(self.ceiling)

    @property
    def reason(self) -> str:
        if self.allowed:
            return "within rate limit"
        return f"Rate limit reached ({self.in_window}/{self.ceiling} in the last hour)"


class RateLimiter:
    """Counts sent and in-flight recipients over the trailing hour."""

    def __init__(self, supabase: Any):
        self.supabase = supabase

    async def count_in_window(
        self,
        campaign_id: str,
        now: Optional[datetime] = None,
        exclude_recipient_id: Optional[str] = None
    ) -> int:
        """
        Recipients sent, or queued for dispatch, within the last 60 minutes.

        Args:
            campaign_id: Campaign to count
            now: Window end (default: now)
            exclude_recipient_id: Recipient being evaluated, never counted
                against itself
        """
        now = now or datetime.now(timezone.utc)
        since = (now - WINDOW).isoformat()

        total = 0
        for status, column in (
            (RecipientStatus.SENT, "sent_at"),
            (RecipientStatus.QUEUED, "queued_at"),
        ):
            query = self.supabase.table("campaign_recipients").select(
                "id", count="exact"
            ).eq("campaign_id", campaign_id).eq("status", status.value).gte(column, since)
            if exclude_recipient_id:
                query = query.neq("id", exclude_recipient_id)
            response = query.execute()
            total += response.count or 0

        return total

    async def check(
        self,
        campaign_id: str,
        max_per_hour: Optional[int],
        now: Optional[datetime] = None,
        exclude_recipient_id: Optional[str] = None
    ) -> RateLimitDecision:
        """Allow when under the ceiling. A null ceiling always allows."""
        if not max_per_hour:
            return RateLimitDecision(allowed=True)

        in_window = await self.count_in_window(campaign_id, now, exclude_recipient_id)
        allowed = in_window < max_per_hour

        if not allowed:
            logger.info(
                f"Campaign {campaign_id[:8]} throttled: {in_window}/{max_per_hour} in the last hour"
            )

        return RateLimitDecision(allowed=allowed, in_window=in_window, ceiling=max_per_hour)
