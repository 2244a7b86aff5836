"""
Human-Control Gate
Per-lead switch that suspends automated outreach while staff handle a lead.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from supabase import Client

from outreach_engine.domain.models.agent_task import AgentTask, TaskStatus
from outreach_engine.domain.models.lead import Lead
from outreach_engine.domain.services.audit_logger import AuditLogger
from outreach_engine.utils.org_filter import fetch_one
from outreach_engine.utils.timestamps import as_utc, utc_now

logger = logging.getLogger(__name__)


class HumanControlError(Exception):
    """Raised when a take-control or release request is invalid."""
    pass


class LeadNotFoundError(HumanControlError):
    pass


def is_blocked(lead: Lead, task: Optional[AgentTask] = None) -> Tuple[bool, Optional[str]]:
    """
    Whether automation is blocked for a lead (and, if given, a specific task).

    A task created at or before the lead's most recent takeover stays
    blocked after release; staff create a new task to resume outreach.
    """
    if lead.is_human_controlled:
        return True, "Lead is under human control"

    if task is not None and task.created_at and lead.human_controlled_at:
        if as_utc(task.created_at) <= as_utc(lead.human_controlled_at):
            return True, "Task created before human takeover"

    return False, None


class HumanControlGate:
    """Staff actions that move a lead between automated and human-controlled."""

    def __init__(self, supabase: Client, audit: Optional[AuditLogger] = None):
        self.supabase = supabase
        self.audit = audit or AuditLogger(supabase)

    def _load_lead(self, lead_id: str, organization_id: Optional[str]) -> Lead:
        row = fetch_one(self.supabase, "leads", lead_id, organization_id)
        if not row:
            raise LeadNotFoundError(f"Lead not found: {lead_id}")
        return Lead.from_row(row)

    async def take_control(
        self,
        lead_id: str,
        staff_id: str,
        reason: str,
        organization_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Suspend automation for a lead.

        In-flight dispatches are not interrupted; every pending or future
        automated task for the lead is skipped when evaluated.

        Returns:
            Dict with lead_id, controlled_at and the number of pending tasks
            now blocked
        """
        if not reason or not reason.strip():
            raise HumanControlError("A reason is required to take control of a lead")

        lead = self._load_lead(lead_id, organization_id)
        if lead.is_human_controlled:
            raise HumanControlError(
                f"Lead {lead_id} is already under human control by {lead.human_controlled_by}"
            )

        controlled_at = utc_now().isoformat()
        self.supabase.table("leads").update({
            "is_human_controlled": True,
            "human_controlled_by": staff_id,
            "human_controlled_at": controlled_at,
            "human_control_reason": reason.strip(),
            "human_control_released_by": None,
            "human_control_released_at": None,
        }).eq("id", lead_id).execute()

        pending = self.supabase.table("agent_tasks").select("id", count="exact").eq(
            "lead_id", lead_id
        ).eq("status", TaskStatus.PENDING.value).execute()
        blocked_tasks = pending.count or 0

        logger.info(f"Lead {lead_id[:8]} taken under human control by {staff_id} ({blocked_tasks} tasks blocked)")

        await self.audit.log(
            organization_id=lead.organization_id,
            action="human_takeover",
            status="success",
            message=f"Staff {staff_id} took control: {reason.strip()}",
            details={"staff_id": staff_id, "blocked_tasks": blocked_tasks},
            lead_id=lead_id,
        )

        return {
            "lead_id": lead_id,
            "is_human_controlled": True,
            "controlled_at": controlled_at,
            "blocked_tasks": blocked_tasks,
        }

    async def release(
        self,
        lead_id: str,
        staff_id: str,
        organization_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Return a lead to automated handling.

        Tasks already resolved stay resolved, and tasks created before the
        takeover stay blocked.
        """
        lead = self._load_lead(lead_id, organization_id)
        if not lead.is_human_controlled:
            raise HumanControlError(f"Lead {lead_id} is not under human control")

        released_at = utc_now().isoformat()
        self.supabase.table("leads").update({
            "is_human_controlled": False,
            "human_control_released_by": staff_id,
            "human_control_released_at": released_at,
        }).eq("id", lead_id).execute()

        logger.info(f"Lead {lead_id[:8]} released to automation by {staff_id}")

        await self.audit.log(
            organization_id=lead.organization_id,
            action="human_release",
            status="success",
            message=f"Staff {staff_id} released lead to automation",
            details={"staff_id": staff_id},
            lead_id=lead_id,
        )

        return {
            "lead_id": lead_id,
            "is_human_controlled": False,
            "released_at": released_at,
        }
