"""
Audit Logger
Appends agent decisions and dispatch outcomes to agent_activity_log.
"""
import logging
from typing import Any, Dict, Optional

from supabase import Client

logger = logging.getLogger(__name__)

AGENT_KEY = "campaign_orchestrator"


class AuditLogger:
    """
    Writes one agent_activity_log row per gate decision or dispatch outcome.

    Audit writes never raise: a failed insert is logged and the caller's
    outcome stands.
    """

    def __init__(self, supabase: Client, agent_key: str = AGENT_KEY):
        self.supabase = supabase
        self.agent_key = agent_key

    async def log(
        self,
        organization_id: Optional[str],
        action: str,
        status: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        lead_id: Optional[str] = None,
        task_id: Optional[str] = None,
        execution_ms: Optional[int] = None,
        agent_key: Optional[str] = None
    ) -> Optional[str]:
        """
        Append an activity row.

        Args:
            organization_id: Tenant the activity belongs to (None for worker-wide rows)
            action: What was attempted (e.g. "send_sms", "compliance_check")
            status: success, skipped, delayed or failed
            message: Human-readable summary
            details: Structured context (campaign id, channel, reason, error kind)
            lead_id: Lead involved
            task_id: Agent task involved
            execution_ms: Wall time for the invocation

        Returns:
            The new row id, or None if the write failed
        """
        row = {
            "organization_id": organization_id,
            "agent_key": agent_key or self.agent_key,
            "action": action,
            "status": status,
            "message": message,
            "details": {k: v for k, v in (details or {}).items() if v is not None},
            "lead_id": lead_id,
            "task_id": task_id,
            "execution_ms": execution_ms,
        }

        try:
            response = self.supabase.table("agent_activity_log").insert(row).execute()
        except Exception as e:
            logger.error(f"Failed to write audit entry ({action}/{status}): {e}", exc_info=True)
            return None

        return response.data[0]["id"] if response.data else None
