"""
Unit Tests for the Human-Control Gate
"""
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock

from outreach_engine.domain.models.agent_task import AgentTask
from outreach_engine.domain.models.lead import Lead
from outreach_engine.domain.services.human_control import (
    HumanControlError,
    HumanControlGate,
    LeadNotFoundError,
    is_blocked,
)

NOW = datetime(2026, 3, 10, 16, 0, tzinfo=timezone.utc)


def make_task(created_at: datetime) -> AgentTask:
    return AgentTask(
        id="task-0001",
        organization_id="org-1",
        lead_id="lead-0001",
        action_type="sms",
        scheduled_for=created_at,
        created_at=created_at,
    )


class TestIsBlocked:
    def test_automated_lead(self):
        lead = Lead(id="lead-0001", organization_id="org-1")
        assert is_blocked(lead, make_task(NOW)) == (False, None)

    def test_controlled_lead(self):
        lead = Lead(id="lead-0001", organization_id="org-1", is_human_controlled=True, human_controlled_at=NOW)
        blocked, reason = is_blocked(lead)
        assert blocked is True
        assert reason == "Lead is under human control"

    def test_task_from_before_takeover_stays_blocked(self):
        lead = Lead(
            id="lead-0001", organization_id="org-1",
            human_controlled_at=NOW, human_control_released_at=NOW + timedelta(hours=1),
        )
        assert is_blocked(lead, make_task(NOW - timedelta(minutes=1)))[0] is True
        assert is_blocked(lead, make_task(NOW + timedelta(hours=2)))[0] is False


class TestHumanControlGate:
    @pytest.mark.asyncio
    async def test_take_control_counts_blocked_tasks(self, seed, supabase):
        lead = seed.lead()
        seed.task(lead["id"])
        seed.task(lead["id"])
        seed.task(lead["id"], status="completed")

        result = await HumanControlGate(supabase).take_control(lead["id"], "staff-1", "Wants a person")

        assert result["blocked_tasks"] == 2
        stored = supabase.get("leads", lead["id"])
        assert stored["is_human_controlled"] is True
        assert stored["human_controlled_by"] == "staff-1"
        assert stored["human_control_reason"] == "Wants a person"

    @pytest.mark.asyncio
    async def test_take_control_is_audited(self, seed, supabase):
        lead = seed.lead()
        audit = AsyncMock()

        await HumanControlGate(supabase, audit=audit).take_control(lead["id"], "staff-1", "Wants a person")

        kwargs = audit.log.call_args.kwargs
        assert kwargs["action"] == "human_takeover"
        assert kwargs["lead_id"] == lead["id"]

    @pytest.mark.asyncio
    async def test_reason_required(self, seed, supabase):
        lead = seed.lead()

        with pytest.raises(HumanControlError, match="reason"):
            await HumanControlGate(supabase).take_control(lead["id"], "staff-1", "   ")

    @pytest.mark.asyncio
    async def test_take_control_twice(self, seed, supabase):
        lead = seed.lead(is_human_controlled=True, human_controlled_by="staff-9")

        with pytest.raises(HumanControlError, match="already under human control"):
            await HumanControlGate(supabase).take_control(lead["id"], "staff-1", "Wants a person")

    @pytest.mark.asyncio
    async def test_unknown_lead(self, seed, supabase):
        with pytest.raises(LeadNotFoundError):
            await HumanControlGate(supabase).take_control("missing", "staff-1", "Wants a person")

    @pytest.mark.asyncio
    async def test_other_organization_is_not_found(self, seed, supabase):
        lead = seed.lead()

        with pytest.raises(LeadNotFoundError):
            await HumanControlGate(supabase).take_control(lead["id"], "staff-1", "Wants a person", "org-2")

    @pytest.mark.asyncio
    async def test_release_keeps_takeover_time(self, seed, supabase):
        controlled_at = (NOW - timedelta(hours=1)).isoformat()
        lead = seed.lead(is_human_controlled=True, human_controlled_at=controlled_at)

        await HumanControlGate(supabase).release(lead["id"], "staff-1")

        stored = supabase.get("leads", lead["id"])
        assert stored["is_human_controlled"] is False
        assert stored["human_controlled_at"] == controlled_at
        assert stored["human_control_released_by"] == "staff-1"

    @pytest.mark.asyncio
    async def test_release_when_not_controlled(self, seed, supabase):
        lead = seed.lead()

        with pytest.raises(HumanControlError, match="not under human control"):
            await HumanControlGate(supabase).release(lead["id"], "staff-1")
