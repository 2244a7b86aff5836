"""
Tests for the API Endpoints
Agent task invocation, staff controls on leads, campaign lifecycle and health.
"""
import os

import pytest
from unittest.mock import AsyncMock, MagicMock

# Set test environment variables before importing app
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

from fastapi.testclient import TestClient

from outreach_engine.main import app
from outreach_engine.api.v1.dependencies import get_scheduler, get_supabase
from outreach_engine.domain.models.agent_task import TaskResponse


@pytest.fixture
def client(supabase, scheduler):
    app.dependency_overrides[get_supabase] = lambda: supabase
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_scheduler():
    scheduler = MagicMock()
    scheduler.execute = AsyncMock()
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    yield scheduler
    app.dependency_overrides.clear()


INVOCATION = {"task_id": "task-1", "lead_id": "lead-1", "organization_id": "org-1"}


class TestExecuteEndpoint:
    """Tests for POST /api/v1/agent-tasks/execute"""

    def test_success_returns_200(self, mock_scheduler):
        mock_scheduler.execute.return_value = TaskResponse(
            success=True, channel="sms", recipient_id="r-1", communication_id="c-1"
        )

        response = TestClient(app).post("/api/v1/agent-tasks/execute", json=INVOCATION)

        assert response.status_code == 200
        assert response.json() == {
            "success": True, "channel": "sms", "recipient_id": "r-1", "communication_id": "c-1"
        }
        invocation = mock_scheduler.execute.call_args[0][0]
        assert invocation.task_id == "task-1"

    def test_skip_is_success(self, mock_scheduler):
        mock_scheduler.execute.return_value = TaskResponse(
            success=True, channel="sms", skipped=True, reason="sms_marketing consent withdrawn",
            error_kind="compliance_blocked",
        )

        response = TestClient(app).post("/api/v1/agent-tasks/execute", json=INVOCATION)

        assert response.status_code == 200
        assert response.json()["skipped"] is True

    def test_failure_returns_500_with_body(self, mock_scheduler):
        mock_scheduler.execute.return_value = TaskResponse(
            success=False, channel="sms", error="vonage is not configured for sms",
            error_kind="configuration_error",
        )

        response = TestClient(app).post("/api/v1/agent-tasks/execute", json=INVOCATION)

        assert response.status_code == 500
        assert response.json()["error_kind"] == "configuration_error"

    def test_missing_lead_id_is_rejected(self, mock_scheduler):
        response = TestClient(app).post("/api/v1/agent-tasks/execute", json={"organization_id": "org-1"})

        assert response.status_code == 422
        mock_scheduler.execute.assert_not_called()


class TestTaskEndpoints:
    """Tests for manual task creation and lookup"""

    def test_create_and_get(self, client, seed):
        lead = seed.lead()

        response = client.post("/api/v1/agent-tasks", json={
            "organization_id": "org-1",
            "lead_id": lead["id"],
            "action_type": "call",
            "context": {"voice_script": "Call {name} about the showing"},
        })

        assert response.status_code == 201
        task = response.json()["task"]
        assert task["status"] == "pending"
        assert task["context"]["voice_script"] == "Call {name} about the showing"

        fetched = client.get(f"/api/v1/agent-tasks/{task['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["task"]["id"] == task["id"]

    def test_create_for_unknown_lead(self, client, seed):
        response = client.post("/api/v1/agent-tasks", json={
            "organization_id": "org-1", "lead_id": "missing", "action_type": "sms",
        })

        assert response.status_code == 422

    def test_get_unknown_task(self, client, seed):
        assert client.get("/api/v1/agent-tasks/missing").status_code == 404


class TestLeadEndpoints:
    """Tests for human control and consent capture"""

    def test_take_control_and_release(self, client, seed, supabase):
        lead = seed.lead()
        seed.task(lead["id"])

        response = client.post(f"/api/v1/leads/{lead['id']}/human-control", json={
            "staff_id": "staff-1", "reason": "Prospect asked for a person",
        })
        assert response.status_code == 200
        assert response.json()["blocked_tasks"] == 1
        assert supabase.get("leads", lead["id"])["is_human_controlled"] is True

        again = client.post(f"/api/v1/leads/{lead['id']}/human-control", json={
            "staff_id": "staff-2", "reason": "Also me",
        })
        assert again.status_code == 409

        released = client.post(f"/api/v1/leads/{lead['id']}/human-control/release", json={"staff_id": "staff-1"})
        assert released.status_code == 200
        stored = supabase.get("leads", lead["id"])
        assert stored["is_human_controlled"] is False
        assert stored["human_controlled_at"] is not None

    def test_take_control_requires_reason(self, client, seed):
        lead = seed.lead()

        response = client.post(f"/api/v1/leads/{lead['id']}/human-control", json={
            "staff_id": "staff-1", "reason": "",
        })

        assert response.status_code == 422

    def test_take_control_unknown_lead(self, client, seed):
        response = client.post("/api/v1/leads/missing/human-control", json={
            "staff_id": "staff-1", "reason": "Needs a call back",
        })

        assert response.status_code == 404

    def test_record_consent(self, client, seed, supabase):
        lead = seed.lead()

        response = client.post(f"/api/v1/leads/{lead['id']}/consent", json={
            "consent_type": "email_marketing", "method": "web_form",
        })

        assert response.status_code == 201
        rows = supabase.rows("consent_log", lead_id=lead["id"])
        assert len(rows) == 1
        assert rows[0]["granted"] is True
        assert rows[0]["organization_id"] == "org-1"

    def test_withdraw_marks_active_grants(self, client, seed, supabase):
        lead = seed.lead()
        record = seed.consent(lead["id"], "sms_marketing")

        response = client.post(f"/api/v1/leads/{lead['id']}/consent/sms_marketing/withdraw")

        assert response.status_code == 200
        assert response.json()["withdrawn"] == 1
        assert supabase.get("consent_log", record["id"])["withdrawn_at"] is not None

    def test_withdraw_without_grant_appends_refusal(self, client, seed, supabase):
        lead = seed.lead()

        response = client.post(f"/api/v1/leads/{lead['id']}/consent/sms_marketing/withdraw")

        assert response.status_code == 200
        rows = supabase.rows("consent_log", lead_id=lead["id"])
        assert len(rows) == 1
        assert rows[0]["granted"] is False


class TestCampaignEndpoints:
    """Tests for campaign lifecycle transitions and progress"""

    def test_pause_and_resume(self, client, seed):
        campaign = seed.campaign()

        paused = client.post(f"/api/v1/campaigns/{campaign['id']}/pause")
        assert paused.status_code == 200
        assert paused.json()["campaign"]["status"] == "paused"

        resumed = client.post(f"/api/v1/campaigns/{campaign['id']}/resume")
        assert resumed.json()["campaign"]["status"] == "active"

    def test_invalid_transition_conflicts(self, client, seed):
        campaign = seed.campaign(status="completed")

        response = client.post(f"/api/v1/campaigns/{campaign['id']}/pause")

        assert response.status_code == 409

    def test_unknown_action_and_campaign(self, client, seed):
        campaign = seed.campaign()

        assert client.post(f"/api/v1/campaigns/{campaign['id']}/explode").status_code == 404
        assert client.post("/api/v1/campaigns/missing/pause").status_code == 404

    def test_progress(self, client, seed):
        campaign = seed.campaign()
        seed.recipient(campaign["id"], "l1", status="sent")
        seed.recipient(campaign["id"], "l2", status="skipped", error_message="Lead is marked do not contact")
        seed.recipient(campaign["id"], "l3")

        response = client.get(f"/api/v1/campaigns/{campaign['id']}/progress")

        body = response.json()
        assert body["counts"]["sent"] == 1
        assert body["remaining"] == 1
        assert body["reasons"][0]["reason"] == "Lead is marked do not contact"


class TestHealthEndpoint:
    def test_health(self):
        response = TestClient(app).get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert set(body["channels"]) >= {"sms", "email", "call"}
