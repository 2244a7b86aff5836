"""
Unit Tests for the Compliance Gate
"""
from datetime import datetime, timedelta, timezone

import pytest

from outreach_engine.domain.models.communication import ConsentRecord, ConsentType
from outreach_engine.domain.models.contact_rules import ContactRules
from outreach_engine.domain.models.lead import Lead
from outreach_engine.domain.services.compliance_gate import (
    ComplianceGate,
    ConsentState,
    consent_state,
    evaluate,
)

NOW = datetime(2026, 3, 10, 16, 0, tzinfo=timezone.utc)  # 12:00 in New York
NIGHT = datetime(2026, 3, 11, 3, 0, tzinfo=timezone.utc)  # 23:00 in New York


def make_lead(**overrides) -> Lead:
    data = {
        "id": "lead-0001",
        "organization_id": "org-1",
        "first_name": "Jordan",
        "phone": "+15555550123",
        "email": "jordan@example.com",
        "timezone": "America/New_York",
    }
    data.update(overrides)
    return Lead(**data)


def consent(consent_type: str, days_ago: int, granted: bool = True, withdrawn_days_ago=None) -> ConsentRecord:
    return ConsentRecord(
        lead_id="lead-0001",
        consent_type=consent_type,
        granted=granted,
        created_at=NOW - timedelta(days=days_ago),
        withdrawn_at=NOW - timedelta(days=withdrawn_days_ago) if withdrawn_days_ago is not None else None,
    )


RULES = ContactRules()


class TestConsentState:
    def test_absent_without_records(self):
        assert consent_state(make_lead(), [], ConsentType.SMS_MARKETING) == ConsentState.ABSENT

    def test_grant(self):
        records = [consent("sms_marketing", 5)]
        assert consent_state(make_lead(), records, ConsentType.SMS_MARKETING) == ConsentState.GRANTED

    def test_withdrawn_grant(self):
        records = [consent("sms_marketing", 20, withdrawn_days_ago=2)]
        assert consent_state(make_lead(), records, ConsentType.SMS_MARKETING) == ConsentState.WITHDRAWN

    def test_refusal_supersedes_earlier_grant(self):
        records = [consent("sms_marketing", 20), consent("sms_marketing", 3, granted=False)]
        assert consent_state(make_lead(), records, ConsentType.SMS_MARKETING) == ConsentState.WITHDRAWN

    def test_regrant_after_withdrawal(self):
        records = [
            consent("sms_marketing", 20, withdrawn_days_ago=10),
            consent("sms_marketing", 1),
        ]
        assert consent_state(make_lead(), records, ConsentType.SMS_MARKETING) == ConsentState.GRANTED

    def test_lead_flag_counts_as_grant(self):
        lead = make_lead(sms_consent=True, sms_consent_at=NOW - timedelta(days=30))
        assert consent_state(lead, [], ConsentType.SMS_MARKETING) == ConsentState.GRANTED

    def test_stale_lead_flag_does_not_override_withdrawal(self):
        lead = make_lead(sms_consent=True, sms_consent_at=NOW - timedelta(days=30))
        records = [consent("sms_marketing", 2, granted=False)]
        assert consent_state(lead, records, ConsentType.SMS_MARKETING) == ConsentState.WITHDRAWN

    def test_other_types_ignored(self):
        records = [consent("email_marketing", 5)]
        assert consent_state(make_lead(), records, ConsentType.SMS_MARKETING) == ConsentState.ABSENT


class TestEvaluate:
    def test_do_not_contact_denies_every_channel(self):
        lead = make_lead(do_not_contact=True)
        records = [consent(t, 5) for t in ("sms_marketing", "automated_calls", "email_marketing")]

        for channel in ("sms", "call", "email"):
            decision = evaluate(lead, records, channel, now=NOW, rules=RULES)
            assert decision.allowed is False
            assert "do not contact" in decision.reason

    def test_do_not_contact_denies_transactional_email(self):
        decision = evaluate(make_lead(do_not_contact=True), [], "email", "transactional", now=NOW, rules=RULES)
        assert not decision

    def test_withdrawn_and_absent_reasons_differ(self):
        withdrawn = evaluate(
            make_lead(), [consent("sms_marketing", 20, withdrawn_days_ago=2)], "sms", now=NOW, rules=RULES
        )
        absent = evaluate(make_lead(), [], "sms", now=NOW, rules=RULES)

        assert withdrawn.reason == "sms_marketing consent withdrawn"
        assert absent.reason == "No sms_marketing consent on file"

    def test_allowed_with_consent_in_window(self):
        decision = evaluate(make_lead(), [consent("sms_marketing", 5)], "sms", now=NOW, rules=RULES)
        assert decision.allowed is True

    def test_quiet_hours_block_sms_and_call(self):
        records = [consent("sms_marketing", 5), consent("automated_calls", 5)]

        for channel in ("sms", "call"):
            decision = evaluate(make_lead(), records, channel, now=NIGHT, rules=RULES)
            assert decision.allowed is False
            assert decision.reason.startswith("Outside permitted contact hours")

    def test_quiet_hours_use_lead_timezone(self):
        # 23:00 in New York is 20:00 in Los Angeles
        lead = make_lead(timezone="America/Los_Angeles")
        decision = evaluate(lead, [consent("sms_marketing", 5)], "sms", now=NIGHT, rules=RULES)
        assert decision.allowed is True

    def test_email_ignores_quiet_hours(self):
        decision = evaluate(make_lead(), [consent("email_marketing", 5)], "email", now=NIGHT, rules=RULES)
        assert decision.allowed is True

    def test_off_hours_consent_lifts_quiet_hours(self):
        records = [consent("sms_marketing", 5), consent("off_hours_contact", 5)]
        decision = evaluate(make_lead(), records, "sms", now=NIGHT, rules=RULES)
        assert decision.allowed is True

    def test_transactional_email_needs_no_marketing_consent(self):
        marketing = evaluate(make_lead(), [], "email", "marketing", now=NOW, rules=RULES)
        transactional = evaluate(make_lead(), [], "email", "transactional", now=NOW, rules=RULES)

        assert marketing.allowed is False
        assert transactional.allowed is True

    def test_org_rules_can_narrow_window(self):
        rules = ContactRules(contact_window_start="13:00", contact_window_end="17:00")
        decision = evaluate(make_lead(), [consent("sms_marketing", 5)], "sms", now=NOW, rules=rules)
        assert decision.allowed is False


class TestComplianceGate:
    @pytest.mark.asyncio
    async def test_unknown_lead_is_denied(self, supabase):
        decision = await ComplianceGate(supabase).check("missing", "sms", now=NOW)

        assert decision.allowed is False
        assert decision.reason == "Lead not found"

    @pytest.mark.asyncio
    async def test_check_reads_consent_log(self, seed, supabase):
        lead = seed.lead(sms_consent=False, sms_consent_at=None)
        gate = ComplianceGate(supabase)

        assert (await gate.check(lead["id"], "sms", now=NOW)).allowed is False

        seed.consent(lead["id"], "sms_marketing", created_at=NOW - timedelta(hours=1))
        assert (await gate.check(lead["id"], "sms", now=NOW)).allowed is True

    @pytest.mark.asyncio
    async def test_check_uses_organization_rules(self, supabase):
        supabase.add("organizations", {
            "id": "org-2",
            "contact_rules": {"contact_window_start": "13:00", "contact_window_end": "17:00"},
        })
        lead = supabase.add("leads", {
            "organization_id": "org-2",
            "timezone": "America/New_York",
            "sms_consent": True,
            "sms_consent_at": NOW - timedelta(days=1),
        })

        decision = await ComplianceGate(supabase).check(lead["id"], "sms", now=NOW)

        assert decision.allowed is False
        assert "contact hours" in decision.reason

    @pytest.mark.asyncio
    async def test_check_has_no_side_effects(self, seed, supabase):
        lead = seed.lead()
        before = {name: len(rows) for name, rows in supabase.tables.items()}

        await ComplianceGate(supabase).check(lead["id"], "sms", now=NOW)

        assert {name: len(rows) for name, rows in supabase.tables.items() if name in before} == before
