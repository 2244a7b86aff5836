"""
Compliance Gate
Consent, do-not-contact and contact-hours decision for automated outreach.

The decision itself (`evaluate`) is a pure function of the lead, its consent
history and the clock. `ComplianceGate.check` only reads rows to feed it, so
it is safe to call speculatively.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, List, Optional

from outreach_engine.domain.models.communication import (
    CHANNEL_CONSENT_TYPES,
    ConsentRecord,
    ConsentType,
)
from outreach_engine.domain.models.contact_rules import ContactRules
from outreach_engine.domain.models.lead import Lead
from outreach_engine.utils.timestamps import as_utc

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class MessagePurpose(str, Enum):
    """Why a message is being sent"""
    MARKETING = "marketing"
    TRANSACTIONAL = "transactional"


class ConsentState(str, Enum):
    GRANTED = "granted"
    WITHDRAWN = "withdrawn"
    ABSENT = "absent"


@dataclass
class ComplianceDecision:
    """Result of a compliance check"""
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def _aware(value: Optional[datetime]) -> datetime:
    return as_utc(value) if value is not None else _EPOCH


def _lead_flag_grant(lead: Lead, consent_type: ConsentType) -> Optional[datetime]:
    """Grant time implied by the lead's denormalized consent flag, if set."""
    flags = {
        ConsentType.SMS_MARKETING: (lead.sms_consent, lead.sms_consent_at),
        ConsentType.AUTOMATED_CALLS: (lead.call_consent, lead.call_consent_at),
        ConsentType.WHATSAPP_MARKETING: (lead.whatsapp_consent, lead.whatsapp_consent_at),
    }
    granted, granted_at = flags.get(consent_type, (False, None))
    if not granted:
        return None
    return _aware(granted_at)


def consent_state(
    lead: Lead,
    consents: Iterable[ConsentRecord],
    consent_type: ConsentType
) -> ConsentState:
    """
    Current consent for one type.

    A withdrawal (either a withdrawn_at on a grant, or a record with
    granted=False) supersedes every grant created before it.
    """
    grants: List[datetime] = []
    withdrawals: List[datetime] = []

    for record in consents:
        if record.consent_type != consent_type:
            continue
        created = _aware(record.created_at)
        if record.granted:
            grants.append(created)
            if record.withdrawn_at is not None:
                withdrawals.append(_aware(record.withdrawn_at))
        else:
            withdrawals.append(created)

    flag_grant = _lead_flag_grant(lead, consent_type)
    if flag_grant is not None:
        grants.append(flag_grant)

    latest_withdrawal = max(withdrawals) if withdrawals else None
    if latest_withdrawal is None:
        return ConsentState.GRANTED if grants else ConsentState.ABSENT

    # Grants made after the most recent withdrawal still stand, unless that
    # grant record was itself withdrawn (its withdrawal would be later).
    if any(granted_at > latest_withdrawal for granted_at in grants):
        return ConsentState.GRANTED
    return ConsentState.WITHDRAWN


def evaluate(
    lead: Lead,
    consents: Iterable[ConsentRecord],
    channel: str,
    purpose: str = MessagePurpose.MARKETING.value,
    now: Optional[datetime] = None,
    rules: Optional[ContactRules] = None
) -> ComplianceDecision:
    """
    Decide whether an automated message may be sent to a lead.

    Args:
        lead: Recipient lead
        consents: The lead's consent_log records
        channel: sms, email or call
        purpose: marketing or transactional
        now: Evaluation time (default: now)
        rules: Contact rules (default: ContactRules.default())

    Returns:
        ComplianceDecision(allowed, reason)
    """
    rules = rules or ContactRules.default()
    consents = list(consents)
    purpose = purpose.value if isinstance(purpose, MessagePurpose) else purpose

    if lead.do_not_contact:
        return ComplianceDecision(False, "Lead is marked do not contact")

    consent_type = CHANNEL_CONSENT_TYPES.get(channel)
    needs_consent = channel in rules.consent_required_channels and not (
        channel == "email" and purpose == MessagePurpose.TRANSACTIONAL.value
    )

    if needs_consent:
        if consent_type is None:
            return ComplianceDecision(False, f"No consent type defined for channel {channel}")
        state = consent_state(lead, consents, consent_type)
        if state == ConsentState.WITHDRAWN:
            return ComplianceDecision(False, f"{consent_type.value} consent withdrawn")
        if state == ConsentState.ABSENT:
            return ComplianceDecision(False, f"No {consent_type.value} consent on file")

    if channel in rules.quiet_hours_channels:
        off_hours = consent_state(lead, consents, ConsentType.OFF_HOURS_CONTACT)
        if off_hours != ConsentState.GRANTED:
            allowed, window_reason = rules.is_within_contact_window(now, lead.timezone)
            if not allowed:
                return ComplianceDecision(False, f"Outside permitted contact hours ({window_reason})")

    return ComplianceDecision(True, "allowed")


class ComplianceGate:
    """Loads the rows a compliance decision needs and evaluates it."""

    def __init__(self, supabase: Any):
        self.supabase = supabase

    async def check(
        self,
        lead_id: str,
        channel: str,
        purpose: str = MessagePurpose.MARKETING.value,
        now: Optional[datetime] = None
    ) -> ComplianceDecision:
        """Check a lead by id. An unknown lead is denied."""
        response = self.supabase.table("leads").select("*").eq("id", lead_id).limit(1).execute()
        if not response.data:
            return ComplianceDecision(False, "Lead not found")

        lead = Lead.from_row(response.data[0])
        return await self.check_lead(lead, channel, purpose, now=now)

    async def check_lead(
        self,
        lead: Lead,
        channel: str,
        purpose: str = MessagePurpose.MARKETING.value,
        rules: Optional[ContactRules] = None,
        now: Optional[datetime] = None
    ) -> ComplianceDecision:
        """Check an already-loaded lead."""
        if rules is None:
            rules = await self.load_rules(lead.organization_id)

        consents = await self.load_consents(lead.id)
        decision = evaluate(lead, consents, channel, purpose, now=now, rules=rules)

        if not decision.allowed:
            logger.info(f"Compliance denied {channel} for lead {lead.id[:8]}: {decision.reason}")
        return decision

    async def load_consents(self, lead_id: str) -> List[ConsentRecord]:
        response = self.supabase.table("consent_log").select("*").eq(
            "lead_id", lead_id
        ).order("created_at").execute()
        return [ConsentRecord.from_row(row) for row in (response.data or [])]

    async def load_rules(self, organization_id: str) -> ContactRules:
        response = self.supabase.table("organizations").select(
            "contact_rules"
        ).eq("id", organization_id).limit(1).execute()
        data = response.data[0].get("contact_rules") if response.data else None
        return ContactRules.from_dict(data)
