"""
Leads API
Staff take-over / release and consent capture
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from supabase import Client

from outreach_engine.domain.models.communication import ConsentMethod, ConsentRecord, ConsentType
from outreach_engine.domain.services.human_control import HumanControlError, HumanControlGate, LeadNotFoundError
from outreach_engine.api.v1.dependencies import get_human_control_gate, get_supabase
from outreach_engine.utils.org_filter import fetch_one
from outreach_engine.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/leads", tags=["leads"])


class TakeControlRequest(BaseModel):
    staff_id: str
    reason: str = Field(..., min_length=1)
    organization_id: Optional[str] = None


class ReleaseRequest(BaseModel):
    staff_id: str
    organization_id: Optional[str] = None


class ConsentCreate(BaseModel):
    """Request body for recording consent"""
    consent_type: ConsentType
    granted: bool = True
    method: ConsentMethod = ConsentMethod.STAFF_ENTRY
    evidence_text: Optional[str] = None


class ConsentWithdraw(BaseModel):
    method: ConsentMethod = ConsentMethod.STAFF_ENTRY


@router.post("/{lead_id}/human-control")
async def take_control(
    lead_id: str,
    body: TakeControlRequest,
    gate: HumanControlGate = Depends(get_human_control_gate)
):
    """Suspend automated outreach for a lead"""
    try:
        return await gate.take_control(lead_id, body.staff_id, body.reason, body.organization_id)
    except LeadNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except HumanControlError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{lead_id}/human-control/release")
async def release_control(
    lead_id: str,
    body: ReleaseRequest,
    gate: HumanControlGate = Depends(get_human_control_gate)
):
    """Return a lead to automated outreach"""
    try:
        return await gate.release(lead_id, body.staff_id, body.organization_id)
    except LeadNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except HumanControlError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{lead_id}/consent", status_code=201)
async def record_consent(
    lead_id: str,
    body: ConsentCreate,
    supabase: Client = Depends(get_supabase)
):
    """
    Append a consent record.

    consent_log is append-only; a refusal is recorded as granted=false.
    """
    lead = fetch_one(supabase, "leads", lead_id, columns="id, organization_id")
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")

    record = ConsentRecord(
        organization_id=lead["organization_id"],
        lead_id=lead_id,
        consent_type=body.consent_type,
        granted=body.granted,
        method=body.method.value,
        evidence_text=body.evidence_text,
        created_at=utc_now(),
    )
    response = supabase.table("consent_log").insert(
        record.model_dump(mode="json", exclude_none=True)
    ).execute()

    logger.info(f"Recorded {body.consent_type.value} consent={body.granted} for lead {lead_id[:8]}")
    return {"consent": response.data[0] if response.data else None}


@router.post("/{lead_id}/consent/{consent_type}/withdraw")
async def withdraw_consent(
    lead_id: str,
    consent_type: ConsentType,
    body: Optional[ConsentWithdraw] = None,
    supabase: Client = Depends(get_supabase)
):
    """
    Withdraw consent of one type for a lead.

    Active grants get withdrawn_at. When there is no grant record (consent
    captured only on the lead row), a refusal record is appended instead.
    """
    lead = fetch_one(supabase, "leads", lead_id, columns="id, organization_id")
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")

    method = (body or ConsentWithdraw()).method
    withdrawn_at = utc_now()
    response = supabase.table("consent_log").update({
        "withdrawn_at": withdrawn_at.isoformat(),
        "withdrawal_method": method.value,
    }).eq("lead_id", lead_id).eq("consent_type", consent_type.value).eq(
        "granted", True
    ).is_("withdrawn_at", "null").execute()

    withdrawn = len(response.data or [])
    if not withdrawn:
        refusal = ConsentRecord(
            organization_id=lead["organization_id"],
            lead_id=lead_id,
            consent_type=consent_type,
            granted=False,
            method=method.value,
            evidence_text="Consent withdrawn",
            created_at=withdrawn_at,
        )
        supabase.table("consent_log").insert(refusal.model_dump(mode="json", exclude_none=True)).execute()

    logger.info(f"Withdrew {withdrawn} {consent_type.value} consent records for lead {lead_id[:8]}")
    return {"lead_id": lead_id, "consent_type": consent_type.value, "withdrawn": withdrawn}
