"""
Communication, Consent and Cost Models
Append-only records written by the dispatch engine
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class ConsentType(str, Enum):
    """Kinds of consent tracked in consent_log"""
    SMS_MARKETING = "sms_marketing"
    AUTOMATED_CALLS = "automated_calls"
    EMAIL_MARKETING = "email_marketing"
    WHATSAPP_MARKETING = "whatsapp_marketing"
    OFF_HOURS_CONTACT = "off_hours_contact"


class ConsentMethod(str, Enum):
    """How consent was obtained"""
    WEB_FORM = "web_form"
    VERBAL_CALL = "verbal_call"
    SMS_REPLY = "sms_reply"
    EMAIL_CLICK = "email_click"
    STAFF_ENTRY = "staff_entry"


# Consent type that governs each outbound channel
CHANNEL_CONSENT_TYPES: Dict[str, ConsentType] = {
    "sms": ConsentType.SMS_MARKETING,
    "call": ConsentType.AUTOMATED_CALLS,
    "email": ConsentType.EMAIL_MARKETING,
}


class ConsentRecord(BaseModel):
    """A single consent grant or refusal; withdrawal sets withdrawn_at"""
    id: Optional[str] = None
    organization_id: Optional[str] = None
    lead_id: str
    consent_type: ConsentType
    granted: bool
    method: str = ConsentMethod.WEB_FORM.value
    evidence_text: Optional[str] = None
    created_at: datetime
    withdrawn_at: Optional[datetime] = None
    withdrawal_method: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ConsentRecord":
        return cls(**{k: v for k, v in row.items() if v is not None})


class Communication(BaseModel):
    """One outbound dispatch attempt; immutable except status"""
    id: Optional[str] = None
    organization_id: str
    lead_id: str
    channel: str
    direction: str = "outbound"
    recipient: str
    subject: Optional[str] = None
    body: str
    status: str = "sent"
    provider_message_id: Optional[str] = None
    sent_at: datetime

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, mode="json")


class CostEntry(BaseModel):
    """Provider usage cost for one send"""
    organization_id: str
    service: str
    usage_quantity: float
    usage_unit: str
    unit_cost: float
    total_cost: float
    lead_id: Optional[str] = None
    communication_id: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
