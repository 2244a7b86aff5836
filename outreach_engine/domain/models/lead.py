"""
Lead Domain Models
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime


class Lead(BaseModel):
    """Prospect a rental property manager wants to reach"""
    id: str
    organization_id: str

    # Contact fields
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    timezone: Optional[str] = None
    interested_property_id: Optional[str] = None

    # Consent flags (denormalized; consent_log is the source of truth)
    sms_consent: bool = False
    sms_consent_at: Optional[datetime] = None
    call_consent: bool = False
    call_consent_at: Optional[datetime] = None
    whatsapp_consent: bool = False
    whatsapp_consent_at: Optional[datetime] = None
    do_not_contact: bool = False

    # Human control
    is_human_controlled: bool = False
    human_controlled_by: Optional[str] = None
    human_controlled_at: Optional[datetime] = None
    human_control_reason: Optional[str] = None
    human_control_released_by: Optional[str] = None
    human_control_released_at: Optional[datetime] = None

    created_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Lead":
        return cls(**{k: v for k, v in row.items() if v is not None})

    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.full_name or self.phone or self.email or self.id


class Organization(BaseModel):
    """Property management company (tenant)"""
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    timezone: Optional[str] = None
    contact_rules: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="ignore")


class Property(BaseModel):
    """Rental unit a lead is interested in"""
    id: str
    address: Optional[str] = None

    model_config = ConfigDict(extra="ignore")
