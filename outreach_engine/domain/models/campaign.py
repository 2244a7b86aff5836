"""
Campaign Domain Models
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List, Set
from datetime import datetime
from enum import Enum


class CampaignStatus(str, Enum):
    """Campaign status"""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RecipientStatus(str, Enum):
    """Per-recipient delivery status"""
    PENDING = "pending"
    QUEUED = "queued"
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


TERMINAL_CAMPAIGN_STATUSES: Set[str] = {"cancelled", "completed"}
TERMINAL_RECIPIENT_STATUSES: Set[str] = {"sent", "skipped", "failed"}
OPEN_RECIPIENT_STATUSES: List[str] = ["pending", "queued"]


class Campaign(BaseModel):
    """Bounded batch of outreach tasks sharing a template and throttle"""
    id: str
    organization_id: str
    name: Optional[str] = None
    campaign_type: str = "sms"
    status: CampaignStatus = CampaignStatus.DRAFT
    max_per_hour: Optional[int] = Field(default=None, ge=1)
    sent_count: int = 0

    # Templates
    sms_template: Optional[str] = None
    email_subject: Optional[str] = None
    email_body: Optional[str] = None
    voice_script: Optional[str] = None

    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Campaign":
        return cls(**{k: v for k, v in row.items() if v is not None})

    @property
    def is_terminal(self) -> bool:
        return self.status.value in TERMINAL_CAMPAIGN_STATUSES


class CampaignRecipient(BaseModel):
    """One lead's membership in a campaign"""
    id: str
    campaign_id: str
    lead_id: str
    status: RecipientStatus = RecipientStatus.PENDING
    channel: Optional[str] = None
    queued_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    communication_id: Optional[str] = None
    error_message: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CampaignRecipient":
        return cls(**{k: v for k, v in row.items() if v is not None})


class CampaignProgress(BaseModel):
    """Aggregate view of a campaign for operators"""
    campaign_id: str
    status: CampaignStatus
    sent_count: int = 0
    counts: Dict[str, int] = Field(default_factory=dict)
    reasons: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def remaining(self) -> int:
        return sum(self.counts.get(s, 0) for s in OPEN_RECIPIENT_STATUSES)
