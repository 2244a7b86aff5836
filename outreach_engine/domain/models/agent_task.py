"""
Agent Task Model
A scheduled unit of automated outreach work tied to one lead
"""
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing import Annotated, Any, Dict, Literal, Optional, Set, Union
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    """Status of an agent task"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ActionType(str, Enum):
    """Outreach channel a task acts through"""
    CALL = "call"
    SMS = "sms"
    EMAIL = "email"


# Once a task reaches one of these it is never written again
TERMINAL_TASK_STATUSES: Set[str] = {"completed", "cancelled", "failed"}


class _ContextBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    campaign_id: Optional[str] = None
    campaign_recipient_id: Optional[str] = None


class SmsTaskContext(_ContextBase):
    """Context for an SMS task."""
    action_type: Literal["sms"] = "sms"
    sms_template: Optional[str] = None


class EmailTaskContext(_ContextBase):
    """Context for an email task."""
    action_type: Literal["email"] = "email"
    email_subject: Optional[str] = None
    email_body: Optional[str] = None
    # Transactional email is exempt from the email-marketing consent requirement
    message_purpose: Literal["marketing", "transactional"] = "marketing"


class CallTaskContext(_ContextBase):
    """Context for an automated voice call task."""
    action_type: Literal["call"] = "call"
    voice_script: Optional[str] = None


TaskContext = Annotated[
    Union[SmsTaskContext, EmailTaskContext, CallTaskContext],
    Field(discriminator="action_type"),
]

_context_adapter = TypeAdapter(TaskContext)

CONTEXT_MODELS = {
    ActionType.SMS: SmsTaskContext,
    ActionType.EMAIL: EmailTaskContext,
    ActionType.CALL: CallTaskContext,
}


def declared_context(action_type: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Keep the keys the action's context declares, dropping nulls.

    Invocation bodies are one flat object shared by every channel, so an
    SMS trigger may carry ``email_subject: null`` alongside its own fields.
    """
    model = CONTEXT_MODELS[ActionType(action_type)]
    return {
        key: value for key, value in (payload or {}).items()
        if key in model.model_fields and key != "action_type" and value is not None
    }


def parse_task_context(action_type: str, payload: Optional[Dict[str, Any]]) -> TaskContext:
    """
    Build the typed context for a task row.

    The stored payload may omit the discriminator; the task's own
    action_type is authoritative.
    """
    data = dict(payload or {})
    data["action_type"] = action_type.value if isinstance(action_type, ActionType) else action_type
    return _context_adapter.validate_python(data)


class AgentTask(BaseModel):
    """
    Represents one automated outreach action for a lead.

    Rows are created by triggering rules or by staff ("call now") and are
    picked up by the Task Scheduler at or after ``scheduled_for``.
    """

    # Identity
    id: str
    organization_id: str
    lead_id: str
    agent_type: str = "campaign_orchestrator"
    action_type: ActionType

    # Scheduling
    scheduled_for: datetime
    status: TaskStatus = TaskStatus.PENDING
    context: Dict[str, Any] = Field(default_factory=dict)

    # Result tracking
    result_communication_id: Optional[str] = None
    resolution_reason: Optional[str] = None
    last_error: Optional[str] = None

    # Timing
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    @property
    def is_terminal(self) -> bool:
        return self.status.value in TERMINAL_TASK_STATUSES

    @property
    def typed_context(self) -> TaskContext:
        return parse_task_context(self.action_type, self.context)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AgentTask":
        """Create from a database row."""
        data = {k: v for k, v in row.items() if v is not None}
        data["context"] = row.get("context") or {}
        return cls(**data)

    def __repr__(self) -> str:
        return (
            f"AgentTask(id={self.id[:8]}..., "
            f"action={self.action_type.value}, "
            f"status={self.status.value})"
        )


class TaskInvocation(BaseModel):
    """Body of a task invocation (time-based trigger or direct enqueue)."""
    task_id: Optional[str] = None
    lead_id: str
    organization_id: str
    context: Dict[str, Any] = Field(default_factory=dict)


class TaskResponse(BaseModel):
    """Outcome of a single scheduler invocation."""
    success: bool
    channel: Optional[str] = None
    recipient_id: Optional[str] = None
    communication_id: Optional[str] = None
    skipped: Optional[bool] = None
    delayed: Optional[bool] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
