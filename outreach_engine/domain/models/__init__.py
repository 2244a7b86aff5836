"""Domain models"""

# Agent tasks
from .agent_task import (
    TaskStatus,
    ActionType,
    AgentTask,
    SmsTaskContext,
    EmailTaskContext,
    CallTaskContext,
    TaskContext,
    TaskInvocation,
    TaskResponse,
    parse_task_context,
)

# Leads and organizations
from .lead import (
    Lead,
    Organization,
    Property,
)

# Campaigns
from .campaign import (
    CampaignStatus,
    RecipientStatus,
    Campaign,
    CampaignRecipient,
    CampaignProgress,
)

# Communications, consent and cost
from .communication import (
    ConsentType,
    ConsentMethod,
    ConsentRecord,
    Communication,
    CostEntry,
)

from .contact_rules import (
    ContactRules,
)

__all__ = [
    # Agent tasks
    "TaskStatus",
    "ActionType",
    "AgentTask",
    "SmsTaskContext",
    "EmailTaskContext",
    "CallTaskContext",
    "TaskContext",
    "TaskInvocation",
    "TaskResponse",
    "parse_task_context",
    # Leads
    "Lead",
    "Organization",
    "Property",
    # Campaigns
    "CampaignStatus",
    "RecipientStatus",
    "Campaign",
    "CampaignRecipient",
    "CampaignProgress",
    # Communications
    "ConsentType",
    "ConsentMethod",
    "ConsentRecord",
    "Communication",
    "CostEntry",
    "ContactRules",
]
