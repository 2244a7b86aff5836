"""
Task Scheduler
Runs one agent task end to end: claim, gate, render, dispatch, record, resolve.

Every invocation is independent and stateless. Coordination between
concurrent invocations happens only through the store:

1. Claim: conditional update pending -> in_progress. Only one invocation
   wins; the others return a no-op.
2. Human-Control Gate, agent registry, campaign disposition, Rate Limiter,
   Compliance Gate. A draft campaign releases the claim instead of skipping.
3. Template Personalizer, then Channel Dispatcher.
4. Communication row, cost entry, recipient -> sent, campaign counters.
5. Task -> completed (a send is recorded before the task turns terminal).
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError
from supabase import Client

from outreach_engine.core.config import Settings, get_settings
from outreach_engine.domain.models.agent_task import (
    AgentTask,
    ActionType,
    CallTaskContext,
    EmailTaskContext,
    SmsTaskContext,
    TaskContext,
    TaskInvocation,
    TaskResponse,
    TaskStatus,
    declared_context,
    parse_task_context,
)
from outreach_engine.domain.models.campaign import (
    Campaign,
    CampaignRecipient,
    CampaignStatus,
    OPEN_RECIPIENT_STATUSES,
    RecipientStatus,
)
from outreach_engine.domain.models.communication import Communication
from outreach_engine.domain.models.contact_rules import ContactRules
from outreach_engine.domain.models.lead import Lead, Organization, Property
from outreach_engine.domain.services.audit_logger import AuditLogger
from outreach_engine.domain.services.campaign_state_machine import CampaignStateMachine
from outreach_engine.domain.services.compliance_gate import ComplianceGate
from outreach_engine.domain.services.cost_recorder import CostRecorder
from outreach_engine.domain.services.human_control import is_blocked
from outreach_engine.domain.services.rate_limiter import RateLimiter, reschedule_delay
from outreach_engine.domain.services.template_personalizer import (
    DEFAULT_EMAIL_BODY,
    DEFAULT_EMAIL_SUBJECT,
    DEFAULT_SMS_TEMPLATE,
    DEFAULT_VOICE_SCRIPT,
    TemplatePersonalizer,
)
from outreach_engine.infrastructure.channels import (
    ChannelDispatcher,
    ChannelError,
    DispatchErrorKind,
    DispatchRequest,
    RecipientRejectedError,
)
from outreach_engine.utils.org_filter import fetch_one
from outreach_engine.utils.timestamps import as_utc, utc_now

logger = logging.getLogger(__name__)


class TaskPreconditionError(Exception):
    """Raised when a task's lead, organization or campaign cannot be loaded."""
    pass


class _Run:
    """Everything loaded for one claimed task."""

    def __init__(self, task: AgentTask, now: datetime):
        self.task = task
        self.now = now
        self.started = time.monotonic()
        self.lead: Optional[Lead] = None
        self.organization: Optional[Organization] = None
        self.context: Optional[TaskContext] = None
        self.campaign: Optional[Campaign] = None
        self.recipient: Optional[CampaignRecipient] = None

    @property
    def channel(self) -> str:
        return self.task.action_type.value

    @property
    def recipient_id(self) -> Optional[str]:
        return self.recipient.id if self.recipient else None

    @property
    def campaign_id(self) -> Optional[str]:
        return self.campaign.id if self.campaign else None

    # Loading can stop before the recipient or campaign row is read; the
    # stored context still names them so they can be resolved.
    @property
    def recipient_ref(self) -> Optional[str]:
        return self.recipient_id or self.task.context.get("campaign_recipient_id")

    @property
    def campaign_ref(self) -> Optional[str]:
        return self.campaign_id or self.task.context.get("campaign_id")

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class TaskScheduler:
    """
    Executes agent tasks.

    Collaborators are injectable; by default each is built on the same
    Supabase client.
    """

    def __init__(
        self,
        supabase: Client,
        settings: Optional[Settings] = None,
        dispatcher: Optional[ChannelDispatcher] = None,
        compliance: Optional[ComplianceGate] = None,
        rate_limiter: Optional[RateLimiter] = None,
        personalizer: Optional[TemplatePersonalizer] = None,
        campaigns: Optional[CampaignStateMachine] = None,
        costs: Optional[CostRecorder] = None,
        audit: Optional[AuditLogger] = None
    ):
        self.supabase = supabase
        self.settings = settings or get_settings()
        self.dispatcher = dispatcher or ChannelDispatcher(supabase, self.settings)
        self.compliance = compliance or ComplianceGate(supabase)
        self.rate_limiter = rate_limiter or RateLimiter(supabase)
        self.personalizer = personalizer or TemplatePersonalizer(self.settings)
        self.campaigns = campaigns or CampaignStateMachine(supabase)
        self.costs = costs or CostRecorder(supabase, self.settings)
        self.audit = audit or AuditLogger(supabase)

    # =========================================================================
    # Task creation and lookup
    # =========================================================================

    async def create_task(
        self,
        organization_id: str,
        lead_id: str,
        action_type: str,
        scheduled_for: Optional[datetime] = None,
        context: Optional[Dict[str, Any]] = None,
        agent_type: str = "campaign_orchestrator"
    ) -> AgentTask:
        """
        Insert a pending task.

        Raises:
            TaskPreconditionError: unknown action type, invalid context, or
                lead not found in the organization
        """
        try:
            action = ActionType(action_type)
            typed = parse_task_context(action, context)
        except (ValueError, ValidationError) as e:
            raise TaskPreconditionError(f"Invalid task context: {e}") from e

        if not fetch_one(self.supabase, "leads", lead_id, organization_id, columns="id"):
            raise TaskPreconditionError(f"Lead not found: {lead_id}")

        row = {
            "organization_id": organization_id,
            "lead_id": lead_id,
            "agent_type": agent_type,
            "action_type": action.value,
            "scheduled_for": (as_utc(scheduled_for) or utc_now()).isoformat(),
            "status": TaskStatus.PENDING.value,
            "context": typed.model_dump(exclude_none=True, exclude={"action_type"}),
        }
        response = self.supabase.table("agent_tasks").insert(row).execute()
        task = AgentTask.from_row(response.data[0])

        logger.info(f"Created task {task.id[:8]} ({action.value}) for lead {lead_id[:8]}")
        return task

    async def get_task(self, task_id: str, organization_id: Optional[str] = None) -> Optional[AgentTask]:
        row = fetch_one(self.supabase, "agent_tasks", task_id, organization_id)
        return AgentTask.from_row(row) if row else None

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, invocation: TaskInvocation, now: Optional[datetime] = None) -> TaskResponse:
        """
        Execute one task invocation.

        Args:
            invocation: task id plus lead/organization/campaign context. When
                task_id is missing a task is created from the context first.
            now: Evaluation time (default: now)

        Returns:
            TaskResponse. Failures are reported with success=False rather
            than raised.
        """
        now = as_utc(now) or utc_now()

        if not invocation.task_id:
            try:
                task = await self._create_from_invocation(invocation, now)
            except TaskPreconditionError as e:
                logger.error(f"Cannot create task for lead {invocation.lead_id}: {e}")
                return TaskResponse(success=False, error=str(e))
        else:
            task = await self.get_task(invocation.task_id, invocation.organization_id)
            if task is None:
                logger.error(f"Task not found: {invocation.task_id}")
                return TaskResponse(success=False, error=f"Task not found: {invocation.task_id}")

        if task.is_terminal:
            logger.info(f"Task {task.id[:8]} already {task.status.value}; nothing to do")
            return TaskResponse(
                success=True,
                channel=task.action_type.value,
                skipped=True,
                reason=f"Task already {task.status.value}",
            )

        if as_utc(task.scheduled_for) > now:
            return TaskResponse(
                success=True,
                channel=task.action_type.value,
                delayed=True,
                reason=f"Task not due until {as_utc(task.scheduled_for).isoformat()}",
            )

        if not await self._claim(task, now):
            logger.info(f"Task {task.id[:8]} already claimed by another invocation")
            return TaskResponse(
                success=True,
                channel=task.action_type.value,
                skipped=True,
                reason="task already claimed",
            )

        run = _Run(task, now)
        try:
            return await self._run_claimed(run, invocation)
        except TaskPreconditionError as e:
            logger.error(f"Task {task.id[:8]} precondition failed: {e}")
            await self._resolve_task(run, TaskStatus.FAILED, reason=str(e), error=str(e))
            await self._resolve_recipient(run, RecipientStatus.FAILED, error_message=str(e))
            await self._maybe_complete(run)
            await self._audit(run, "task_precondition", "failed", str(e))
            return TaskResponse(success=False, channel=run.channel, recipient_id=run.recipient_id, error=str(e))
        except Exception as e:
            logger.error(f"Task {task.id[:8]} failed unexpectedly: {e}", exc_info=True)
            await self._resolve_task(run, TaskStatus.FAILED, reason="unexpected error", error=str(e))
            await self._resolve_recipient(run, RecipientStatus.FAILED, error_message=str(e))
            await self._maybe_complete(run)
            await self._audit(run, f"send_{run.channel}", "failed", f"Unexpected error: {e}")
            return TaskResponse(success=False, channel=run.channel, recipient_id=run.recipient_id, error=str(e))

    async def _create_from_invocation(self, invocation: TaskInvocation, now: datetime) -> AgentTask:
        context = dict(invocation.context)
        action_type = context.pop("action_type", None)
        if not action_type and context.get("campaign_id"):
            row = fetch_one(
                self.supabase, "campaigns", context["campaign_id"],
                invocation.organization_id, columns="campaign_type"
            )
            action_type = row.get("campaign_type") if row else None
        if not action_type:
            raise TaskPreconditionError("action_type is required when task_id is not given")

        try:
            context = declared_context(action_type, context)
        except ValueError as e:
            raise TaskPreconditionError(f"Unknown action type: {action_type}") from e

        return await self.create_task(
            invocation.organization_id, invocation.lead_id, action_type,
            scheduled_for=now, context=context,
        )

    async def _claim(self, task: AgentTask, now: datetime) -> bool:
        response = self.supabase.table("agent_tasks").update({
            "status": TaskStatus.IN_PROGRESS.value,
            "started_at": now.isoformat(),
        }).eq("id", task.id).eq("status", TaskStatus.PENDING.value).execute()
        return bool(response.data)

    async def _load(self, run: _Run, invocation: TaskInvocation) -> None:
        task = run.task

        lead_row = fetch_one(self.supabase, "leads", task.lead_id, task.organization_id)
        if not lead_row:
            raise TaskPreconditionError(f"Lead not found: {task.lead_id}")
        run.lead = Lead.from_row(lead_row)

        org_row = fetch_one(self.supabase, "organizations", task.organization_id)
        if not org_row:
            raise TaskPreconditionError(f"Organization not found: {task.organization_id}")
        run.organization = Organization(**org_row)

        # The stored task context is authoritative over the invocation's
        stored = {key: value for key, value in task.context.items() if value is not None}
        context = {**declared_context(task.action_type, invocation.context), **stored}
        context.pop("action_type", None)
        try:
            run.context = parse_task_context(task.action_type, context)
        except ValidationError as e:
            raise TaskPreconditionError(f"Invalid task context: {e}") from e

        if run.context.campaign_id:
            campaign_row = fetch_one(self.supabase, "campaigns", run.context.campaign_id, task.organization_id)
            if not campaign_row:
                raise TaskPreconditionError(f"Campaign not found: {run.context.campaign_id}")
            run.campaign = Campaign.from_row(campaign_row)
            run.recipient = await self._load_recipient(run)

    async def _load_recipient(self, run: _Run) -> Optional[CampaignRecipient]:
        query = self.supabase.table("campaign_recipients").select("*").eq("campaign_id", run.campaign.id)
        if run.context.campaign_recipient_id:
            query = query.eq("id", run.context.campaign_recipient_id)
        else:
            query = query.eq("lead_id", run.task.lead_id)
        response = query.limit(1).execute()

        if not response.data:
            if run.context.campaign_recipient_id:
                raise TaskPreconditionError(
                    f"Campaign recipient not found: {run.context.campaign_recipient_id}"
                )
            return None
        return CampaignRecipient.from_row(response.data[0])

    async def _run_claimed(self, run: _Run, invocation: TaskInvocation) -> TaskResponse:
        await self._load(run, invocation)

        if run.recipient and run.recipient.status.value not in OPEN_RECIPIENT_STATUSES:
            return await self._skip(run, f"Recipient already {run.recipient.status.value}", update_recipient=False)

        blocked, reason = is_blocked(run.lead, run.task)
        if blocked:
            return await self._skip(run, reason, action="human_control_check")

        unavailable = await self._agent_unavailable(run)
        if unavailable:
            return await self._skip(
                run, unavailable,
                kind=DispatchErrorKind.CONFIGURATION_ERROR, action="agent_check"
            )

        if run.campaign:
            if run.campaign.status == CampaignStatus.DRAFT:
                # Not started yet; the recipient stays pending until activation
                return await self._release(
                    run, "Campaign not active",
                    timedelta(minutes=self.settings.draft_recheck_minutes), action="campaign_check",
                )
            if run.campaign.status != CampaignStatus.ACTIVE:
                return await self._skip(run, f"Campaign {run.campaign.status.value}", action="campaign_check")

            if run.campaign.max_per_hour:
                decision = await self.rate_limiter.check(
                    run.campaign.id, run.campaign.max_per_hour, run.now, exclude_recipient_id=run.recipient_id
                )
                if not decision.allowed:
                    return await self._delay(run, decision.reason)

        purpose = getattr(run.context, "message_purpose", "marketing")
        rules = ContactRules.from_dict(run.organization.contact_rules)
        compliance = await self.compliance.check_lead(run.lead, run.channel, purpose, rules=rules, now=run.now)
        if not compliance.allowed:
            return await self._skip(
                run, compliance.reason,
                kind=DispatchErrorKind.COMPLIANCE_BLOCKED, action="compliance_check"
            )

        if run.recipient and not await self._mark_queued(run):
            return await self._skip(run, "Recipient resolved by another task", update_recipient=False)

        return await self._dispatch(run)

    async def _agent_unavailable(self, run: _Run) -> Optional[str]:
        """Reason the task's agent may not act for this organization, if any."""
        response = self.supabase.table("agents_registry").select("agent_key, is_enabled").eq(
            "organization_id", run.task.organization_id
        ).eq("agent_key", run.task.agent_type).limit(1).execute()

        if not response.data:
            return f"Agent {run.task.agent_type} not found in registry"
        if not response.data[0].get("is_enabled"):
            return f"Agent {run.task.agent_type} is disabled"
        return None

    async def _mark_queued(self, run: _Run) -> bool:
        response = self.supabase.table("campaign_recipients").update({
            "status": RecipientStatus.QUEUED.value,
            "queued_at": run.now.isoformat(),
            "channel": run.channel,
        }).eq("id", run.recipient.id).in_("status", OPEN_RECIPIENT_STATUSES).execute()
        return bool(response.data)

    # =========================================================================
    # Rendering and dispatch
    # =========================================================================

    def _templates(self, run: _Run) -> Tuple[Optional[str], str]:
        """Return (subject, body) templates for the task's channel."""
        ctx = run.context
        campaign = run.campaign

        if isinstance(ctx, SmsTaskContext):
            return None, ctx.sms_template or (campaign and campaign.sms_template) or DEFAULT_SMS_TEMPLATE
        if isinstance(ctx, EmailTaskContext):
            subject = ctx.email_subject or (campaign and campaign.email_subject) or DEFAULT_EMAIL_SUBJECT
            body = ctx.email_body or (campaign and campaign.email_body) or DEFAULT_EMAIL_BODY
            return subject, body
        if isinstance(ctx, CallTaskContext):
            return None, ctx.voice_script or (campaign and campaign.voice_script) or DEFAULT_VOICE_SCRIPT
        raise TaskPreconditionError(f"Unsupported action type: {run.channel}")

    def _load_property(self, run: _Run) -> Optional[Property]:
        if not run.lead.interested_property_id:
            return None
        row = fetch_one(self.supabase, "properties", run.lead.interested_property_id, columns="id, address")
        return Property(**row) if row else None

    def _address(self, run: _Run) -> str:
        if run.channel == ActionType.EMAIL.value:
            if not run.lead.email:
                raise RecipientRejectedError("Lead has no email address", run.channel)
            return run.lead.email
        if not run.lead.phone:
            raise RecipientRejectedError("Lead has no phone number", run.channel)
        return run.lead.phone

    async def _dispatch(self, run: _Run) -> TaskResponse:
        subject_template, body_template = self._templates(run)
        property = self._load_property(run)
        body = self.personalizer.render(body_template, run.lead, run.organization, property)
        subject = (
            self.personalizer.render(subject_template, run.lead, run.organization, property)
            if subject_template else None
        )

        try:
            request = DispatchRequest(
                recipient=self._address(run),
                body=body,
                subject=subject,
                metadata={
                    "task_id": run.task.id,
                    "lead_id": run.lead.id,
                    "campaign_id": run.campaign_id,
                },
            )
            result = await self.dispatcher.dispatch(run.task.organization_id, run.channel, request)
        except ChannelError as e:
            return await self._dispatch_failed(run, e)

        communication = Communication(
            organization_id=run.task.organization_id,
            lead_id=run.lead.id,
            channel=run.channel,
            recipient=request.recipient,
            subject=subject,
            body=result.body,
            provider_message_id=result.provider_message_id,
            sent_at=result.sent_at,
        )
        try:
            response = self.supabase.table("communications").insert(communication.to_row()).execute()
            communication_id = response.data[0]["id"]
        except Exception as e:
            # The provider accepted the message; retrying could send it twice
            reason = (
                f"Sent via {result.provider} ({result.provider_message_id}) but the "
                f"communication record failed; requires reconciliation"
            )
            logger.critical(f"Task {run.task.id[:8]}: {reason}: {e}", exc_info=True)
            await self._resolve_task(run, TaskStatus.FAILED, reason=reason, error=str(e))
            await self._resolve_recipient(run, RecipientStatus.FAILED, error_message=reason)
            await self._maybe_complete(run)
            await self._audit(run, f"send_{run.channel}", "failed", reason, {"provider_message_id": result.provider_message_id})
            return TaskResponse(success=False, channel=run.channel, recipient_id=run.recipient_id, error=reason)

        try:
            await self.costs.record(
                run.task.organization_id, run.channel,
                lead_id=run.lead.id, communication_id=communication_id, reported_cost=result.cost,
            )
        except Exception as e:
            logger.error(f"Failed to record cost for communication {communication_id}: {e}", exc_info=True)

        if run.recipient:
            await self._resolve_recipient(
                run, RecipientStatus.SENT,
                sent_at=result.sent_at.isoformat(), communication_id=communication_id,
            )
            await self.campaigns.refresh_sent_count(run.campaign.id)

        await self._resolve_task(run, TaskStatus.COMPLETED, reason="sent", result_communication_id=communication_id)

        if run.campaign:
            await self.campaigns.maybe_complete(run.campaign.id)

        logger.info(f"Task {run.task.id[:8]} sent {run.channel} via {result.provider}: {result.provider_message_id}")
        await self._audit(
            run, f"send_{run.channel}", "success", f"{run.channel} sent via {result.provider}",
            {"communication_id": communication_id, "provider_message_id": result.provider_message_id},
        )

        return TaskResponse(
            success=True,
            channel=run.channel,
            recipient_id=run.recipient_id,
            communication_id=communication_id,
        )

    async def _dispatch_failed(self, run: _Run, error: ChannelError) -> TaskResponse:
        message = f"{error.kind.value}: {error.message}"
        if error.alert_operator:
            logger.critical(
                f"Channel configuration error for org {run.task.organization_id} ({run.channel}): {error.message}"
            )
        else:
            logger.error(f"Task {run.task.id[:8]} dispatch failed: {message}")

        await self._resolve_recipient(run, RecipientStatus.FAILED, error_message=message)
        await self._resolve_task(run, TaskStatus.FAILED, reason=error.kind.value, error=error.message)
        await self._maybe_complete(run)

        await self._audit(
            run, f"send_{run.channel}", "failed", error.message,
            {"error_kind": error.kind.value, "provider": error.provider, "status_code": error.status_code},
        )

        return TaskResponse(
            success=False,
            channel=run.channel,
            recipient_id=run.recipient_id,
            error=error.message,
            error_kind=error.kind.value,
        )

    # =========================================================================
    # Resolution
    # =========================================================================

    async def _skip(
        self,
        run: _Run,
        reason: str,
        kind: Optional[DispatchErrorKind] = None,
        action: str = "task_evaluation",
        update_recipient: bool = True
    ) -> TaskResponse:
        if update_recipient:
            await self._resolve_recipient(run, RecipientStatus.SKIPPED, error_message=reason)
        await self._resolve_task(run, TaskStatus.CANCELLED, reason=reason)
        if update_recipient:
            await self._maybe_complete(run)

        logger.info(f"Task {run.task.id[:8]} skipped: {reason}")
        await self._audit(run, action, "skipped", reason, {"error_kind": kind.value if kind else None})

        return TaskResponse(
            success=True,
            channel=run.channel,
            recipient_id=run.recipient_id,
            skipped=True,
            reason=reason,
            error_kind=kind.value if kind else None,
        )

    async def _delay(self, run: _Run, reason: str) -> TaskResponse:
        delay = reschedule_delay(run.campaign.max_per_hour)
        return await self._release(
            run, reason, timedelta(minutes=delay),
            action="rate_limit_check", kind=DispatchErrorKind.RATE_LIMITED,
        )

    async def _release(
        self,
        run: _Run,
        reason: str,
        delay: timedelta,
        action: str,
        kind: Optional[DispatchErrorKind] = None
    ) -> TaskResponse:
        """Release the claim and push the task forward. The recipient is left open."""
        scheduled_for = run.now + delay

        self.supabase.table("agent_tasks").update({
            "status": TaskStatus.PENDING.value,
            "scheduled_for": scheduled_for.isoformat(),
            "started_at": None,
        }).eq("id", run.task.id).eq("status", TaskStatus.IN_PROGRESS.value).execute()

        logger.info(f"Task {run.task.id[:8]} delayed until {scheduled_for.isoformat()}: {reason}")
        await self._audit(
            run, action, "delayed", reason,
            {"error_kind": kind.value if kind else None, "rescheduled_for": scheduled_for.isoformat()},
        )

        return TaskResponse(
            success=True,
            channel=run.channel,
            recipient_id=run.recipient_id,
            delayed=True,
            reason=reason,
            error_kind=kind.value if kind else None,
        )

    async def _resolve_task(
        self,
        run: _Run,
        status: TaskStatus,
        reason: Optional[str] = None,
        error: Optional[str] = None,
        result_communication_id: Optional[str] = None
    ) -> None:
        update_data = {
            "status": status.value,
            "completed_at": run.now.isoformat(),
            "resolution_reason": reason,
        }
        if error:
            update_data["last_error"] = error
        if result_communication_id:
            update_data["result_communication_id"] = result_communication_id

        # Only the claim holder may resolve; terminal rows are never rewritten
        self.supabase.table("agent_tasks").update(update_data).eq(
            "id", run.task.id
        ).eq("status", TaskStatus.IN_PROGRESS.value).execute()

    async def _resolve_recipient(self, run: _Run, status: RecipientStatus, **fields: Any) -> None:
        recipient_id = run.recipient_ref
        if not recipient_id:
            return
        self.supabase.table("campaign_recipients").update({
            "status": status.value,
            "channel": run.channel,
            **fields,
        }).eq("id", recipient_id).in_("status", OPEN_RECIPIENT_STATUSES).execute()

    async def _maybe_complete(self, run: _Run) -> None:
        if run.campaign_ref:
            await self.campaigns.maybe_complete(run.campaign_ref)

    async def _audit(
        self,
        run: _Run,
        action: str,
        status: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        await self.audit.log(
            organization_id=run.task.organization_id,
            action=action,
            status=status,
            message=message,
            details={
                "campaign_id": run.campaign_id,
                "recipient_id": run.recipient_id,
                "channel": run.channel,
                **(details or {}),
            },
            lead_id=run.task.lead_id,
            task_id=run.task.id,
            execution_ms=run.elapsed_ms(),
        )


# Singleton instance helper
_task_scheduler: Optional[TaskScheduler] = None


def get_task_scheduler(supabase: Client) -> TaskScheduler:
    """Get or create TaskScheduler instance."""
    global _task_scheduler
    if _task_scheduler is None:
        _task_scheduler = TaskScheduler(supabase)
    return _task_scheduler
