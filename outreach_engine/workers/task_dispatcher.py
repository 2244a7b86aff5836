"""
Task Dispatcher Worker
Time-based trigger for agent tasks

Polls agent_tasks for due pending rows and runs each through the
TaskScheduler as an independent invocation. Also sweeps claims that have
been in_progress too long (crashed invocations).

Run as separate process:
    python -m outreach_engine.workers.task_dispatcher
"""
import asyncio
import logging
import signal
import time
from datetime import datetime, timedelta
from typing import List, Optional

from dotenv import load_dotenv
from supabase import create_client, Client

from outreach_engine.core.config import Settings, get_settings
from outreach_engine.domain.models.agent_task import ActionType, AgentTask, TaskInvocation, TaskResponse, TaskStatus
from outreach_engine.domain.models.campaign import OPEN_RECIPIENT_STATUSES, RecipientStatus
from outreach_engine.domain.services.audit_logger import AuditLogger
from outreach_engine.domain.services.task_scheduler import TaskScheduler
from outreach_engine.utils.timestamps import utc_now

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Configure logging for worker
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

RECONCILIATION_REASON = "requires reconciliation"

# Batch summaries are logged under the worker, not an outreach agent
DISPATCHER_AGENT_KEY = "task_dispatcher"


class TaskDispatcherWorker:
    """
    Background worker that fires due agent tasks.

    Responsibilities:
    - Select pending tasks whose scheduled_for has passed
    - Invoke the scheduler for each, concurrently and independently
    - Return stale text/email claims to pending; fail stale call claims for
      manual reconciliation (a call may already have been placed)
    - Write one activity row per poll summarizing the batch

    Holds no shared counters: every gate decision is made by the scheduler
    against the store.
    """

    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(
        self,
        supabase: Optional[Client] = None,
        scheduler: Optional[TaskScheduler] = None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or get_settings()
        self._supabase = supabase
        self._scheduler = scheduler

        self.running = False

        # Stats
        self._tasks_processed = 0
        self._tasks_failed = 0

    async def initialize(self) -> None:
        """Initialize the Supabase client and scheduler."""
        logger.info("Initializing Task Dispatcher Worker...")

        if self._supabase is None:
            if not self.settings.supabase_url or not self.settings.supabase_service_key:
                raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
            self._supabase = create_client(self.settings.supabase_url, self.settings.supabase_service_key)

        if self._scheduler is None:
            self._scheduler = TaskScheduler(self._supabase, self.settings)

        logger.info("Task Dispatcher Worker initialized successfully")

    async def run(self) -> None:
        """
        Main worker loop.

        Continuously:
        1. Reconcile stale claims
        2. Fire a batch of due tasks
        3. Back off on consecutive errors
        """
        await self.initialize()

        self.running = True
        consecutive_errors = 0

        logger.info("Task Dispatcher Worker started - polling for due tasks")

        while self.running:
            try:
                await self.reconcile_stale_claims()
                processed = await self.process_due_tasks()
                consecutive_errors = 0

                if processed < self.settings.dispatcher_batch_size:
                    await asyncio.sleep(self.settings.dispatcher_poll_interval)

            except asyncio.CancelledError:
                logger.info("Worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, stopping worker")
                    break

                await asyncio.sleep(min(5 * consecutive_errors, 60))

        await self.shutdown()

    async def fetch_due_tasks(self, now: Optional[datetime] = None) -> List[AgentTask]:
        now = now or utc_now()
        response = self._supabase.table("agent_tasks").select("*").eq(
            "status", TaskStatus.PENDING.value
        ).lte("scheduled_for", now.isoformat()).order("scheduled_for").limit(
            self.settings.dispatcher_batch_size
        ).execute()
        return [AgentTask.from_row(row) for row in response.data or []]

    async def process_due_tasks(self, now: Optional[datetime] = None) -> int:
        """
        Run every due task in one batch.

        Returns:
            Number of tasks invoked
        """
        started = time.monotonic()
        tasks = await self.fetch_due_tasks(now)
        if not tasks:
            await self._audit.log(
                organization_id=None,
                action="queue_check",
                status="success",
                message="No pending tasks found in queue",
                details={"tasks_checked": 0},
                execution_ms=int((time.monotonic() - started) * 1000),
            )
            return 0

        logger.info(f"Dispatching {len(tasks)} due tasks")
        results = await asyncio.gather(
            *(self.process_task(task, now) for task in tasks),
            return_exceptions=True
        )

        outcomes = {"dispatched": 0, "skipped": 0, "delayed": 0, "failed": 0}
        for task, result in zip(tasks, results):
            if isinstance(result, Exception):
                self._tasks_failed += 1
                outcomes["failed"] += 1
                logger.error(f"Task {task.id} raised: {result}", exc_info=result)
            elif not result.success:
                self._tasks_failed += 1
                outcomes["failed"] += 1
            else:
                self._tasks_processed += 1
                if result.skipped:
                    outcomes["skipped"] += 1
                elif result.delayed:
                    outcomes["delayed"] += 1
                else:
                    outcomes["dispatched"] += 1

        summary = ", ".join(f"{count} {name}" for name, count in outcomes.items())
        logger.info(f"Batch complete: {summary}")
        await self._audit.log(
            organization_id=None,
            action="batch_complete",
            status="success",
            message=f"Processed {len(tasks)} tasks: {summary}",
            details={"tasks_checked": len(tasks), **outcomes},
            execution_ms=int((time.monotonic() - started) * 1000),
        )

        return len(tasks)

    @property
    def _audit(self) -> AuditLogger:
        return AuditLogger(self._supabase, agent_key=DISPATCHER_AGENT_KEY)

    async def process_task(self, task: AgentTask, now: Optional[datetime] = None) -> TaskResponse:
        invocation = TaskInvocation(
            task_id=task.id,
            lead_id=task.lead_id,
            organization_id=task.organization_id,
            context=task.context,
        )
        response = await self._scheduler.execute(invocation, now=now)

        if not response.success:
            level = logging.CRITICAL if response.error_kind == "configuration_error" else logging.ERROR
            logger.log(level, f"Task {task.id} failed: {response.error}")
        return response

    async def reconcile_stale_claims(self, now: Optional[datetime] = None) -> int:
        """
        Resolve tasks stuck in_progress past the stale-claim threshold.

        SMS and email go back to pending (a crash may repeat a send).
        Calls are failed and flagged, never retried blindly.

        Returns:
            Number of tasks reconciled
        """
        now = now or utc_now()
        cutoff = now - timedelta(minutes=self.settings.stale_claim_minutes)

        response = self._supabase.table("agent_tasks").select("*").eq(
            "status", TaskStatus.IN_PROGRESS.value
        ).lt("started_at", cutoff.isoformat()).execute()

        stale = [AgentTask.from_row(row) for row in response.data or []]
        for task in stale:
            if task.action_type == ActionType.CALL:
                await self._fail_for_reconciliation(task, now)
            else:
                self._supabase.table("agent_tasks").update({
                    "status": TaskStatus.PENDING.value,
                    "started_at": None,
                }).eq("id", task.id).eq("status", TaskStatus.IN_PROGRESS.value).execute()
                logger.warning(f"Returned stale {task.action_type.value} task {task.id} to pending")

        return len(stale)

    async def _fail_for_reconciliation(self, task: AgentTask, now: datetime) -> None:
        self._supabase.table("agent_tasks").update({
            "status": TaskStatus.FAILED.value,
            "completed_at": now.isoformat(),
            "resolution_reason": RECONCILIATION_REASON,
            "last_error": "Call claim went stale; the call may have been placed",
        }).eq("id", task.id).eq("status", TaskStatus.IN_PROGRESS.value).execute()

        recipient_id = task.context.get("campaign_recipient_id")
        if recipient_id:
            self._supabase.table("campaign_recipients").update({
                "status": RecipientStatus.FAILED.value,
                "error_message": RECONCILIATION_REASON,
            }).eq("id", recipient_id).in_("status", OPEN_RECIPIENT_STATUSES).execute()

        logger.critical(f"Call task {task.id} for lead {task.lead_id} {RECONCILIATION_REASON}")

        await AuditLogger(self._supabase).log(
            organization_id=task.organization_id,
            action="send_call",
            status="failed",
            message=f"Stale call claim {RECONCILIATION_REASON}",
            details={"campaign_id": task.context.get("campaign_id"), "channel": "call"},
            lead_id=task.lead_id,
            task_id=task.id,
        )

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        logger.info("Shutting down Task Dispatcher Worker...")
        self.running = False

        logger.info(
            f"Task Dispatcher Worker shutdown complete. "
            f"Processed: {self._tasks_processed}, Failed: {self._tasks_failed}"
        )

    def get_stats(self) -> dict:
        """Get worker statistics."""
        return {
            "running": self.running,
            "tasks_processed": self._tasks_processed,
            "tasks_failed": self._tasks_failed,
        }


async def main():
    """Entry point for running the task dispatcher as a separate process."""
    worker = TaskDispatcherWorker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.running = False

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    finally:
        await worker.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
