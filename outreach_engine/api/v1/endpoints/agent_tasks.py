"""
Agent Tasks API
Task invocation (time-based trigger or direct call) and manual task creation
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from outreach_engine.domain.models.agent_task import ActionType, TaskInvocation
from outreach_engine.domain.services.task_scheduler import TaskPreconditionError, TaskScheduler
from outreach_engine.api.v1.dependencies import get_scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent-tasks", tags=["agent-tasks"])


class TaskCreate(BaseModel):
    """Request body for a manual ("call now") task"""
    organization_id: str
    lead_id: str
    action_type: ActionType
    scheduled_for: Optional[datetime] = None
    context: Dict[str, Any] = Field(default_factory=dict)


@router.post("/execute")
async def execute_task(
    invocation: TaskInvocation,
    scheduler: TaskScheduler = Depends(get_scheduler)
):
    """
    Execute one agent task.

    Returns the TaskResponse body. When success is false the status code is
    500 so the caller's alerting fires.
    """
    result = await scheduler.execute(invocation)

    if not result.success:
        if result.error_kind == "configuration_error":
            logger.critical(f"Task {invocation.task_id} failed with configuration error: {result.error}")
        else:
            logger.error(f"Task {invocation.task_id} failed: {result.error}")
        return JSONResponse(status_code=500, content=result.to_dict())

    return result.to_dict()


@router.post("", status_code=201)
async def create_task(
    task_data: TaskCreate,
    scheduler: TaskScheduler = Depends(get_scheduler)
):
    """Create a pending task for a lead (manual staff action)."""
    try:
        task = await scheduler.create_task(
            organization_id=task_data.organization_id,
            lead_id=task_data.lead_id,
            action_type=task_data.action_type.value,
            scheduled_for=task_data.scheduled_for,
            context=task_data.context,
        )
    except TaskPreconditionError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"task": task.model_dump(mode="json")}


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    organization_id: Optional[str] = None,
    scheduler: TaskScheduler = Depends(get_scheduler)
):
    """Get a task by id"""
    task = await scheduler.get_task(task_id, organization_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"task": task.model_dump(mode="json")}
