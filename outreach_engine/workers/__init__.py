"""
Workers Package
Background worker that fires due agent tasks
"""
from outreach_engine.workers.task_dispatcher import TaskDispatcherWorker

__all__ = [
    "TaskDispatcherWorker",
]
