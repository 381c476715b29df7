"""Deferred callback scheduling: models, persistence, execution, and scheduling."""

from src.scheduler.catchup import CatchupScanner
from src.scheduler.dispatch import Dispatcher
from src.scheduler.engine import SchedulerEngine
from src.scheduler.executor import CallbackExecutor
from src.scheduler.identity import TaskKey, TaskRef, format_task_id, parse_task_key, parse_task_ref
from src.scheduler.models import Page, Task, TaskSpec, TaskState
from src.scheduler.service import SchedulingService
from src.scheduler.store import Store, TaskStore

__all__ = [
    "CallbackExecutor",
    "CatchupScanner",
    "Dispatcher",
    "Page",
    "SchedulerEngine",
    "SchedulingService",
    "Store",
    "Task",
    "TaskKey",
    "TaskRef",
    "TaskSpec",
    "TaskState",
    "TaskStore",
    "format_task_id",
    "parse_task_key",
    "parse_task_ref",
]
