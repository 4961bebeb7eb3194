"""
Task execution tracking helper.

Provides context manager for automatic database tracking of scheduled tasks.
"""
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from vaultpilot.database import Store
from vaultpilot.utils import get_logger

logger = get_logger(__name__)


class TaskExecutionTracker:
    """Helper to track task execution metrics"""

    def __init__(self, execution_id: Optional[int]):
        self.execution_id = execution_id
        self.metadata: Dict[str, Any] = {}

    def add_metadata(self, key: str, value: Any) -> None:
        """Add metadata to task execution"""
        self.metadata[key] = value

    def get_metadata(self) -> dict:
        """Get all metadata"""
        return self.metadata


def _safe_finish(store: Store, execution_id: Optional[int], **kwargs) -> None:
    if execution_id is None:
        return
    try:
        store.finish_task_execution(execution_id, **kwargs)
    except Exception as e:
        logger.error(f"Failed to update task execution {execution_id}: {e}")


@contextmanager
def track_task_execution(
    store: Store,
    task_name: str,
    task_type: str = 'scheduler',
    triggered_by: str = 'system'
):
    """
    Context manager to track scheduled task execution.

    Usage:
        with track_task_execution(store, 'automation_tick') as tracker:
            # Do work
            tracker.add_metadata('decision', 'no_action')

    A store failure while writing the tracking row is logged and the task
    still runs; tracking never changes the task's outcome.

    Args:
        store: Store handle
        task_name: Name of the task (e.g., 'automation_tick')
        task_type: Type of task ('scheduler', 'warmup', 'manual')
        triggered_by: Who triggered it ('system', 'api', 'cli')

    Yields:
        TaskExecutionTracker instance for adding metadata

    Raises:
        Re-raises any exception from the task after logging it
    """
    started = time.monotonic()

    try:
        execution_id = store.start_task_execution(task_name, task_type, triggered_by)
    except Exception as e:
        logger.error(f"Failed to record start of task {task_name}: {e}")
        execution_id = None

    tracker = TaskExecutionTracker(execution_id)
    logger.info(f"Task started: {task_name} (execution_id={execution_id})")

    try:
        yield tracker

    except Exception as e:
        duration = time.monotonic() - started
        _safe_finish(
            store, execution_id,
            status='FAILED',
            duration_seconds=duration,
            error_message=str(e),
            metadata=tracker.get_metadata(),
        )
        logger.error(
            f"Task failed: {task_name} (error={e}, execution_id={execution_id})",
            exc_info=True
        )
        raise

    duration = time.monotonic() - started
    _safe_finish(
        store, execution_id,
        status='SUCCESS',
        duration_seconds=duration,
        metadata=tracker.get_metadata(),
    )
    logger.info(
        f"Task completed: {task_name} "
        f"(duration={duration:.2f}s, execution_id={execution_id})"
    )


def get_task_history(store: Store, task_name: Optional[str] = None, limit: int = 50) -> list:
    """
    Get recent task execution history.

    Args:
        store: Store handle
        task_name: Filter by task name (optional)
        limit: Max results to return

    Returns:
        List of ScheduledTaskExecution records, newest first
    """
    return store.task_history(task_name=task_name, limit=limit)
