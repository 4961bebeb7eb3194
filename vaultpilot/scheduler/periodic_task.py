"""
Periodic task abstraction

Wraps a unit of scheduled work with:
- a run-in-progress guard: a run requested while another is active is
  skipped, never queued or overlapped
- an optional precondition (e.g. store liveness): a failed precondition skips
  the run
- per-run outcome (success / failure / skipped / duration), kept in memory and
  written to scheduled_task_executions when a store is attached
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

from vaultpilot.database import Store, utc_now
from vaultpilot.scheduler.task_tracker import TaskExecutionTracker, track_task_execution
from vaultpilot.utils import get_logger

logger = get_logger(__name__)


@dataclass
class TaskRunResult:
    """Outcome of one requested run"""
    task_name: str
    started_at: datetime
    success: bool = False
    skipped: bool = False
    skip_reason: Optional[str] = None
    duration: float = 0.0
    error: Optional[str] = None
    triggered_by: str = 'system'
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['started_at'] = self.started_at.isoformat()
        return data


class PeriodicTask:
    """
    Non-overlapping unit of scheduled work

    Example:
        >>> task = PeriodicTask('automation_tick', work, store=store, precondition=store.is_connected)
        >>> result = task.run()
        >>> result.skipped, result.success
        (False, True)
    """

    def __init__(
        self,
        name: str,
        func: Callable[[TaskExecutionTracker], Any],
        store: Optional[Store] = None,
        precondition: Optional[Callable[[], bool]] = None,
        precondition_reason: str = 'precondition_failed',
        history_size: int = 50
    ):
        """
        Args:
            name: Task name (used in logs and tracking rows)
            func: Work to run; receives a TaskExecutionTracker for metadata
            store: Store for execution tracking (optional)
            precondition: Checked before every run; False skips the run
            precondition_reason: skip_reason reported when the precondition fails
            history_size: Number of results kept in memory
        """
        self.name = name
        self.func = func
        self.store = store
        self.precondition = precondition
        self.precondition_reason = precondition_reason
        self._lock = threading.Lock()
        self._history: Deque[TaskRunResult] = deque(maxlen=history_size)

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def last_result(self) -> Optional[TaskRunResult]:
        return self._history[-1] if self._history else None

    def history(self) -> List[TaskRunResult]:
        return list(self._history)

    def run(self, triggered_by: str = 'system', task_type: str = 'scheduler') -> TaskRunResult:
        """
        Run the task now unless a run is in progress or the precondition fails

        Never raises: failures are captured in the returned result.
        """
        result = TaskRunResult(task_name=self.name, started_at=utc_now(), triggered_by=triggered_by)

        if not self._lock.acquire(blocking=False):
            logger.warning(f"Skipping {self.name}: previous run still in progress")
            result.skipped = True
            result.skip_reason = 'already_running'
            self._history.append(result)
            return result

        started = time.monotonic()
        try:
            if self.precondition is not None and not self.precondition():
                logger.error(f"Skipping {self.name}: {self.precondition_reason}")
                result.skipped = True
                result.skip_reason = self.precondition_reason
                return result

            tracker = self._execute(task_type, triggered_by)
            result.metadata = tracker.get_metadata()
            result.success = True

        except Exception as e:
            logger.error(f"Task {self.name} failed: {e}", exc_info=True)
            result.error = str(e)

        finally:
            result.duration = time.monotonic() - started
            self._history.append(result)
            self._lock.release()

        return result

    def _execute(self, task_type: str, triggered_by: str) -> TaskExecutionTracker:
        if self.store is None:
            tracker = TaskExecutionTracker(None)
            self.func(tracker)
            return tracker

        with track_task_execution(self.store, self.name, task_type, triggered_by) as tracker:
            self.func(tracker)
        return tracker
