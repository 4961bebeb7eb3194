"""Periodic driver for the refresh + automation loop"""

from .periodic_task import PeriodicTask, TaskRunResult
from .task_tracker import TaskExecutionTracker, get_task_history, track_task_execution
from .main_continuous import ContinuousScheduler, TICK_TASK_NAME

__all__ = [
    'PeriodicTask',
    'TaskRunResult',
    'TaskExecutionTracker',
    'get_task_history',
    'track_task_execution',
    'ContinuousScheduler',
    'TICK_TASK_NAME',
]
