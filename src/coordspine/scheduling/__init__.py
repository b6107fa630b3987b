"""Fleet-wide job coordination: distributed locks, the execution guard,
execution history and an interval scheduler.

Tags:
    coord-spine, scheduling, distributed-locks
"""

from coordspine.scheduling.guard import ExecutionGuard, GuardedRun, JobResult
from coordspine.scheduling.history import (
    ExecutionHistoryRepository,
    ExecutionRecord,
    JobStatus,
    SchedulerMonitor,
)
from coordspine.scheduling.lock_manager import DistributedLockManager
from coordspine.scheduling.scheduler import JobScheduler, ScheduledJob

__all__ = [
    "DistributedLockManager",
    "ExecutionGuard",
    "ExecutionHistoryRepository",
    "ExecutionRecord",
    "GuardedRun",
    "JobResult",
    "JobScheduler",
    "JobStatus",
    "ScheduledJob",
    "SchedulerMonitor",
]
