"""Bounded-concurrency task queue and job models."""

from .models import Job, JobConfig, JobStatus, TERMINAL_STATUSES
from .pool import TaskQueue

__all__ = [
    "Job",
    "JobConfig",
    "JobStatus",
    "TERMINAL_STATUSES",
    "TaskQueue",
]
