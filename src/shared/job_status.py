"""
Import job status enum shared by the archive service, its API and tests.

    Running / AwaitingDecision / Done / Failed / Cancelled
"""

from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    RUNNING = "Running"
    AWAITING_DECISION = "AwaitingDecision"
    DONE = "Done"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    def is_active(self) -> bool:
        return self in (JobStatus.RUNNING, JobStatus.AWAITING_DECISION)
