"""
Job orchestration: control loop, work queue, crawl and label runners,
recovery, and the control surface.
"""

from makergrade.jobs.control import Cancelled, JobControl
from makergrade.jobs.queue import QueueClosed, WorkQueue
from makergrade.jobs.recovery import RecoveryScheduler
from makergrade.jobs.service import CLEARED_BY_NEW_RUN, JobService

__all__ = [
    "CLEARED_BY_NEW_RUN",
    "Cancelled",
    "JobControl",
    "JobService",
    "QueueClosed",
    "RecoveryScheduler",
    "WorkQueue",
]
