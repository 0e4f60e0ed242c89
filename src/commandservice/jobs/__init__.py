"""Job execution engine for commandservice.

This module turns batches of commands into jobs that:
- run their commands sequentially as child processes
- stream partial output into the job store while running
- can be cancelled, killing the live process
- notify a webhook once they reach a terminal state
"""

from commandservice.jobs.executor import JobExecutor
from commandservice.jobs.models import (
    Command,
    CommandLog,
    CommandRequest,
    CommandStatus,
    Job,
    JobStatus,
    JobSummary,
)
from commandservice.jobs.runner import ProcessRegistry, ProcessRunner
from commandservice.jobs.store import InMemoryJobStore, JobStore
from commandservice.jobs.validator import CommandValidator

__all__ = [
    "JobExecutor",
    "Command",
    "CommandLog",
    "CommandRequest",
    "CommandStatus",
    "Job",
    "JobStatus",
    "JobSummary",
    "ProcessRegistry",
    "ProcessRunner",
    "InMemoryJobStore",
    "JobStore",
    "CommandValidator",
]
