import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from commandservice.jobs.exceptions import JobNotFoundError
from commandservice.jobs.models import CommandLog, Job


class JobStore(ABC):
    """Keyed storage for jobs and their command logs."""

    @abstractmethod
    def save(self, job: Job) -> Job:
        pass

    @abstractmethod
    def find_by_id(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    def update(self, job: Job) -> Job:
        pass

    @abstractmethod
    def save_log(self, log: CommandLog):
        """Upsert a log; a later write for the same (job_id, command_index) replaces the earlier one."""
        pass

    @abstractmethod
    def find_logs_by_job_id(self, job_id: str) -> List[CommandLog]:
        """Latest log per command index, ordered by index."""
        pass

    @abstractmethod
    def list_jobs(self) -> List[Job]:
        pass


class InMemoryJobStore(JobStore):
    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._logs: Dict[str, Dict[int, CommandLog]] = {}
        self._lock = threading.Lock()

    def save(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.id] = job
        return job

    def find_by_id(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def update(self, job: Job) -> Job:
        with self._lock:
            if job.id not in self._jobs:
                raise JobNotFoundError(job.id)
            self._jobs[job.id] = job
        return job

    def save_log(self, log: CommandLog):
        with self._lock:
            self._logs.setdefault(log.job_id, {})[log.command_index] = log

    def find_logs_by_job_id(self, job_id: str) -> List[CommandLog]:
        with self._lock:
            logs = self._logs.get(job_id, {})
            return [logs[index] for index in sorted(logs)]

    def list_jobs(self) -> List[Job]:
        with self._lock:
            jobs = list(self._jobs.values())
        return sorted(jobs, key=lambda job: job.created_at)
