from commandservice.jobs.models import JobStatus


class JobError(Exception):
    """Base class for job lifecycle errors."""


class JobNotFoundError(JobError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class JobNotCancellableError(JobError):
    def __init__(self, job_id: str, status: JobStatus):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} cannot be cancelled in status {status.value}")
