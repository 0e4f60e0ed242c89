from enum import Enum
from typing import List, Optional
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys, accepting either case on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PARTIALLY_COMPLETED = "PARTIALLY_COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


class CommandStatus(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    HARMFUL = "HARMFUL"
    # Only ever seen on partial entries while the process is still producing output
    RUNNING = "RUNNING"


class Command(CamelModel):
    """A single program invocation."""
    model_config = ConfigDict(frozen=True)

    program: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("program", "command"),
        description="Program to execute",
    )
    arguments: List[str] = Field(default_factory=list, description="Program arguments")
    working_directory: Optional[str] = Field(None, description="Working directory for the process")

    def __str__(self) -> str:
        return " ".join([self.program, *self.arguments])


class Job(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    commands: List[Command] = Field(..., min_length=1)
    webhook_url: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CommandLog(CamelModel):
    """Recorded outcome (partial or final) of one command within a job."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    command_index: int = Field(..., ge=0)
    command: Command
    output: str = ""
    status: CommandStatus
    start_time: datetime
    end_time: datetime
    exit_code: Optional[int] = Field(None, description="Process exit code, informational only")

    @property
    def is_final(self) -> bool:
        return self.status != CommandStatus.RUNNING


class JobSummary(CamelModel):
    total_commands: int = 0
    successful_commands: int = 0
    failed_commands: int = 0
    skipped_harmful_commands: int = 0
    running_commands: int = 0

    @classmethod
    def from_logs(cls, logs: List[CommandLog]) -> "JobSummary":
        statuses = [log.status for log in logs]
        return cls(
            total_commands=len(logs),
            successful_commands=statuses.count(CommandStatus.SUCCESS),
            failed_commands=statuses.count(CommandStatus.ERROR),
            skipped_harmful_commands=statuses.count(CommandStatus.HARMFUL),
            running_commands=statuses.count(CommandStatus.RUNNING),
        )


class CommandRequest(CamelModel):
    """Batch of commands submitted as one job."""
    commands: List[Command] = Field(..., min_length=1, description="Commands to run in order")
    webhook_url: Optional[str] = Field(None, description="URL notified once the job reaches a terminal state")


class JobResponse(CamelModel):
    job_id: str
    status: JobStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            job_id=job.id,
            status=job.status,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )


class JobLogsResponse(CamelModel):
    job_id: str
    status: JobStatus
    logs: List[CommandLog] = []
    summary: JobSummary
