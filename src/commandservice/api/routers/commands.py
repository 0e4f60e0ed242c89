"""API router for command jobs."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status

from commandservice.api.dependencies import get_executor
from commandservice.jobs.exceptions import JobNotCancellableError, JobNotFoundError
from commandservice.jobs.executor import JobExecutor
from commandservice.jobs.models import (
    CommandRequest,
    JobLogsResponse,
    JobResponse,
    JobSummary,
)

router = APIRouter(prefix="/api/commands", tags=["Commands"])


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def submit_commands(request: CommandRequest, executor: JobExecutor = Depends(get_executor)):
    """Submit commands for sequential execution.

    Returns immediately with the PENDING job; poll the job or its logs for progress.

    Example:
        ```json
        {
            "commands": [
                {"command": "echo", "arguments": ["Hello, World!"]},
                {"command": "ls", "arguments": ["-la"], "workingDirectory": "/tmp"}
            ],
            "webhookUrl": "http://example.com/webhook"
        }
        ```
    """
    job = executor.submit(request)
    return JobResponse.from_job(job)


@router.get("", response_model=List[JobResponse])
async def list_jobs(executor: JobExecutor = Depends(get_executor)):
    return [JobResponse.from_job(job) for job in executor.list_jobs()]


@router.get("/{job_id}", response_model=JobResponse)
async def get_job_status(
    job_id: str = Path(..., description="ID of the job to retrieve"),
    executor: JobExecutor = Depends(get_executor),
):
    job = executor.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return JobResponse.from_job(job)


@router.get("/{job_id}/logs", response_model=JobLogsResponse)
async def get_job_logs(
    job_id: str = Path(..., description="ID of the job to retrieve logs for"),
    executor: JobExecutor = Depends(get_executor),
):
    """Get the latest log entry of every command of a job, ordered by index.

    Entries of commands that are still running carry status RUNNING and the
    output produced so far.
    """
    job = executor.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")

    logs = executor.get_job_logs(job_id)
    return JobLogsResponse(
        job_id=job.id,
        status=job.status,
        logs=logs,
        summary=JobSummary.from_logs(logs),
    )


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    job_id: str = Path(..., description="ID of the job to cancel"),
    executor: JobExecutor = Depends(get_executor),
):
    try:
        job = await executor.cancel(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except JobNotCancellableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return JobResponse.from_job(job)
