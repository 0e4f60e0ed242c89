import asyncio
import uuid
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from commandservice.jobs.exceptions import JobNotCancellableError, JobNotFoundError
from commandservice.jobs.models import (
    Command,
    CommandLog,
    CommandRequest,
    CommandStatus,
    Job,
    JobStatus,
    JobSummary,
)
from commandservice.jobs.notifier import WebhookNotifier
from commandservice.jobs.runner import ProcessRunner
from commandservice.jobs.store import InMemoryJobStore, JobStore
from commandservice.jobs.validator import CommandValidator

logger = logging.getLogger(__name__)

HARMFUL_OUTPUT = "Command rejected: Potentially harmful command"


class PartialLogWriter:
    """Line sink that persists a RUNNING log holding the output seen so far."""

    def __init__(self, store: JobStore, job_id: str, command_index: int, command: Command, start_time: datetime):
        self.store = store
        self.job_id = job_id
        self.command_index = command_index
        self.command = command
        self.start_time = start_time
        self.lines: List[str] = []

    async def on_line(self, line: str):
        self.lines.append(line + "\n")
        self.store.save_log(CommandLog(
            job_id=self.job_id,
            command_index=self.command_index,
            command=self.command,
            output="".join(self.lines),
            status=CommandStatus.RUNNING,
            start_time=self.start_time,
            end_time=datetime.now(),
        ))


class JobExecutor:
    """Owns the job lifecycle: PENDING -> RUNNING -> terminal state.

    Every job runs in its own asyncio task; the commands of one job run
    strictly one after another. The store is the only source of truth for
    job and log state.
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        runner: Optional[ProcessRunner] = None,
        validator: Optional[CommandValidator] = None,
        notifier: Optional[WebhookNotifier] = None,
        max_concurrent_jobs: int = 0,
    ):
        self.store = store if store is not None else InMemoryJobStore()
        self.runner = runner if runner is not None else ProcessRunner()
        self.validator = validator if validator is not None else CommandValidator()
        self.notifier = notifier if notifier is not None else WebhookNotifier()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._background: set = set()
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs) if max_concurrent_jobs > 0 else None

    def submit(self, request: CommandRequest) -> Job:
        """Persist a new PENDING job and schedule its execution.

        Must be called from a running event loop. Returns without waiting
        for any command to run.
        """
        job = Job(
            id=str(uuid.uuid4()),
            commands=request.commands,
            webhook_url=request.webhook_url,
        )
        job = self.store.save(job)
        logger.info(f"Job {job.id} submitted with {len(job.commands)} command(s)")

        task = asyncio.create_task(self._execute(job), name=f"job-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        return job

    async def wait(self, job_id: str):
        """Wait until the execution task of a job, if any, has finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.store.find_by_id(job_id)

    def list_jobs(self) -> List[Job]:
        return self.store.list_jobs()

    def get_job_logs(self, job_id: str) -> List[CommandLog]:
        if self.store.find_by_id(job_id) is None:
            raise JobNotFoundError(job_id)

        logs = self.store.find_logs_by_job_id(job_id)
        if not logs:
            logger.debug(f"No logs found for job {job_id}")
        return logs

    def get_job_summary(self, job_id: str) -> JobSummary:
        return JobSummary.from_logs(self.get_job_logs(job_id))

    async def cancel(self, job_id: str) -> Job:
        """Cancel a PENDING or RUNNING job.

        Kills the live process of the job, if any, and moves the job to
        CANCELLED. The execution task notices on its next check and stops
        dispatching commands.

        Raises:
            JobNotFoundError: If the job does not exist
            JobNotCancellableError: If the job is already in a terminal state
        """
        job = self.store.find_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        if job.status.is_terminal:
            logger.warning(f"Cannot cancel job {job_id} with status {job.status.value}")
            raise JobNotCancellableError(job_id, job.status)

        processes_killed = self.runner.cancel(job_id)
        cancelled = self.store.update(job.model_copy(update={
            "status": JobStatus.CANCELLED,
            "completed_at": datetime.now(),
        }))

        if processes_killed:
            logger.info(f"Job {job_id} cancelled with running processes terminated")
        else:
            logger.info(f"Job {job_id} cancelled, no running processes found")

        if cancelled.webhook_url:
            self._spawn(self.notifier.notify(cancelled.webhook_url, cancelled))
        return cancelled

    async def shutdown(self):
        """Kill live processes and stop every job task still in flight."""
        self.runner.cancel_all()
        tasks = list(self._tasks.values()) + list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def run(self, job: Job):
        """Execute the commands of a job in order and record its outcome.

        Never raises: any failure of the orchestration itself moves the job
        to FAILED.
        """
        try:
            current = self.store.find_by_id(job.id)
            if current is None or current.status != JobStatus.PENDING:
                logger.info(f"Job {job.id} is no longer pending, skipping execution")
                return

            job = self.store.update(current.model_copy(update={
                "status": JobStatus.RUNNING,
                "started_at": datetime.now(),
            }))
            logger.info(f"Starting job {job.id}")

            statuses, cancelled = await self._dispatch(job)
            if cancelled:
                logger.info(f"Job {job.id} was cancelled, dispatch halted")
                return

            final = self._finish(job, self._classify(statuses))
            if final is not None and final.webhook_url:
                await self.notifier.notify(final.webhook_url, final)

        except Exception:
            logger.exception(f"Error executing job {job.id}")
            self._fail(job)

    async def _execute(self, job: Job):
        if self._semaphore is None:
            await self.run(job)
            return
        async with self._semaphore:
            await self.run(job)

    async def _dispatch(self, job: Job) -> Tuple[List[CommandStatus], bool]:
        statuses: List[CommandStatus] = []

        for index, command in enumerate(job.commands):
            if self._is_cancelled(job.id):
                return statuses, True

            log = await self._run_command(job.id, index, command)

            # A command killed by cancellation keeps its last partial entry
            if self._is_cancelled(job.id):
                return statuses, True

            self.store.save_log(log)
            statuses.append(log.status)

            if log.status == CommandStatus.SUCCESS:
                logger.info(f"Command executed successfully: {command}")
            elif log.status == CommandStatus.HARMFUL:
                logger.warning(f"Harmful command skipped: {command}")
            else:
                logger.error(f"Command failed: {command}")

        return statuses, False

    async def _run_command(self, job_id: str, index: int, command: Command) -> CommandLog:
        start_time = datetime.now()

        # Safety is decided on the original text, sanitizing only happens afterwards
        if not self.validator.is_safe(command):
            logger.warning(f"Command rejected as potentially harmful: {command}")
            return CommandLog(
                job_id=job_id,
                command_index=index,
                command=command,
                output=HARMFUL_OUTPUT,
                status=CommandStatus.HARMFUL,
                start_time=start_time,
                end_time=datetime.now(),
            )

        sanitized = self.validator.sanitize(command)
        sink = PartialLogWriter(self.store, job_id, index, sanitized, start_time)
        return await self.runner.run(job_id, index, sanitized, sink)

    def _is_cancelled(self, job_id: str) -> bool:
        current = self.store.find_by_id(job_id)
        return current is not None and current.status == JobStatus.CANCELLED

    @staticmethod
    def _classify(statuses: List[CommandStatus]) -> JobStatus:
        if CommandStatus.ERROR not in statuses:
            return JobStatus.COMPLETED
        if all(status == CommandStatus.ERROR for status in statuses):
            return JobStatus.FAILED
        return JobStatus.PARTIALLY_COMPLETED

    def _finish(self, job: Job, status: JobStatus) -> Optional[Job]:
        current = self.store.find_by_id(job.id)
        if current is None:
            raise JobNotFoundError(job.id)
        if current.status.is_terminal:
            logger.info(f"Job {job.id} already {current.status.value}, keeping it")
            return None

        final = self.store.update(current.model_copy(update={
            "status": status,
            "completed_at": datetime.now(),
        }))
        logger.info(f"Job {job.id} finished with status {status.value}")
        return final

    def _fail(self, job: Job):
        try:
            current = self.store.find_by_id(job.id) or job
            if current.status.is_terminal:
                return
            self.store.update(current.model_copy(update={
                "status": JobStatus.FAILED,
                "completed_at": datetime.now(),
            }))
        except Exception:
            logger.exception(f"Could not mark job {job.id} as failed")

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
