"""
Unit tests for the job executor.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from commandservice.jobs.exceptions import JobNotCancellableError, JobNotFoundError
from commandservice.jobs.executor import JobExecutor
from commandservice.jobs.models import Command, CommandRequest, CommandStatus, JobStatus
from commandservice.jobs.notifier import WebhookNotifier
from commandservice.jobs.store import InMemoryJobStore


async def wait_until(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def request(*commands, webhook_url=None):
    return CommandRequest(commands=list(commands), webhook_url=webhook_url)


def cmd(program, *arguments, cwd=None):
    return Command(program=program, arguments=list(arguments), working_directory=cwd)


@pytest.fixture
def notifier():
    return AsyncMock(spec=WebhookNotifier)


@pytest.fixture
def executor(notifier):
    return JobExecutor(notifier=notifier)


@pytest.fixture
def slow_script(tmp_path):
    script = tmp_path / "slow.sh"
    script.write_text("echo started\nexec sleep 30\n")
    return str(script)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_returns_pending_job(self, executor):
        job = executor.submit(request(cmd("echo", "hi")))

        assert job.status == JobStatus.PENDING
        assert job.started_at is None
        assert executor.get_job(job.id) is not None

        await executor.wait(job.id)

    @pytest.mark.asyncio
    async def test_submit_assigns_unique_ids(self, executor):
        first = executor.submit(request(cmd("true")))
        second = executor.submit(request(cmd("true")))

        assert first.id != second.id

        await executor.wait(first.id)
        await executor.wait(second.id)


class TestRun:
    @pytest.mark.asyncio
    async def test_all_successful_commands_complete(self, executor):
        job = executor.submit(request(cmd("echo", "one"), cmd("echo", "two"), cmd("true")))
        await executor.wait(job.id)

        finished = executor.get_job(job.id)
        logs = executor.get_job_logs(job.id)

        assert finished.status == JobStatus.COMPLETED
        assert finished.started_at is not None
        assert finished.completed_at >= finished.started_at
        assert [log.status for log in logs] == [CommandStatus.SUCCESS] * 3
        assert [log.command_index for log in logs] == [0, 1, 2]
        assert logs[0].output == "one\n"

    @pytest.mark.asyncio
    async def test_all_failing_commands_fail(self, executor):
        job = executor.submit(request(cmd("false"), cmd("false")))
        await executor.wait(job.id)

        assert executor.get_job(job.id).status == JobStatus.FAILED
        assert [log.status for log in executor.get_job_logs(job.id)] == [CommandStatus.ERROR] * 2

    @pytest.mark.asyncio
    async def test_mixed_results_partially_complete(self, executor):
        job = executor.submit(request(cmd("true"), cmd("false")))
        await executor.wait(job.id)

        assert executor.get_job(job.id).status == JobStatus.PARTIALLY_COMPLETED

    @pytest.mark.asyncio
    async def test_harmful_command_is_skipped_not_fatal(self, executor):
        job = executor.submit(request(cmd("echo", "hi"), cmd("rm", "-rf", "/"), cmd("echo", "after")))
        await executor.wait(job.id)

        logs = executor.get_job_logs(job.id)

        assert [log.status for log in logs] == [
            CommandStatus.SUCCESS,
            CommandStatus.HARMFUL,
            CommandStatus.SUCCESS,
        ]
        assert logs[1].output == "Command rejected: Potentially harmful command"
        assert logs[2].output == "after\n"
        assert executor.get_job(job.id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_success_harmful_error_example(self, executor):
        job = executor.submit(request(cmd("echo", "hi"), cmd("rm", "-rf", "/"), cmd("false")))
        await executor.wait(job.id)

        logs = executor.get_job_logs(job.id)

        assert [log.status for log in logs] == [
            CommandStatus.SUCCESS,
            CommandStatus.HARMFUL,
            CommandStatus.ERROR,
        ]
        assert executor.get_job(job.id).status == JobStatus.PARTIALLY_COMPLETED

    @pytest.mark.asyncio
    async def test_only_harmful_commands_complete(self, executor):
        job = executor.submit(request(cmd("reboot")))
        await executor.wait(job.id)

        assert executor.get_job(job.id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_executed_command_is_sanitized(self, executor):
        job = executor.submit(request(cmd("echo", "a & b")))
        await executor.wait(job.id)

        log = executor.get_job_logs(job.id)[0]

        assert log.command.arguments == ["a \\& b"]
        assert log.output == "a \\& b\n"

    @pytest.mark.asyncio
    async def test_final_logs_never_running(self, executor):
        job = executor.submit(request(cmd("printf", "a\\nb\\nc\\n"), cmd("echo", "x")))
        await executor.wait(job.id)

        logs = executor.get_job_logs(job.id)

        assert len(logs) == 2
        assert all(log.status != CommandStatus.RUNNING for log in logs)
        assert logs[0].output == "a\nb\nc\n"

    @pytest.mark.asyncio
    async def test_partial_logs_written_while_running(self, executor, slow_script):
        job = executor.submit(request(cmd("sh", slow_script)))

        await wait_until(lambda: len(executor.store.find_logs_by_job_id(job.id)) == 1)
        partial = executor.get_job_logs(job.id)[0]

        assert partial.status == CommandStatus.RUNNING
        assert partial.output == "started\n"
        assert executor.get_job(job.id).status == JobStatus.RUNNING

        await executor.cancel(job.id)
        await executor.wait(job.id)

    @pytest.mark.asyncio
    async def test_webhook_notified_once_with_final_job(self, executor, notifier):
        job = executor.submit(request(cmd("true"), webhook_url="http://example.com/hook"))
        await executor.wait(job.id)

        notifier.notify.assert_awaited_once()
        url, snapshot = notifier.notify.await_args.args
        assert url == "http://example.com/hook"
        assert snapshot.status == JobStatus.COMPLETED
        assert snapshot.completed_at is not None

    @pytest.mark.asyncio
    async def test_no_webhook_without_url(self, executor, notifier):
        job = executor.submit(request(cmd("true")))
        await executor.wait(job.id)

        notifier.notify.assert_not_called()

    @pytest.mark.asyncio
    async def test_webhook_failure_keeps_terminal_status(self):
        notifier = WebhookNotifier(timeout_seconds=0.5)
        executor = JobExecutor(notifier=notifier)

        # Nothing listens on port 9 (discard), the call fails and is swallowed
        job = executor.submit(request(cmd("true"), webhook_url="http://127.0.0.1:9/hook"))
        await executor.wait(job.id)

        assert executor.get_job(job.id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_store_failure_fails_job(self, notifier):
        class BrokenLogStore(InMemoryJobStore):
            def save_log(self, log):
                raise RuntimeError("store unavailable")

        executor = JobExecutor(store=BrokenLogStore(), notifier=notifier)
        job = executor.submit(request(cmd("echo", "hi"), cmd("echo", "never")))
        await executor.wait(job.id)

        failed = executor.get_job(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.started_at is not None
        assert failed.completed_at is not None
        assert job.id not in executor.runner.registry
        notifier.notify.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_before_start_leaves_started_at_unset(self, notifier):
        class FlakyStore(InMemoryJobStore):
            def __init__(self):
                super().__init__()
                self.failed_once = False

            def update(self, job):
                if not self.failed_once:
                    self.failed_once = True
                    raise RuntimeError("store unavailable")
                return super().update(job)

        executor = JobExecutor(store=FlakyStore(), notifier=notifier)
        job = executor.submit(request(cmd("echo", "hi")))
        await executor.wait(job.id)

        failed = executor.get_job(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.started_at is None
        assert failed.completed_at is not None
        assert executor.get_job_logs(job.id) == []

    @pytest.mark.asyncio
    async def test_run_skips_job_that_is_not_pending(self, executor):
        job = executor.submit(request(cmd("true")))
        await executor.wait(job.id)
        finished = executor.get_job(job.id)

        await executor.run(finished)

        assert executor.get_job(job.id) == finished

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, notifier):
        executor = JobExecutor(notifier=notifier, max_concurrent_jobs=1)
        first = executor.submit(request(cmd("true")))
        second = executor.submit(request(cmd("true")))

        await executor.wait(first.id)
        await executor.wait(second.id)

        assert executor.get_job(first.id).status == JobStatus.COMPLETED
        assert executor.get_job(second.id).status == JobStatus.COMPLETED


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_running_job_kills_process(self, executor, slow_script):
        job = executor.submit(request(cmd("sh", slow_script), cmd("echo", "never")))
        await wait_until(lambda: job.id in executor.runner.registry
                         and executor.store.find_logs_by_job_id(job.id))

        cancelled = await executor.cancel(job.id)
        await asyncio.wait_for(executor.wait(job.id), timeout=5)

        assert cancelled.status == JobStatus.CANCELLED
        assert cancelled.completed_at is not None
        assert job.id not in executor.runner.registry
        assert executor.get_job(job.id).status == JobStatus.CANCELLED

        logs = executor.get_job_logs(job.id)
        assert len(logs) == 1
        assert logs[0].status == CommandStatus.RUNNING
        assert logs[0].output == "started\n"

    @pytest.mark.asyncio
    async def test_cancel_pending_job_prevents_execution(self, executor):
        job = executor.submit(request(cmd("echo", "hi")))

        cancelled = await executor.cancel(job.id)
        await executor.wait(job.id)

        assert cancelled.status == JobStatus.CANCELLED
        assert executor.get_job(job.id).status == JobStatus.CANCELLED
        assert executor.get_job(job.id).started_at is None
        assert executor.get_job_logs(job.id) == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, executor):
        with pytest.raises(JobNotFoundError):
            await executor.cancel("missing")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("commands", [
        [Command(program="true")],
        [Command(program="false")],
    ])
    async def test_cancel_terminal_job_is_rejected(self, executor, commands):
        job = executor.submit(CommandRequest(commands=commands))
        await executor.wait(job.id)
        finished = executor.get_job(job.id)

        with pytest.raises(JobNotCancellableError):
            await executor.cancel(job.id)

        assert executor.get_job(job.id) == finished

    @pytest.mark.asyncio
    async def test_cancel_twice_is_rejected(self, executor):
        job = executor.submit(request(cmd("true")))
        await executor.cancel(job.id)

        with pytest.raises(JobNotCancellableError):
            await executor.cancel(job.id)

    @pytest.mark.asyncio
    async def test_cancel_notifies_webhook(self, executor, notifier):
        job = executor.submit(request(cmd("true"), webhook_url="http://example.com/hook"))

        await executor.cancel(job.id)
        await wait_until(lambda: notifier.notify.await_count == 1)
        await executor.wait(job.id)

        url, snapshot = notifier.notify.await_args.args
        assert url == "http://example.com/hook"
        assert snapshot.status == JobStatus.CANCELLED
        assert notifier.notify.await_count == 1


class TestReads:
    @pytest.mark.asyncio
    async def test_summary(self, executor):
        job = executor.submit(request(cmd("true"), cmd("kill", "1"), cmd("false")))
        await executor.wait(job.id)

        summary = executor.get_job_summary(job.id)

        assert summary.total_commands == 3
        assert summary.successful_commands == 1
        assert summary.skipped_harmful_commands == 1
        assert summary.failed_commands == 1

    def test_logs_of_unknown_job(self, executor):
        with pytest.raises(JobNotFoundError):
            executor.get_job_logs("missing")

    @pytest.mark.asyncio
    async def test_list_jobs(self, executor):
        job = executor.submit(request(cmd("true")))
        await executor.wait(job.id)

        assert [j.id for j in executor.list_jobs()] == [job.id]

    @pytest.mark.asyncio
    async def test_shutdown_stops_running_jobs(self, executor, slow_script):
        job = executor.submit(request(cmd("sh", slow_script)))
        await wait_until(lambda: job.id in executor.runner.registry)

        await asyncio.wait_for(executor.shutdown(), timeout=5)

        assert job.id not in executor.runner.registry
