"""Child process execution with streamed, line-oriented output."""

import asyncio
import logging
import threading
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from commandservice.jobs.models import Command, CommandLog, CommandStatus

logger = logging.getLogger(__name__)

# StreamReader buffer size; longer lines are assembled from several reads
STREAM_LIMIT = 1024 * 1024

# How long a killed child gets to be reaped
REAP_TIMEOUT = 5


class LineSink(Protocol):
    async def on_line(self, line: str) -> None:
        ...


class ProcessOutput(BaseModel):
    """One item of a process output stream.

    Every item but the last carries a ``line``; the last one carries the
    terminal ``log`` for the command.
    """
    model_config = ConfigDict(frozen=True)

    line: Optional[str] = None
    log: Optional[CommandLog] = None


class ProcessRegistry:
    """Live child processes keyed by job id."""

    def __init__(self):
        self._processes: Dict[str, List[asyncio.subprocess.Process]] = {}
        self._lock = threading.Lock()

    def register(self, job_id: str, process: asyncio.subprocess.Process):
        with self._lock:
            self._processes.setdefault(job_id, []).append(process)

    def unregister(self, job_id: str, process: asyncio.subprocess.Process):
        with self._lock:
            processes = self._processes.get(job_id)
            if processes is None:
                return
            if process in processes:
                processes.remove(process)
            if not processes:
                del self._processes[job_id]

    def get(self, job_id: str) -> List[asyncio.subprocess.Process]:
        with self._lock:
            return list(self._processes.get(job_id, []))

    def pop(self, job_id: str) -> List[asyncio.subprocess.Process]:
        with self._lock:
            return self._processes.pop(job_id, [])

    def job_ids(self) -> List[str]:
        with self._lock:
            return list(self._processes)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._processes


class ProcessRunner:
    """Runs one command as a child process and reports a terminal CommandLog."""

    def __init__(self, registry: Optional[ProcessRegistry] = None, timeout: Optional[float] = None):
        self.registry = registry if registry is not None else ProcessRegistry()
        self.timeout = timeout

    async def run(
        self,
        job_id: str,
        command_index: int,
        command: Command,
        sink: Optional[LineSink] = None,
    ) -> CommandLog:
        """Execute a command, forwarding each output line to ``sink``.

        Args:
            job_id: Owning job
            command_index: Position of the command within the job
            command: Validated, sanitized command
            sink: Receives every line before the next one is read

        Returns:
            Terminal CommandLog with status SUCCESS or ERROR
        """
        stream = self.stream(job_id, command_index, command)
        log = None
        try:
            async for item in stream:
                if item.log is not None:
                    log = item.log
                elif sink is not None:
                    await sink.on_line(item.line)
        finally:
            await stream.aclose()
        return log

    async def stream(
        self,
        job_id: str,
        command_index: int,
        command: Command,
    ) -> AsyncIterator[ProcessOutput]:
        """Execute a command and stream its combined stdout/stderr line by line.

        The final item always carries the terminal log. Execution failures are
        reported through that log, never raised.
        """
        start_time = datetime.now()
        output: List[str] = []
        process = None
        log = None

        logger.info(f"Executing command for job {job_id} [{command_index}]: {command}")

        try:
            process = await asyncio.create_subprocess_exec(
                command.program,
                *command.arguments,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=command.working_directory,
                limit=STREAM_LIMIT,
            )
            self.registry.register(job_id, process)
            deadline = self._deadline()

            while True:
                raw = await self._within(self._read_line(process.stdout), deadline)
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                output.append(line + "\n")
                yield ProcessOutput(line=line)

            exit_code = await self._within(process.wait(), deadline)
            log = self._finished_log(job_id, command_index, command, "".join(output), exit_code, start_time)

        except asyncio.TimeoutError:
            logger.warning(f"Command for job {job_id} [{command_index}] timed out after {self.timeout}s")
            output.append(f"Command timed out after {self.timeout} seconds\n")
            log = CommandLog(
                job_id=job_id,
                command_index=command_index,
                command=command,
                output="".join(output),
                status=CommandStatus.ERROR,
                start_time=start_time,
                end_time=datetime.now(),
            )
        except Exception as e:
            logger.error(f"Error executing command for job {job_id} [{command_index}]: {e}")
            log = CommandLog(
                job_id=job_id,
                command_index=command_index,
                command=command,
                output=f"Error executing command: {e}",
                status=CommandStatus.ERROR,
                start_time=start_time,
                end_time=datetime.now(),
            )
        finally:
            if process is not None:
                if process.returncode is None:
                    self._kill(job_id, process)
                    await self._reap(job_id, process)
                self.registry.unregister(job_id, process)

        yield ProcessOutput(log=log)

    def cancel(self, job_id: str) -> bool:
        """Forcefully terminate every live process of a job.

        Returns:
            True if at least one live process was found and a kill was attempted
        """
        logger.info(f"Cancelling all processes for job {job_id}")

        processes = self.registry.pop(job_id)
        if not processes:
            logger.info(f"No running processes found for job {job_id}")
            return False

        cancelled = False
        for process in processes:
            if process.returncode is None:
                cancelled = True
                self._kill(job_id, process)
        return cancelled

    def cancel_all(self):
        for job_id in self.registry.job_ids():
            self.cancel(job_id)

    def _kill(self, job_id: str, process: asyncio.subprocess.Process):
        try:
            process.kill()
            logger.info(f"Process {process.pid} for job {job_id} forcibly terminated")
        except ProcessLookupError:
            pass
        except Exception as e:
            logger.error(f"Error terminating process {process.pid} for job {job_id}: {e}")

    async def _read_line(self, stream: asyncio.StreamReader) -> bytes:
        """Read one line of any length; returns b"" at end of stream."""
        chunks = []
        while True:
            try:
                chunks.append(await stream.readuntil(b"\n"))
                break
            except asyncio.IncompleteReadError as e:
                chunks.append(e.partial)
                break
            except asyncio.LimitOverrunError as e:
                chunks.append(await stream.readexactly(e.consumed))
        return b"".join(chunks)

    async def _reap(self, job_id: str, process: asyncio.subprocess.Process):
        try:
            await asyncio.wait_for(process.wait(), REAP_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Process {process.pid} for job {job_id} was not reaped after kill")

    def _deadline(self) -> Optional[float]:
        if not self.timeout:
            return None
        return asyncio.get_running_loop().time() + self.timeout

    async def _within(self, awaitable, deadline: Optional[float]):
        if deadline is None:
            return await awaitable
        remaining = deadline - asyncio.get_running_loop().time()
        return await asyncio.wait_for(awaitable, max(remaining, 0))

    def _finished_log(
        self,
        job_id: str,
        command_index: int,
        command: Command,
        output: str,
        exit_code: int,
        start_time: datetime,
    ) -> CommandLog:
        end_time = datetime.now()
        elapsed_ms = int((end_time - start_time).total_seconds() * 1000)
        status = CommandStatus.SUCCESS if exit_code == 0 else CommandStatus.ERROR

        logger.info(
            f"Command for job {job_id} [{command_index}] exited with {exit_code} in {elapsed_ms}ms"
        )
        lines = output.splitlines()
        if len(lines) > 5:
            summary = "\n".join(lines[:5]) + f"\n... ({len(lines) - 5} more lines)"
        else:
            summary = output
        logger.debug(f"Command output:\n{summary}")

        return CommandLog(
            job_id=job_id,
            command_index=command_index,
            command=command,
            output=output,
            status=status,
            start_time=start_time,
            end_time=end_time,
            exit_code=exit_code,
        )
