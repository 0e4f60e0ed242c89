import asyncio
import logging
import shlex

import click

from commandservice.config.settings import config


def _parse_command(text: str):
    from commandservice.jobs.models import Command

    parts = shlex.split(text)
    if not parts:
        raise click.BadParameter("Command must not be empty.")
    return Command(program=parts[0], arguments=parts[1:])


@click.group()
@click.option("--log-level", default=config.log_level, help="Logging level.")
@click.pass_context
def main(ctx, log_level):
    """Command Service CLI"""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option('--host', default=config.host, help='The host to bind to.')
@click.option('--port', default=config.port, help='The port to bind to.')
def server(host, port):
    """Run the FastAPI server."""
    import uvicorn

    from commandservice.api.server import app
    uvicorn.run(app, host=host, port=port)


@main.command()
@click.argument("command_line")
def check(command_line):
    """Check whether a command would be admitted for execution."""
    from commandservice.jobs.validator import CommandValidator

    command = _parse_command(command_line)
    validator = CommandValidator()
    if validator.is_safe(command):
        click.echo(f"SAFE: {validator.sanitize(command)}")
    else:
        click.echo(f"HARMFUL: {command}")
        raise SystemExit(1)


@main.command()
@click.option("--command", "-c", "command_lines", multiple=True, required=True,
              help="Command to run; repeat for several commands.")
@click.option("--cwd", default=None, help="Working directory for every command.")
def run(command_lines, cwd):
    """Run commands as one job and print their logs."""
    from commandservice.jobs.executor import JobExecutor
    from commandservice.jobs.models import CommandRequest, JobStatus
    from commandservice.jobs.runner import ProcessRunner

    commands = [
        _parse_command(line).model_copy(update={"working_directory": cwd})
        for line in command_lines
    ]

    async def _run():
        executor = JobExecutor(runner=ProcessRunner(timeout=config.command_timeout))
        job = executor.submit(CommandRequest(commands=commands))
        await executor.wait(job.id)
        return executor.get_job(job.id), executor.get_job_logs(job.id)

    job, logs = asyncio.run(_run())
    for log in logs:
        click.echo(f"[{log.command_index}] {log.command} -> {log.status.value}")
        if log.output:
            click.echo(log.output.rstrip("\n"))
    click.echo(f"Job {job.id}: {job.status.value}")
    if job.status != JobStatus.COMPLETED:
        raise SystemExit(1)


@main.command()
def version():
    """Print the application version."""
    from commandservice.version import get_version
    click.echo(get_version())
