from fastapi import Request

from commandservice.jobs.executor import JobExecutor


def get_executor(request: Request) -> JobExecutor:
    """Executor created by the application lifespan."""
    return request.app.state.executor
