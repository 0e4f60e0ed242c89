import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from commandservice.api.dtos import ErrorResponse
from commandservice.api.routers import commands, info
from commandservice.config.settings import config
from commandservice.jobs.executor import JobExecutor
from commandservice.jobs.notifier import WebhookNotifier
from commandservice.jobs.runner import ProcessRunner

logger = logging.getLogger(__name__)


def build_executor() -> JobExecutor:
    return JobExecutor(
        runner=ProcessRunner(timeout=config.command_timeout),
        notifier=WebhookNotifier(timeout_seconds=config.webhook_timeout),
        max_concurrent_jobs=config.max_concurrent_jobs,
    )


def _error(request: Request, status_code: int, error: str, message: str) -> JSONResponse:
    body = ErrorResponse(status=status_code, error=error, message=message, path=request.url.path)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


async def handle_value_error(request: Request, exc: ValueError):
    logger.warning(f"Invalid argument: {exc}")
    return _error(request, 400, "Bad Request", str(exc) or "Invalid argument provided")


async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    return _error(request, 500, "Internal Server Error", str(exc) or "An unexpected error occurred")


def create_app(executor: Optional[JobExecutor] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.executor = executor if executor is not None else build_executor()
        yield
        await app.state.executor.shutdown()

    app = FastAPI(
        title="Command Service API",
        description="Runs batches of commands as jobs and reports their progress.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ValueError, handle_value_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(commands.router)
    app.include_router(info.router)
    return app


app = create_app()
