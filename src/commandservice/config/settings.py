import os
from typing import List, Optional


def _csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _optional_float(value: str) -> Optional[float]:
    value = value.strip()
    if not value or float(value) <= 0:
        return None
    return float(value)


class Config:
    host = os.getenv("COMMANDSERVICE_HOST", "127.0.0.1")
    port = int(os.getenv("COMMANDSERVICE_PORT", "8080"))
    log_level = os.getenv("COMMANDSERVICE_LOG_LEVEL", "INFO").upper()
    cors_origins = _csv(os.getenv("COMMANDSERVICE_CORS_ORIGINS", "http://localhost:3000"))

    # Job execution
    webhook_timeout = float(os.getenv("COMMANDSERVICE_WEBHOOK_TIMEOUT", "10"))
    command_timeout = _optional_float(os.getenv("COMMANDSERVICE_COMMAND_TIMEOUT", ""))
    max_concurrent_jobs = int(os.getenv("COMMANDSERVICE_MAX_CONCURRENT_JOBS", "0"))

config = Config()
