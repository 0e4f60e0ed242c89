from datetime import datetime

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.now)
    status: int
    error: str
    message: str
    path: str


class VersionInfo(BaseModel):
    version: str
