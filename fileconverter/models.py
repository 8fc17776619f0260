# Tables (ORM models) – the Job table lives here

from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    CONVERTING = "converting"
    COMPLETED = "completed"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# a start request on a job in one of these states dispatches a new attempt
STARTABLE = (JobStatus.PENDING, JobStatus.FAILED)


class Category(str, Enum):
    DOCUMENT = "document"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class Job(SQLModel, table=True):
    id: str = Field(primary_key=True, index=True)
    original_name: str
    stored_name: str
    output_name: Optional[str] = None
    size: int = 0
    category: str = Field(default=Category.DOCUMENT.value, index=True)
    input_format: str = ""
    output_format: str = "PDF"
    status: str = Field(default=JobStatus.PENDING.value, index=True)
    progress: int = 0
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
