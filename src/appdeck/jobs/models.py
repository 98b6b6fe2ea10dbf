from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


FINISHED_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class JobLog(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.now)
    output: str
    error: bool = False
    # Only set on entries recorded from install/update progress events
    progress: Optional[float] = None
    status: Optional[str] = None


class Job(BaseModel):
    id: str
    command: str
    app_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    logs: List[JobLog] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    exit_code: Optional[int] = None

    @property
    def finished(self) -> bool:
        return self.status in FINISHED_STATUSES
