from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROMPTING = "prompting"
    GENERATING = "generating"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)

    @property
    def rank(self) -> int:
        # Both terminal states share the last rank.
        return min(_STATUS_ORDER.index(self), len(_STATUS_ORDER) - 2)


_STATUS_ORDER = [
    JobStatus.QUEUED,
    JobStatus.PROMPTING,
    JobStatus.GENERATING,
    JobStatus.FINALIZING,
    JobStatus.COMPLETED,
    JobStatus.ERROR,
]


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic: StrictStr
    is_premium: StrictBool = Field(alias="isPremium")


class GenerateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(serialization_alias="jobId")


class JobView(BaseModel):
    status: JobStatus
    timestamp: int
    title: Optional[str] = None
    url: Optional[str] = None
    message: Optional[str] = None


class RenderResponse(BaseModel):
    message: str
    title: str
    url: str
