"""Flow and job models exchanged with the job runner."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FlowType(str, Enum):
    """Kinds of flows the content-processing framework runs."""

    INPUT = "input"
    HARMONIZE = "harmonize"


class DataFormat(str, Enum):
    XML = "xml"
    JSON = "json"


class Flow(BaseModel):
    """A named flow belonging to an entity."""

    model_config = ConfigDict(frozen=True)

    entity_name: str = Field(..., min_length=1)
    flow_name: str = Field(..., min_length=1)
    flow_type: FlowType = FlowType.HARMONIZE
    data_format: DataFormat = DataFormat.JSON


class JobSpec(BaseModel):
    """What gets handed to the job runner."""

    model_config = ConfigDict(frozen=True)

    flow: Flow
    batch_size: int = Field(default=100, gt=0)


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"


class JobHandle(BaseModel):
    """Handle for a submitted job execution."""

    job_id: str
    flow_name: str
    status: JobStatus = JobStatus.SUBMITTED
    submitted_at: datetime = Field(default_factory=datetime.now)
    error: Optional[str] = None
