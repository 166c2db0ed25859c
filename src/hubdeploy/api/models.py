"""Pydantic models for HTTP API requests and responses."""

from typing import Any, List, Optional
from pydantic import BaseModel, Field

from hubdeploy.models.flow import DataFormat, Flow, FlowType
from hubdeploy.models.status import StageEnum


class UserModulesRequest(BaseModel):
    """POST /api/v1.0/user-modules payload.

    Example:
        {
            "path": "/home/dev/my-hub/plugins"
        }
    """

    path: str = Field(
        ...,
        min_length=1,
        description="Absolute path of the user's modules directory",
        examples=["/home/dev/my-hub/plugins"],
    )


class ProgressData(BaseModel):
    """Progress data nested in response."""

    stage: StageEnum = Field(..., description="Current lifecycle stage")
    progress: int = Field(..., ge=0, le=100, description="Percentage completion (0-100)")
    message: str = Field(..., description="Human-readable status description")
    error: Optional[str] = Field(
        None, description="Error code and message if stage == failed"
    )
    completed_steps: List[str] = Field(
        default_factory=list, description="Pipeline steps completed by the last run"
    )


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response."""

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ProgressData = Field(..., description="Progress data")
    stage: Optional[StageEnum] = Field(
        None, description="Current stage (for failed responses at root level)"
    )
    progress: Optional[int] = Field(
        None, description="Current progress (for failed responses at root level)"
    )


class SuccessResponse(BaseModel):
    """Success response for command endpoints."""

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[Any] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error response for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(
        ..., description="Application-level error code (400/404/409/412/500/503)"
    )
    msg: str = Field(..., description="Error message with error code prefix")
    stage: Optional[StageEnum] = Field(
        None, description="Current stage (for operation state errors)"
    )
    progress: Optional[int] = Field(
        None, description="Current progress (for operation state errors)"
    )


class FlowRunRequest(BaseModel):
    """POST /api/v1.0/flows/run and /api/v1.0/flows/test payload.

    Example:
        {
            "entity_name": "Person",
            "flow_name": "harmonize-person",
            "flow_type": "harmonize",
            "batch_size": 100
        }
    """

    entity_name: str = Field(..., min_length=1, description="Entity the flow belongs to")
    flow_name: str = Field(..., min_length=1, description="Flow name")
    flow_type: FlowType = Field(default=FlowType.HARMONIZE, description="input or harmonize")
    data_format: DataFormat = Field(default=DataFormat.JSON, description="xml or json")
    batch_size: Optional[int] = Field(
        None, gt=0, description="Documents per batch (service default if omitted)"
    )

    def to_flow(self) -> Flow:
        return Flow(
            entity_name=self.entity_name,
            flow_name=self.flow_name,
            flow_type=self.flow_type,
            data_format=self.data_format,
        )
