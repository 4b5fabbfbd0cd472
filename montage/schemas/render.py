from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from montage.schemas.design import Design, Size

RenderFormat = Literal["mp4", "gif"]
JobStatusValue = Literal["PENDING", "PROCESSING", "COMPLETED", "ERROR", "CANCELLED", "TIMEOUT"]

# Discriminator value identifying a render status query
VIDEO_RENDERING = "VIDEO_RENDERING"


class RenderOptions(BaseModel):
    fps: float = Field(default=30, gt=0, le=240)
    size: Size | None = None
    format: RenderFormat = "mp4"


class RenderRequest(BaseModel):
    """Submission body. Both fields are checked by the job manager so that a
    missing one surfaces as a ValidationError rather than a schema error."""

    design: Design | None = None
    options: RenderOptions | None = None


class RenderJobView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: JobStatusValue
    progress: int = Field(ge=0, le=100)
    url: str | None = None
    error: str | None = None


class RenderJobEnvelope(BaseModel):
    video: RenderJobView


class ErrorResponse(BaseModel):
    error: str
