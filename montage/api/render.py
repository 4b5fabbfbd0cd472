"""Render API endpoints.

Submission returns immediately with a PENDING job; clients poll the status
endpoint until the job reaches a terminal status.
"""

import logging

from fastapi import APIRouter

from montage.api.deps import JobManager
from montage.exceptions import MissingParametersError
from montage.jobs.models import RenderJob
from montage.schemas.render import (
    VIDEO_RENDERING,
    ErrorResponse,
    RenderJobEnvelope,
    RenderJobView,
    RenderRequest,
)

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


def _envelope(job: RenderJob) -> RenderJobEnvelope:
    return RenderJobEnvelope(video=RenderJobView.model_validate(job.to_view()))


@router.post(
    "/render",
    response_model=RenderJobEnvelope,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
)
async def start_render(render_request: RenderRequest, manager: JobManager) -> RenderJobEnvelope:
    """
    Start a render job.

    Returns the PENDING job right away; rendering continues in the background.
    """
    job = await manager.submit(render_request.design, render_request.options)
    return _envelope(job)


@router.get(
    "/render",
    response_model=RenderJobEnvelope,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
async def get_render_status(
    manager: JobManager,
    id: str | None = None,
    type: str | None = None,
) -> RenderJobEnvelope:
    """Get render job status. ``type`` must be ``VIDEO_RENDERING``."""
    if not id or type != VIDEO_RENDERING:
        raise MissingParametersError()
    return _envelope(manager.get_status(id))


@router.delete(
    "/render/{job_id}",
    response_model=RenderJobEnvelope,
    response_model_exclude_none=True,
    responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse}},
)
async def cancel_render(job_id: str, manager: JobManager) -> RenderJobEnvelope:
    """Request cancellation of a running render job."""
    return _envelope(manager.cancel(job_id))
