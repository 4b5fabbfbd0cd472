from typing import Annotated

from fastapi import Depends, Request

from montage.jobs.manager import RenderJobManager


def get_job_manager(request: Request) -> RenderJobManager:
    """The application's job manager, created in the lifespan handler."""
    return request.app.state.job_manager


JobManager = Annotated[RenderJobManager, Depends(get_job_manager)]
