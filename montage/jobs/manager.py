"""Render job manager.

Accepts render requests, runs each one in the background and records its
lifecycle. The job's ``run`` coroutine is the only writer of its record:
the engine reports progress through a ``ProgressChannel`` and is stopped
through a ``CancellationToken``, never by mutating the job directly.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from uuid import uuid4

import pydantic

from montage.config import Settings, get_settings
from montage.exceptions import (
    JobNotCancellableError,
    JobNotFoundError,
    MontageError,
    RenderCancelled,
    RenderFailure,
    RenderStalled,
    ValidationError,
)
from montage.jobs.models import JobStatus, RenderJob, utcnow
from montage.jobs.progress import CancellationToken, ProgressChannel
from montage.jobs.store import InMemoryJobStore, JobStore
from montage.render.engine import Bundle, FFmpegRenderEngine, RenderEngine, codec_for_format
from montage.schemas.design import Design
from montage.schemas.render import RenderOptions
from montage.timeline.duration import CompositionMetadata

logger = logging.getLogger(__name__)

# Progress recorded at each pipeline milestone
PROGRESS_STARTED = 10
PROGRESS_BUNDLED = 30
PROGRESS_SELECTED = 50
RENDER_PROGRESS_SPAN = 50

UNKNOWN_ERROR = "Unknown error"


def render_progress(fraction: float) -> int:
    """Overall progress for a render fraction in [0, 1], rounded half up."""
    return int(math.floor(PROGRESS_SELECTED + fraction * RENDER_PROGRESS_SPAN + 0.5))


@dataclass
class _JobRun:
    design: Design
    options: RenderOptions
    token: CancellationToken = field(default_factory=CancellationToken)
    task: asyncio.Task | None = None
    # Render task left running after a stall or cancellation
    abandoned_render: asyncio.Task | None = None


class RenderJobManager:
    """Owns render jobs from submission to a terminal status."""

    def __init__(
        self,
        engine: RenderEngine | None = None,
        store: JobStore | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings if settings is not None else get_settings()
        self.engine = engine if engine is not None else FFmpegRenderEngine()
        if store is None:
            store = InMemoryJobStore(retention_s=self.settings.job_retention_s)
        self.store = store
        self._runs: dict[str, _JobRun] = {}
        self._tasks: set[asyncio.Task] = set()

    # -- public API -----------------------------------------------------------

    async def submit(
        self,
        design: Design | dict[str, Any] | None,
        options: RenderOptions | dict[str, Any] | None,
    ) -> RenderJob:
        """
        Create a PENDING job and start rendering it in the background.

        Returns as soon as the job is recorded; rendering continues on the
        event loop.

        Raises:
            ValidationError: If design or options is missing or malformed
        """
        if design is None or options is None:
            raise ValidationError()
        try:
            if not isinstance(design, Design):
                design = Design.model_validate(design)
            if not isinstance(options, RenderOptions):
                options = RenderOptions.model_validate(options)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid render request: {e.errors()[0]['msg']}") from e

        job = self.store.create(RenderJob(id=uuid4().hex, format=options.format))
        run = _JobRun(design=design, options=options)
        self._runs[job.id] = run

        task = asyncio.create_task(self.run(job.id), name=f"render-{job.id}")
        run.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(f"[JOB] Submitted render job {job.id} ({options.format}, {options.fps:g}fps)")
        return job

    def get_status(self, job_id: str) -> RenderJob:
        """
        Current snapshot of a job.

        Raises:
            JobNotFoundError: If the id is unknown or the job has expired
        """
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def cancel(self, job_id: str) -> RenderJob:
        """
        Ask a running job to stop. The job reaches CANCELLED asynchronously.

        Raises:
            JobNotFoundError: If the id is unknown
            JobNotCancellableError: If the job already finished
        """
        job = self.get_status(job_id)
        run = self._runs.get(job_id)
        if job.is_terminal or run is None:
            raise JobNotCancellableError(job_id, job.status.value)
        run.token.cancel(RenderCancelled())
        logger.info(f"[JOB] Cancellation requested for {job_id}")
        return job

    async def wait(self, job_id: str) -> RenderJob:
        """Wait for a job's background run to finish and return its snapshot."""
        run = self._runs.get(job_id)
        if run is not None and run.task is not None:
            await asyncio.shield(run.task)
        return self.get_status(job_id)

    async def shutdown(self) -> None:
        """Cancel every running job and wait for the runs to record it."""
        tasks = list(self._tasks)
        for run in list(self._runs.values()):
            run.token.cancel(RenderCancelled("Server shutting down"))
        if tasks:
            logger.info(f"[JOB] Waiting for {len(tasks)} render jobs to stop")
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- pipeline -------------------------------------------------------------

    async def run(self, job_id: str) -> None:
        """Drive one job to a terminal status. Never raises."""
        run = self._runs.get(job_id)
        if run is None:
            logger.error(f"[JOB] No pending run for {job_id}")
            return

        bundle: Bundle | None = None
        try:
            run.token.raise_if_cancelled()
            self.store.update(
                job_id,
                status=JobStatus.PROCESSING,
                progress=PROGRESS_STARTED,
                started_at=utcnow(),
                current_stage="Bundling",
            )

            bundle = await self.engine.bundle(self.settings.render_entry_point)
            self.store.update(job_id, progress=PROGRESS_BUNDLED, current_stage="Selecting composition")
            run.token.raise_if_cancelled()

            input_props = self._input_props(run)
            composition = await self.engine.select_composition(
                bundle, self.settings.render_composition_id, input_props
            )
            self.store.update(job_id, progress=PROGRESS_SELECTED, current_stage="Rendering")
            run.token.raise_if_cancelled()

            fmt = run.options.format
            output_path = Path(self.settings.renders_dir) / f"{job_id}.{fmt}"
            output_path.parent.mkdir(parents=True, exist_ok=True)
            await self._render(job_id, run, bundle, composition, str(output_path), input_props)

            prefix = self.settings.renders_url_prefix.rstrip("/")
            self.store.update(
                job_id,
                status=JobStatus.COMPLETED,
                progress=100,
                output_url=f"{prefix}/{job_id}.{fmt}",
                output_path=str(output_path),
                current_stage="Completed",
            )
            logger.info(f"[JOB] Render job {job_id} completed: {output_path}")
        except RenderCancelled as e:
            self._finish(job_id, JobStatus.CANCELLED, e.message)
        except RenderStalled as e:
            self._finish(job_id, JobStatus.TIMEOUT, e.message)
        except asyncio.CancelledError:
            self._finish(job_id, JobStatus.CANCELLED, RenderCancelled.message)
            raise
        except Exception as e:
            logger.exception(f"[JOB] Render job {job_id} failed: {e}")
            self._finish(job_id, JobStatus.ERROR, str(e) or UNKNOWN_ERROR)
        finally:
            self._runs.pop(job_id, None)
            if bundle is not None:
                self._cleanup_bundle(run, bundle)

    def _input_props(self, run: _JobRun) -> dict[str, Any]:
        props: dict[str, Any] = {"design": run.design.to_props()}
        props.update(run.options.model_dump(mode="json", exclude_none=True))
        return props

    async def _render(
        self,
        job_id: str,
        run: _JobRun,
        bundle: Bundle,
        composition: CompositionMetadata,
        output_path: str,
        input_props: dict[str, Any],
    ) -> None:
        """Run the engine while consuming its progress messages."""
        channel = ProgressChannel()
        render_task = asyncio.create_task(
            self.engine.render_media(
                bundle,
                composition,
                output_path,
                codec_for_format(run.options.format),
                input_props,
                channel,
                run.token,
            )
        )
        render_task.add_done_callback(lambda _: channel.close())
        stall_timeout = self.settings.render_stall_timeout_s or None

        try:
            while True:
                try:
                    fraction = await channel.get(timeout=stall_timeout)
                except asyncio.TimeoutError:
                    stalled = RenderStalled(stall_timeout)
                    logger.warning(f"[JOB] Render job {job_id}: {stalled.message}")
                    run.token.cancel(stalled)
                    # The engine may never check the token again; do not wait on it
                    render_task.add_done_callback(_log_abandoned_render)
                    run.abandoned_render = render_task
                    raise stalled from None
                if fraction is None:
                    break
                self.store.update(job_id, progress=render_progress(fraction))
        except asyncio.CancelledError:
            run.token.cancel(RenderCancelled())
            render_task.add_done_callback(_log_abandoned_render)
            run.abandoned_render = render_task
            raise

        await render_task

    @staticmethod
    def _cleanup_bundle(run: _JobRun, bundle: Bundle) -> None:
        """Remove the work dir once no render thread can still write into it."""
        pending = run.abandoned_render
        if pending is not None and not pending.done():
            pending.add_done_callback(lambda _: bundle.cleanup())
        else:
            bundle.cleanup()

    def _finish(self, job_id: str, status: JobStatus, message: str) -> None:
        try:
            self.store.update(job_id, status=status, error_message=message, current_stage=None)
        except MontageError as e:
            logger.error(f"[JOB] Could not record {status.value} for {job_id}: {e.message}")
            return
        log = logger.error if status == JobStatus.ERROR else logger.warning
        log(f"[JOB] Render job {job_id} ended {status.value}: {message}")


def _log_abandoned_render(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None and not isinstance(exc, RenderFailure):
        logger.warning(f"[JOB] Abandoned render finished with {exc!r}")
