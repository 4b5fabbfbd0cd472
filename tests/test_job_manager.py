"""Tests for the render job manager lifecycle."""

import asyncio
from pathlib import Path

import pytest

from montage.exceptions import (
    JobNotCancellableError,
    JobNotFoundError,
    RenderFailure,
    ValidationError,
)
from montage.jobs.manager import RenderJobManager, render_progress
from montage.jobs.models import JobStatus
from montage.jobs.store import InMemoryJobStore


class RecordingStore(InMemoryJobStore):
    """Store that keeps every snapshot it writes."""

    def __init__(self):
        super().__init__(retention_s=3600)
        self.history = []

    def update(self, job_id, **kwargs):
        job = super().update(job_id, **kwargs)
        self.history.append(job)
        return job


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def manager(fake_engine, store, settings):
    return RenderJobManager(engine=fake_engine, store=store, settings=settings)


class TestConstruction:
    """Tests for RenderJobManager collaborators."""

    def test_injected_empty_store_is_used(self, fake_engine, settings):
        """A fresh store has no jobs but is still the one the manager writes to."""
        store = InMemoryJobStore(retention_s=60)
        assert len(store) == 0

        manager = RenderJobManager(engine=fake_engine, store=store, settings=settings)

        assert manager.store is store
        assert manager.engine is fake_engine
        assert manager.settings is settings

    @pytest.mark.asyncio
    async def test_jobs_land_in_injected_store(self, manager, store, sample_design, sample_options):
        job = await manager.submit(sample_design, sample_options)
        await manager.wait(job.id)

        assert len(store) == 1
        assert store.get(job.id).status == JobStatus.COMPLETED


class TestRenderProgress:
    """Tests for mapping render fractions onto overall progress."""

    @pytest.mark.parametrize(
        "fraction,expected",
        [(0, 50), (0.25, 63), (0.5, 75), (0.99, 100), (1, 100)],
    )
    def test_render_progress(self, fraction, expected):
        assert render_progress(fraction) == expected


class TestSubmit:
    """Tests for RenderJobManager.submit."""

    @pytest.mark.asyncio
    async def test_returns_pending_job(self, manager, sample_design, sample_options):
        """Submission returns immediately with a PENDING record at 0%."""
        job = await manager.submit(sample_design, sample_options)

        assert job.status == JobStatus.PENDING
        assert job.progress == 0
        assert len(job.id) == 32
        assert manager.get_status(job.id).status == JobStatus.PENDING
        await manager.wait(job.id)

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, manager, sample_design, sample_options):
        jobs = [await manager.submit(sample_design, sample_options) for _ in range(5)]
        assert len({job.id for job in jobs}) == 5
        for job in jobs:
            await manager.wait(job.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "design,options",
        [
            (None, {"fps": 30}),
            ({"trackItemsMap": {}}, None),
            (None, None),
            ({"trackItemsMap": {}}, {"fps": -1}),
            ({"trackItemsMap": {}}, {"format": "avi"}),
        ],
    )
    async def test_invalid_request_creates_no_job(self, manager, store, design, options):
        with pytest.raises(ValidationError):
            await manager.submit(design, options)
        assert len(store) == 0


class TestRun:
    """Tests for the background render pipeline."""

    @pytest.mark.asyncio
    async def test_completes_with_url(self, manager, fake_engine, settings, sample_design, sample_options):
        job = await manager.submit(sample_design, sample_options)
        final = await manager.wait(job.id)

        assert final.status == JobStatus.COMPLETED
        assert final.progress == 100
        assert final.output_url == f"/renders/{job.id}.mp4"
        assert final.error_message is None
        assert Path(settings.renders_dir, f"{job.id}.mp4").exists()
        assert fake_engine.calls == ["bundle", "select_composition", "render_media"]
        assert fake_engine.codecs == ["h264"]

    @pytest.mark.asyncio
    async def test_input_props_carry_design_and_options(self, manager, fake_engine, sample_design):
        job = await manager.submit(sample_design, {"fps": 24, "format": "mp4"})
        await manager.wait(job.id)

        props = fake_engine.input_props
        assert props["fps"] == 24
        assert props["format"] == "mp4"
        assert set(props["design"]["trackItemsMap"]) == {"title", "caption"}

    @pytest.mark.asyncio
    async def test_gif_output(self, manager, fake_engine, sample_design):
        job = await manager.submit(sample_design, {"fps": 10, "format": "gif"})
        final = await manager.wait(job.id)

        assert final.output_url == f"/renders/{job.id}.gif"
        assert fake_engine.codecs == ["gif"]

    @pytest.mark.asyncio
    async def test_progress_milestones_are_monotonic(self, manager, store, sample_design, sample_options):
        """10 -> 30 -> 50 -> render progress -> 100, never decreasing."""
        job = await manager.submit(sample_design, sample_options)
        await manager.wait(job.id)

        progress = [snapshot.progress for snapshot in store.history]
        assert progress == [10, 30, 50, 63, 75, 100, 100]
        assert store.history[0].status == JobStatus.PROCESSING
        assert store.history[-1].status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_engine_failure_marks_error(self, make_engine, store, settings, sample_design, sample_options):
        engine = make_engine(fractions=(0.5,), fail_with=RenderFailure("FFmpeg encoding failed: bad"))
        manager = RenderJobManager(engine=engine, store=store, settings=settings)

        job = await manager.submit(sample_design, sample_options)
        final = await manager.wait(job.id)

        assert final.status == JobStatus.ERROR
        assert final.error_message == "FFmpeg encoding failed: bad"
        assert final.output_url is None
        assert final.progress == 75

    @pytest.mark.asyncio
    async def test_bundle_failure(self, make_engine, store, settings, sample_design, sample_options):
        engine = make_engine(fail_with=RuntimeError("no bundle"), fail_at="bundle")
        manager = RenderJobManager(engine=engine, store=store, settings=settings)

        job = await manager.submit(sample_design, sample_options)
        final = await manager.wait(job.id)

        assert final.status == JobStatus.ERROR
        assert final.error_message == "no bundle"
        assert final.progress == 10

    @pytest.mark.asyncio
    async def test_empty_error_message(self, make_engine, store, settings, sample_design, sample_options):
        engine = make_engine(fail_with=RuntimeError(), fail_at="select_composition")
        manager = RenderJobManager(engine=engine, store=store, settings=settings)

        job = await manager.submit(sample_design, sample_options)
        final = await manager.wait(job.id)

        assert final.status == JobStatus.ERROR
        assert final.error_message == "Unknown error"

    @pytest.mark.asyncio
    async def test_stall_marks_timeout(self, make_engine, store, settings, sample_design, sample_options):
        """No progress within the stall window ends the job as TIMEOUT."""
        engine = make_engine(stall=True)
        settings = settings.model_copy(update={"render_stall_timeout_s": 0.05})
        manager = RenderJobManager(engine=engine, store=store, settings=settings)

        job = await manager.submit(sample_design, sample_options)
        final = await manager.wait(job.id)

        assert final.status == JobStatus.TIMEOUT
        assert final.error_message == "Render made no progress for 0.05s"


    @pytest.mark.asyncio
    async def test_empty_design_renders_ten_seconds(self, manager, fake_engine):
        """An empty design completes as a 300-frame composition at 30fps."""
        job = await manager.submit({}, {"fps": 30})
        final = await manager.wait(job.id)

        assert final.status == JobStatus.COMPLETED
        assert final.output_url == f"/renders/{job.id}.mp4"
        assert fake_engine.compositions[0].duration_in_frames == 300

    @pytest.mark.asyncio
    async def test_work_dir_outlives_abandoned_render(
        self, make_engine, store, settings, sample_design, sample_options
    ):
        """After a stall the work dir is removed only once the render returns."""
        release = asyncio.Event()
        engine = make_engine(stall=True, release=release)
        settings = settings.model_copy(update={"render_stall_timeout_s": 0.05})
        manager = RenderJobManager(engine=engine, store=store, settings=settings)

        job = await manager.submit(sample_design, sample_options)
        final = await manager.wait(job.id)
        work_dir = Path(engine.bundles[0].work_dir)

        assert final.status == JobStatus.TIMEOUT
        assert work_dir.is_dir()

        release.set()
        for _ in range(200):
            if not work_dir.exists():
                break
            await asyncio.sleep(0.01)
        assert not work_dir.exists()


class TestStatusAndCancel:
    """Tests for get_status and cancel."""

    def test_unknown_job(self, manager):
        with pytest.raises(JobNotFoundError):
            manager.get_status("does-not-exist")
        with pytest.raises(JobNotFoundError):
            manager.cancel("does-not-exist")

    @pytest.mark.asyncio
    async def test_cancel_while_rendering(self, make_engine, store, settings, sample_design, sample_options):
        engine = make_engine(gate=asyncio.Event())
        manager = RenderJobManager(engine=engine, store=store, settings=settings)

        job = await manager.submit(sample_design, sample_options)
        await asyncio.wait_for(engine.render_started.wait(), timeout=5)

        snapshot = manager.cancel(job.id)
        assert snapshot.status == JobStatus.PROCESSING
        engine.gate.set()
        final = await manager.wait(job.id)

        assert final.status == JobStatus.CANCELLED
        assert final.error_message == "Render cancelled"
        assert final.output_url is None

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, manager, fake_engine, sample_design, sample_options):
        """A job cancelled while PENDING never reaches the engine."""
        job = await manager.submit(sample_design, sample_options)
        manager.cancel(job.id)
        final = await manager.wait(job.id)

        assert final.status == JobStatus.CANCELLED
        assert fake_engine.calls == []

    @pytest.mark.asyncio
    async def test_cancel_finished_job(self, manager, sample_design, sample_options):
        job = await manager.submit(sample_design, sample_options)
        await manager.wait(job.id)

        with pytest.raises(JobNotCancellableError):
            manager.cancel(job.id)
        assert manager.get_status(job.id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_jobs(self, make_engine, store, settings, sample_design, sample_options):
        engine = make_engine(stall=True)
        manager = RenderJobManager(engine=engine, store=store, settings=settings)

        job = await manager.submit(sample_design, sample_options)
        await asyncio.wait_for(engine.render_started.wait(), timeout=5)
        await manager.shutdown()

        final = manager.get_status(job.id)
        assert final.status == JobStatus.CANCELLED
        assert final.error_message == "Server shutting down"
