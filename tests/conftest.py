"""
Pytest fixtures for montage tests.

Job and API tests run against ``FakeRenderEngine`` so they need neither
FFmpeg nor real media. Tests that encode real output are marked with
@pytest.mark.requires_ffmpeg and skipped when ffmpeg is not on PATH.
"""

import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

# Must be set before montage.config is first imported
os.environ.setdefault("RENDERS_DIR", tempfile.mkdtemp(prefix="montage_test_renders_"))

import pytest

from montage.config import Settings
from montage.jobs.progress import CancellationToken, ProgressChannel
from montage.render.composition import COMPOSITIONS
from montage.render.engine import Bundle
from montage.timeline.duration import CompositionMetadata

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None,
    reason="ffmpeg not available",
)


class FakeRenderEngine:
    """Engine double that publishes scripted progress instead of encoding.

    Args:
        fractions: Progress fractions published in order
        fail_with: Exception raised after publishing all fractions
        gate: When set, every publish waits for this event first
        stall: Stop publishing and wait for the cancellation token
        release: When stalled, keep running after cancellation until this is set
    """

    def __init__(
        self,
        fractions: tuple[float, ...] = (0.25, 0.5, 1.0),
        fail_with: BaseException | None = None,
        fail_at: str | None = None,
        gate: asyncio.Event | None = None,
        stall: bool = False,
        release: asyncio.Event | None = None,
    ):
        self.fractions = fractions
        self.fail_with = fail_with
        self.fail_at = fail_at
        self.gate = gate
        self.stall = stall
        self.release = release
        self.calls: list[str] = []
        self.codecs: list[str] = []
        self.input_props: dict[str, Any] | None = None
        self.bundles: list[Bundle] = []
        self.compositions: list[CompositionMetadata] = []
        self.render_started = asyncio.Event()

    async def bundle(self, entry_point: str) -> Bundle:
        self.calls.append("bundle")
        if self.fail_at == "bundle":
            raise self.fail_with
        bundle = Bundle(entry_point=entry_point, compositions=dict(COMPOSITIONS))
        self.bundles.append(bundle)
        return bundle

    async def select_composition(
        self, bundle: Bundle, composition_id: str, input_props: dict[str, Any]
    ) -> CompositionMetadata:
        self.calls.append("select_composition")
        self.input_props = input_props
        if self.fail_at == "select_composition":
            raise self.fail_with
        composition = bundle.compositions[composition_id].calculate_metadata(input_props)
        self.compositions.append(composition)
        return composition

    async def render_media(
        self,
        bundle: Bundle,
        composition: CompositionMetadata,
        output_location: str,
        codec: str,
        input_props: dict[str, Any],
        progress: ProgressChannel,
        cancel_token: CancellationToken,
    ) -> str:
        self.calls.append("render_media")
        self.codecs.append(codec)
        self.render_started.set()

        if self.stall:
            while not cancel_token.is_cancelled:
                await asyncio.sleep(0.005)
            if self.release is not None:
                await self.release.wait()
            cancel_token.raise_if_cancelled()

        for fraction in self.fractions:
            if self.gate is not None:
                await self.gate.wait()
            cancel_token.raise_if_cancelled()
            progress.publish(fraction)
            await asyncio.sleep(0)

        if self.fail_with is not None and self.fail_at in (None, "render_media"):
            raise self.fail_with
        Path(output_location).write_bytes(b"rendered")
        return output_location


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from .env with a per-test renders directory."""
    return Settings(
        _env_file=None,
        renders_dir=str(tmp_path / "renders"),
        render_stall_timeout_s=5.0,
        job_retention_s=3600.0,
    )


@pytest.fixture
def fake_engine() -> FakeRenderEngine:
    return FakeRenderEngine()


@pytest.fixture
def sample_design() -> dict[str, Any]:
    """Two text items joined by a fade, 4s + 3s at 30fps."""
    return {
        "trackItemsMap": {
            "title": {"id": "title", "type": "text", "display": {"from": 0, "to": 4000}},
            "caption": {"id": "caption", "type": "text", "display": {"from": 4000, "to": 7000}},
        },
        "trackItemDetailsMap": {
            "title": {
                "details": {
                    "text": "Hello",
                    "fontSize": 32,
                    "left": 10,
                    "top": 10,
                    "animationEnabled": True,
                    "animation": {"speed": 1, "direction": "up", "timing": "ease"},
                }
            },
            "caption": {"details": {"text": "World", "fontSize": 24, "left": 20, "top": 40}},
        },
        "transitionsMap": {
            "t1": {"id": "t1", "fromId": "title", "toId": "caption", "kind": "fade", "duration": 500}
        },
        "size": {"width": 64, "height": 48},
    }


@pytest.fixture
def sample_options() -> dict[str, Any]:
    return {"fps": 30, "format": "mp4"}


@pytest.fixture
def make_engine():
    """Factory for engines with scripted behaviour."""
    return FakeRenderEngine
