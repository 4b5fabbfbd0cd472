"""In-process frame-rendering engine.

Implements the three engine contracts the job manager depends on:

1. ``bundle`` - import the entry point that registers compositions
2. ``select_composition`` - resolve a composition's metadata for given props
3. ``render_media`` - render every frame and encode with FFmpeg

Frames are produced by ``CompositionFrameRenderer`` and piped to FFmpeg as
raw RGB. The blocking work runs in a worker thread via ``asyncio.to_thread``;
progress and cancellation cross the thread boundary through
``ProgressChannel`` and ``CancellationToken`` only.
"""

import asyncio
import importlib
import logging
import os
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol

from montage.config import get_settings
from montage.exceptions import RenderFailure
from montage.jobs.progress import CancellationToken, ProgressChannel
from montage.render.composition import CompositionDefinition
from montage.render.media import MediaCache
from montage.timeline.duration import CompositionMetadata

logger = logging.getLogger(__name__)

CODECS_BY_FORMAT = {"mp4": "h264", "gif": "gif"}

# Trailing FFmpeg stderr kept in failure messages
STDERR_TAIL_CHARS = 2000


def codec_for_format(fmt: str) -> str:
    try:
        return CODECS_BY_FORMAT[fmt]
    except KeyError:
        raise RenderFailure(f"Unsupported output format: {fmt}") from None


@dataclass
class Bundle:
    """Loaded composition registry plus a scratch directory for one render."""

    entry_point: str
    compositions: dict[str, Any]
    work_dir: str = field(default_factory=lambda: tempfile.mkdtemp(prefix="montage_render_"))

    def cleanup(self) -> None:
        shutil.rmtree(self.work_dir, ignore_errors=True)


class RenderEngine(Protocol):
    async def bundle(self, entry_point: str) -> Bundle: ...

    async def select_composition(
        self, bundle: Bundle, composition_id: str, input_props: dict[str, Any]
    ) -> CompositionMetadata: ...

    async def render_media(
        self,
        bundle: Bundle,
        composition: CompositionMetadata,
        output_location: str,
        codec: str,
        input_props: dict[str, Any],
        progress: ProgressChannel,
        cancel_token: CancellationToken,
    ) -> str: ...


def load_entry_point(entry_point: str) -> dict[str, Any]:
    """Import ``module:attribute`` and return the composition registry it names."""
    module_name, _, attr = entry_point.partition(":")
    if not module_name or not attr:
        raise RenderFailure(f"Invalid render entry point: {entry_point!r}")
    try:
        module = importlib.import_module(module_name)
        registry = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise RenderFailure(f"Failed to load render entry point {entry_point}: {e}") from e
    if not isinstance(registry, Mapping):
        raise RenderFailure(f"Render entry point {entry_point} is not a composition registry")
    return dict(registry)


class FFmpegRenderEngine:
    """Renders compositions with Pillow and encodes them with FFmpeg."""

    def __init__(self, ffmpeg_path: str | None = None):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.video_preset = settings.render_video_preset
        self.video_crf = settings.render_video_crf

    async def bundle(self, entry_point: str) -> Bundle:
        compositions = await asyncio.to_thread(load_entry_point, entry_point)
        bundle = Bundle(entry_point=entry_point, compositions=compositions)
        logger.info(f"[RENDER] Bundled {entry_point}: {', '.join(compositions) or 'no compositions'}")
        return bundle

    async def select_composition(
        self, bundle: Bundle, composition_id: str, input_props: dict[str, Any]
    ) -> CompositionMetadata:
        definition = self._definition(bundle, composition_id)
        try:
            metadata = definition.calculate_metadata(input_props)
        except ValueError as e:
            raise RenderFailure(f"Invalid input for composition {composition_id}: {e}") from e
        logger.info(
            f"[RENDER] Selected {metadata.id}: {metadata.width}x{metadata.height} "
            f"@ {metadata.fps}fps, {metadata.duration_in_frames} frames"
        )
        return metadata

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
        definition = self._definition(bundle, composition.id)
        return await asyncio.to_thread(
            self._render_sync,
            bundle,
            definition,
            composition,
            output_location,
            codec,
            input_props,
            progress,
            cancel_token,
        )

    def _definition(self, bundle: Bundle, composition_id: str) -> CompositionDefinition:
        definition = bundle.compositions.get(composition_id)
        if definition is None:
            available = ", ".join(bundle.compositions) or "none"
            raise RenderFailure(f"Composition not found: {composition_id} (available: {available})")
        return definition

    def build_encode_command(
        self, composition: CompositionMetadata, output_path: str, codec: str
    ) -> list[str]:
        """FFmpeg command reading raw RGB frames from stdin."""
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-loglevel", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{composition.width}x{composition.height}",
            "-r", f"{composition.fps:g}",
            "-i", "-",
        ]
        if codec == "gif":
            cmd += [
                "-vf", "split[a][b];[a]palettegen[p];[b][p]paletteuse",
                "-loop", "0",
                "-f", "gif",
            ]
        elif codec == "h264":
            cmd += [
                # yuv420p needs even dimensions
                "-vf", "pad=ceil(iw/2)*2:ceil(ih/2)*2",
                "-c:v", "libx264",
                "-preset", self.video_preset,
                "-crf", str(self.video_crf),
                "-pix_fmt", "yuv420p",
                "-movflags", "+faststart",
                "-f", "mp4",
            ]
        else:
            raise RenderFailure(f"Unsupported codec: {codec}")
        cmd.append(output_path)
        return cmd

    def _render_sync(
        self,
        bundle: Bundle,
        definition: CompositionDefinition,
        composition: CompositionMetadata,
        output_location: str,
        codec: str,
        input_props: dict[str, Any],
        progress: ProgressChannel,
        cancel_token: CancellationToken,
    ) -> str:
        renderer = definition.create_renderer(input_props, composition, media=MediaCache())
        total = composition.duration_in_frames
        partial_path = os.path.join(bundle.work_dir, f"output{Path(output_location).suffix}")
        cmd = self.build_encode_command(composition, partial_path, codec)
        start_time = time.time()

        # stderr goes to a file so a chatty encoder can never block the pipe
        with tempfile.TemporaryFile(dir=bundle.work_dir) as stderr_file:
            try:
                proc = subprocess.Popen(
                    cmd, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=stderr_file
                )
            except OSError as e:
                raise RenderFailure(f"FFmpeg could not be started: {e}") from e

            last_pct = -1
            try:
                for frame in range(total):
                    cancel_token.raise_if_cancelled()
                    image = renderer.render_frame(frame)
                    proc.stdin.write(image.tobytes())
                    pct = (frame + 1) * 100 // total
                    if pct != last_pct:
                        last_pct = pct
                        progress.publish((frame + 1) / total)
                proc.stdin.close()
                returncode = proc.wait()
            except BrokenPipeError:
                # Encoder exited early; its stderr explains why
                returncode = proc.wait()
            except BaseException:
                proc.kill()
                proc.wait()
                raise

            if returncode != 0:
                stderr_file.seek(0)
                stderr = stderr_file.read().decode("utf-8", errors="replace").strip()
                logger.error(f"[RENDER] FFmpeg exited with {returncode}: {stderr}")
                raise RenderFailure(
                    f"FFmpeg encoding failed: {stderr[-STDERR_TAIL_CHARS:] or f'exit code {returncode}'}"
                )

        Path(output_location).parent.mkdir(parents=True, exist_ok=True)
        shutil.move(partial_path, output_location)
        elapsed = time.time() - start_time
        logger.info(f"[RENDER] Encoded {total} frames to {output_location} in {elapsed:.1f}s")
        return output_location
