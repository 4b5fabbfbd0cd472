"""Media file information utilities using FFprobe."""

import json
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Iterable

from montage.config import get_settings
from montage.exceptions import MediaProbeError

logger = logging.getLogger(__name__)


@dataclass
class MediaInfo:
    """Media file information."""

    duration_ms: int | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    has_video: bool = False
    has_audio: bool = False


@dataclass
class ProbeReport:
    """Outcome of probing a batch of files: one failure never hides the rest."""

    results: dict[str, MediaInfo] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


def _run_ffprobe(source: str, *args: str) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        source,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise MediaProbeError(source, f"ffprobe could not be started: {e}") from e
    if result.returncode != 0:
        raise MediaProbeError(source, result.stderr.strip() or f"exit code {result.returncode}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise MediaProbeError(source, f"unparseable ffprobe output: {e}") from e


def _parse_frame_rate(raw: str | None) -> float | None:
    if not raw or "/" not in raw:
        return None
    num, den = raw.split("/", 1)
    try:
        if int(den) > 0:
            return int(num) / int(den)
    except ValueError:
        return None
    return None


def probe_media(source: str) -> MediaInfo:
    """
    Get media information for a local path or URL.

    Args:
        source: Path or URL readable by ffprobe

    Returns:
        MediaInfo with duration, dimensions and stream details

    Raises:
        MediaProbeError: If ffprobe fails or its output cannot be parsed
    """
    data = _run_ffprobe(source, "-show_format", "-show_streams")
    info = MediaInfo()

    format_info = data.get("format", {})
    if "duration" in format_info:
        try:
            info.duration_ms = int(round(float(format_info["duration"]) * 1000))
        except (TypeError, ValueError):
            info.duration_ms = None

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")
        if codec_type == "video" and not info.has_video:
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.video_codec = stream.get("codec_name")
            info.fps = _parse_frame_rate(stream.get("r_frame_rate"))
        elif codec_type == "audio" and not info.has_audio:
            info.has_audio = True
            info.audio_codec = stream.get("codec_name")

    return info


def probe_many(sources: Iterable[str]) -> ProbeReport:
    """Probe several files, collecting per-file failures instead of aborting."""
    report = ProbeReport()
    for source in sources:
        try:
            report.results[source] = probe_media(source)
        except MediaProbeError as e:
            logger.warning(f"[MEDIA] Probe failed for {source}: {e.message}")
            report.failures[source] = e.message
    return report
