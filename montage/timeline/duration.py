"""Authoritative design duration in frames and composition metadata."""

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Any

from montage.config import get_settings
from montage.schemas.design import Design, Size
from montage.utils.values import as_dict, as_float

DEFAULT_DURATION_MS = 10000


@dataclass(frozen=True)
class CompositionMetadata:
    id: str
    width: int
    height: int
    duration_in_frames: int
    fps: float

    @property
    def duration_ms(self) -> float:
        return self.duration_in_frames * 1000 / self.fps

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "width": self.width,
            "height": self.height,
            "durationInFrames": self.duration_in_frames,
            "fps": self.fps,
        }


def max_end_ms(track_items_map: dict[str, Any]) -> float:
    """Largest ``display.to`` across all items (0 when none is set)."""
    end = 0.0
    for item in track_items_map.values():
        display = as_dict(as_dict(item).get("display"))
        end = max(end, as_float(display.get("to"), 0.0))
    return end


def ms_to_frames(duration_ms: float, fps: float) -> int:
    """Convert milliseconds to a frame count, always rounding up.

    Exact rational arithmetic keeps float noise (``7000 / 1000 * 30``) from
    adding a spurious frame.
    """
    if fps <= 0:
        raise ValueError(f"fps must be positive, got {fps}")
    frames = Fraction(duration_ms) * Fraction(fps) / 1000
    return max(1, math.ceil(frames))


def calculate_duration_in_frames(
    track_items_map: dict[str, Any],
    fps: float,
    design_duration_ms: float | None = None,
) -> int:
    """Total duration of a design in frames.

    Uses the latest item end time; when there are no items or none has an
    end time, falls back to the design's declared duration, then to 10s.
    """
    end_ms = max_end_ms(track_items_map)
    if end_ms <= 0:
        end_ms = design_duration_ms if design_duration_ms and design_duration_ms > 0 else DEFAULT_DURATION_MS
    return ms_to_frames(end_ms, fps)


def resolve_composition_metadata(
    design: Design,
    fps: float | None = None,
    size: Size | None = None,
    composition_id: str | None = None,
) -> CompositionMetadata:
    """Resolve id/size/duration/fps for a design and its render options.

    Size comes from the options, then the design, then the configured
    default; fps defaults to the configured frame rate.
    """
    settings = get_settings()
    fps = fps if fps and fps > 0 else settings.default_fps
    size = size or design.size
    return CompositionMetadata(
        id=composition_id or settings.render_composition_id,
        width=size.width if size else settings.default_width,
        height=size.height if size else settings.default_height,
        duration_in_frames=calculate_duration_in_frames(
            design.track_items_map, fps, design.duration
        ),
        fps=fps,
    )
