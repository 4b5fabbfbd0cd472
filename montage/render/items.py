"""Renderable track item variants.

Every supported item kind is its own class carrying its own ``draw``
implementation; ``to_renderable`` maps a merged track item onto exactly
one variant. Kinds without a visual (audio) and unknown kinds map to
variants that draw nothing, so an unexpected ``type`` never fails a frame.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, ClassVar

from PIL import Image, ImageDraw, ImageFont

from montage.render.media import MediaCache
from montage.timeline.animation import KeyframeSpec, item_animation_specs
from montage.utils.values import as_dict, as_float, parse_hex_color, parse_interval, parse_opacity

logger = logging.getLogger(__name__)

FONT_CANDIDATES: dict[str, list[str]] = {
    "regular": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
        "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
        "/System/Library/Fonts/Helvetica.ttc",
    ],
    "bold": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
        "/usr/share/fonts/truetype/noto/NotoSansCJK-Bold.ttc",
        "/System/Library/Fonts/Helvetica.ttc",
    ],
}


@lru_cache(maxsize=32)
def load_font(size: int, bold: bool = False) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    """Load the first available system font, falling back to Pillow's default."""
    candidates = FONT_CANDIDATES["bold" if bold else "regular"] + FONT_CANDIDATES["regular"]
    for path in candidates:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    logger.warning("[TEXT] No system font found, using Pillow default")
    return ImageFont.load_default(size=size)


@dataclass(frozen=True)
class RenderContext:
    """Per-frame inputs shared by every item drawn in that frame."""

    frame: int
    fps: float
    width: int
    height: int
    media: MediaCache

    @property
    def time_ms(self) -> float:
        return self.frame * 1000 / self.fps


def composite(canvas: Image.Image, layer: Image.Image, x: float, y: float, alpha: float = 1.0) -> None:
    """Alpha-composite ``layer`` onto ``canvas`` at (x, y), clipping off-canvas parts."""
    if alpha <= 0:
        return
    if alpha < 1:
        layer = layer.copy()
        layer.putalpha(layer.getchannel("A").point(lambda v: int(v * alpha)))

    x, y = int(round(x)), int(round(y))
    src_left, src_top = max(0, -x), max(0, -y)
    dst_left, dst_top = max(0, x), max(0, y)
    width = min(layer.width - src_left, canvas.width - dst_left)
    height = min(layer.height - src_top, canvas.height - dst_top)
    if width <= 0 or height <= 0:
        return
    canvas.alpha_composite(
        layer,
        dest=(dst_left, dst_top),
        source=(src_left, src_top, src_left + width, src_top + height),
    )


@dataclass
class RenderableItem:
    """Common geometry/timing/animation handling for all item variants."""

    kind: ClassVar[str] = ""

    id: str
    start_ms: float
    end_ms: float
    details: dict[str, Any]
    trim_from_ms: float = 0.0
    playback_rate: float = 1.0
    entry: KeyframeSpec | None = None
    exit: KeyframeSpec | None = None

    @classmethod
    def from_item(cls, item_id: str, item: dict[str, Any]) -> "RenderableItem":
        start, end = parse_interval(item.get("display"))
        trim_from, _ = parse_interval(item.get("trim"))
        rate = as_float(item.get("playbackRate"), 1.0)
        entry, exit_spec = item_animation_specs(item)
        return cls(
            id=item_id,
            start_ms=start,
            end_ms=end,
            details=as_dict(item.get("details")),
            trim_from_ms=trim_from,
            playback_rate=rate if rate > 0 else 1.0,
            entry=entry,
            exit=exit_spec,
        )

    def is_active(self, time_ms: float) -> bool:
        return self.start_ms <= time_ms < self.end_ms

    # -- geometry -------------------------------------------------------------

    @property
    def left(self) -> float:
        return as_float(self.details.get("left"), 0.0)

    @property
    def top(self) -> float:
        return as_float(self.details.get("top"), 0.0)

    @property
    def opacity(self) -> float:
        return parse_opacity(self.details.get("opacity"), 1.0)

    def box_size(self, ctx: RenderContext) -> tuple[int, int]:
        width = int(as_float(self.details.get("width"), ctx.width))
        height = int(as_float(self.details.get("height"), ctx.height))
        return max(1, width), max(1, height)

    def animation_offset(self, ctx: RenderContext) -> tuple[float, float]:
        """Translate offset produced by the entry/exit keyframes at this frame."""
        dx = dy = 0.0
        start_frame = self.start_ms * ctx.fps / 1000
        end_frame = self.end_ms * ctx.fps / 1000

        if self.entry is not None:
            elapsed = ctx.frame - start_frame
            if elapsed < self.entry.delay_in_frames + self.entry.duration_in_frames:
                value = self.entry.value_at(elapsed)
                if self.entry.property == "translateX":
                    dx += value
                else:
                    dy += value

        if self.exit is not None:
            exit_start = end_frame - self.exit.duration_in_frames - self.exit.delay_in_frames
            if ctx.frame >= exit_start:
                value = self.exit.value_at(ctx.frame - exit_start)
                if self.exit.property == "translateX":
                    dx += value
                else:
                    dy += value

        return dx, dy

    # -- rendering ------------------------------------------------------------

    def draw(self, ctx: RenderContext) -> Image.Image | None:
        """Return the item's RGBA layer for this frame, or None for no visual."""
        return None

    def render(self, canvas: Image.Image, ctx: RenderContext, alpha: float = 1.0) -> None:
        layer = self.draw(ctx)
        if layer is None:
            return
        dx, dy = self.animation_offset(ctx)
        composite(canvas, layer, self.left + dx, self.top + dy, alpha * self.opacity)


class TextItem(RenderableItem):
    kind = "text"

    def draw(self, ctx: RenderContext) -> Image.Image | None:
        text = str(self.details.get("text") or "")
        if not text:
            return None

        font_size = max(1, int(as_float(self.details.get("fontSize"), 48)))
        bold = str(self.details.get("fontWeight", "")).lower() in ("bold", "700", "800", "900")
        font = load_font(font_size, bold)
        color = parse_hex_color(self.details.get("color"), (255, 255, 255))

        measure = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
        bbox = measure.multiline_textbbox((0, 0), text, font=font)
        text_w, text_h = bbox[2] - bbox[0], bbox[3] - bbox[1]

        width = int(as_float(self.details.get("width"), text_w))
        height = int(as_float(self.details.get("height"), text_h))
        layer = Image.new("RGBA", (max(1, width), max(1, height)), (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)

        background = self.details.get("backgroundColor")
        if isinstance(background, str) and background not in ("", "transparent"):
            draw.rectangle((0, 0, layer.width, layer.height), fill=(*parse_hex_color(background), 255))

        align = self.details.get("textAlign", "left")
        if align == "center":
            x = (layer.width - text_w) / 2
        elif align == "right":
            x = layer.width - text_w
        else:
            x = 0
        if align not in ("left", "center", "right"):
            align = "left"
        draw.multiline_text((x - bbox[0], -bbox[1]), text, font=font, fill=(*color, 255), align=align)
        return layer


class ImageItem(RenderableItem):
    kind = "image"

    def draw(self, ctx: RenderContext) -> Image.Image | None:
        image = ctx.media.image(str(self.details.get("src") or ""))
        if image is None:
            return None
        size = (
            int(as_float(self.details.get("width"), image.width)),
            int(as_float(self.details.get("height"), image.height)),
        )
        if size != image.size and size[0] > 0 and size[1] > 0:
            image = image.resize(size, Image.Resampling.LANCZOS)
        return image


class VideoItem(RenderableItem):
    kind = "video"

    def source_time_ms(self, ctx: RenderContext) -> float:
        """Time within the source file shown at this frame (trim and rate applied)."""
        local = min(max(ctx.time_ms, self.start_ms), self.end_ms) - self.start_ms
        return self.trim_from_ms + local * self.playback_rate

    def draw(self, ctx: RenderContext) -> Image.Image | None:
        frame = ctx.media.video_frame(str(self.details.get("src") or ""), int(self.source_time_ms(ctx)))
        if frame is None:
            return None
        size = (
            int(as_float(self.details.get("width"), frame.width)),
            int(as_float(self.details.get("height"), frame.height)),
        )
        if size != frame.size and size[0] > 0 and size[1] > 0:
            frame = frame.resize(size, Image.Resampling.BILINEAR)
        return frame


class ShapeItem(RenderableItem):
    kind = "shape"

    def draw(self, ctx: RenderContext) -> Image.Image | None:
        width, height = self.box_size(ctx)
        fill = parse_hex_color(self.details.get("backgroundColor"), (255, 255, 255))
        radius = int(as_float(self.details.get("borderRadius"), 0))
        layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        ImageDraw.Draw(layer).rounded_rectangle((0, 0, width - 1, height - 1), radius=radius, fill=(*fill, 255))
        return layer


class AudioItem(RenderableItem):
    """Audio has no visual output."""

    kind = "audio"


class UnsupportedItem(RenderableItem):
    """Any kind without a renderer: draws nothing."""

    kind = "unsupported"


ITEM_VARIANTS: tuple[type[RenderableItem], ...] = (TextItem, ImageItem, VideoItem, ShapeItem, AudioItem)
_VARIANTS_BY_KIND = {variant.kind: variant for variant in ITEM_VARIANTS}


def to_renderable(item_id: str, item: dict[str, Any] | None) -> RenderableItem:
    """Build the render variant for a merged track item."""
    item = as_dict(item)
    kind = item.get("type")
    variant = _VARIANTS_BY_KIND.get(kind, UnsupportedItem) if isinstance(kind, str) else UnsupportedItem
    if variant is UnsupportedItem:
        logger.debug(f"[RENDER] No renderer for item {item_id} of type {kind!r}")
    return variant.from_item(item_id, item)
