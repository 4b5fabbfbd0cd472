"""Frame-indexed composition rendering.

The render engine calls ``CompositionFrameRenderer.render_frame`` once per
output frame. Grouping is computed once per render with the same merged
items+details map the preview uses, so preview and output agree.
"""

import logging
from dataclasses import dataclass
from typing import Any

from PIL import Image, ImageDraw

from montage.config import get_settings
from montage.render.items import RenderableItem, RenderContext, load_font, to_renderable
from montage.render.media import MediaCache
from montage.schemas.design import Design, Size
from montage.timeline.animation import item_animation_specs
from montage.timeline.duration import CompositionMetadata, resolve_composition_metadata
from montage.timeline.grouping import TimelineGroup, TransitionRef, group_design

logger = logging.getLogger(__name__)

BACKGROUND_COLOR = (0, 0, 0, 255)
PLACEHOLDER_TEXT = "No content - check design data"
PLACEHOLDER_FONT_SIZE = 24


def draw_placeholder(canvas: Image.Image) -> None:
    """Solid background with centred diagnostic text for designs without items."""
    draw = ImageDraw.Draw(canvas)
    font = load_font(PLACEHOLDER_FONT_SIZE)
    bbox = draw.textbbox((0, 0), PLACEHOLDER_TEXT, font=font)
    x = (canvas.width - (bbox[2] - bbox[0])) / 2 - bbox[0]
    y = (canvas.height - (bbox[3] - bbox[1])) / 2 - bbox[1]
    draw.text((x, y), PLACEHOLDER_TEXT, font=font, fill=(255, 255, 255, 255))


@dataclass
class TransitionRenderer:
    """Cross-fades a transition pair around the incoming item's start.

    The window is centred on the boundary and lasts the transition duration.
    Outside the window both items behave like standalone items. Kind
    ``none`` is a hard cut; any other kind renders as a cross-fade.
    """

    outgoing: RenderableItem
    incoming: RenderableItem
    transition: TransitionRef

    @property
    def window(self) -> tuple[float, float]:
        half = self.transition.duration_ms / 2
        boundary = self.incoming.start_ms
        return boundary - half, boundary + half

    def is_active(self, time_ms: float) -> bool:
        start, end = self.window
        in_window = self.transition.kind != "none" and start <= time_ms < end
        return in_window or self.outgoing.is_active(time_ms) or self.incoming.is_active(time_ms)

    def render(self, canvas: Image.Image, ctx: RenderContext) -> None:
        start, end = self.window
        time_ms = ctx.time_ms
        if self.transition.kind == "none" or not (start <= time_ms < end):
            for item in (self.outgoing, self.incoming):
                if item.is_active(time_ms):
                    item.render(canvas, ctx)
            return

        progress = (time_ms - start) / (end - start)
        self.outgoing.render(canvas, ctx, alpha=1 - progress)
        self.incoming.render(canvas, ctx, alpha=progress)


class CompositionFrameRenderer:
    """Renders single frames of a design at a fixed size and frame rate."""

    def __init__(
        self,
        design: Design,
        fps: float,
        width: int,
        height: int,
        media: MediaCache | None = None,
    ):
        self.design = design
        self.fps = fps
        self.width = width
        self.height = height
        self.media = media or MediaCache()

        self.merged_items, self.groups = group_design(design)
        self.items: dict[str, RenderableItem] = {
            item_id: to_renderable(item_id, self.merged_items.get(item_id))
            for item_id in self.merged_items
        }
        self._renderers: list[RenderableItem | TransitionRenderer] = []
        for group in self.groups:
            if group.is_transition and group.transition is not None:
                outgoing, incoming = (self.items[ref.id] for ref in group.items)
                self._renderers.append(TransitionRenderer(outgoing, incoming, group.transition))
            else:
                self._renderers.append(self.items[group.items[0].id])

        logger.info(
            f"[RENDER] Composition {width}x{height}@{fps}fps: "
            f"{len(self.items)} items in {len(self.groups)} groups "
            f"({len(self.groups) - sum(1 for g in self.groups if not g.is_transition)} transitions)"
        )

    @property
    def is_empty(self) -> bool:
        return not self.items

    def active_groups(self, time_ms: float) -> list[TimelineGroup]:
        """Groups contributing pixels at ``time_ms``, in timeline order."""
        return [
            group
            for group, renderer in zip(self.groups, self._renderers)
            if renderer.is_active(time_ms)
        ]

    def render_frame(self, frame: int) -> Image.Image:
        """Render one RGB frame."""
        canvas = Image.new("RGBA", (self.width, self.height), BACKGROUND_COLOR)
        if self.is_empty:
            draw_placeholder(canvas)
            return canvas.convert("RGB")

        ctx = RenderContext(
            frame=frame, fps=self.fps, width=self.width, height=self.height, media=self.media
        )
        for renderer in self._renderers:
            if renderer.is_active(ctx.time_ms):
                renderer.render(canvas, ctx)
        return canvas.convert("RGB")


@dataclass(frozen=True)
class CompositionDefinition:
    """A registered composition: metadata resolution plus its frame renderer."""

    id: str

    def parse_props(self, input_props: dict[str, Any]) -> tuple[Design, float | None, Size | None]:
        design = Design.model_validate(input_props.get("design") or {})
        fps = input_props.get("fps")
        raw_size = input_props.get("size")
        size = Size.model_validate(raw_size) if raw_size else None
        return design, fps, size

    def calculate_metadata(self, input_props: dict[str, Any]) -> CompositionMetadata:
        design, fps, size = self.parse_props(input_props)
        return resolve_composition_metadata(design, fps, size, composition_id=self.id)

    def create_renderer(
        self,
        input_props: dict[str, Any],
        metadata: CompositionMetadata,
        media: MediaCache | None = None,
    ) -> CompositionFrameRenderer:
        design, _, _ = self.parse_props(input_props)
        return CompositionFrameRenderer(
            design, metadata.fps, metadata.width, metadata.height, media=media
        )


VIDEO_COMPOSITION = CompositionDefinition(id=get_settings().render_composition_id)

# Entry point registry resolved by the bundler
COMPOSITIONS: dict[str, CompositionDefinition] = {VIDEO_COMPOSITION.id: VIDEO_COMPOSITION}


def build_composition_plan(
    design: Design, fps: float | None = None, size: Size | None = None
) -> dict[str, Any]:
    """Serializable composition plan: metadata, groups and keyframe specs.

    Uses the same merge/grouping as the render path.
    """
    metadata = resolve_composition_metadata(design, fps, size, composition_id=VIDEO_COMPOSITION.id)
    merged, groups = group_design(design)
    animations = {}
    for item_id, item in merged.items():
        entry, exit_spec = item_animation_specs(item)
        if entry or exit_spec:
            animations[item_id] = {
                "in": entry.to_dict() if entry else None,
                "out": exit_spec.to_dict() if exit_spec else None,
            }
    return {
        "composition": metadata.to_dict(),
        "groups": [group.to_dict() for group in groups],
        "animations": animations,
    }
