from montage.timeline.animation import (
    AnimationIntent,
    AnimationPair,
    KeyframeSpec,
    item_animation_specs,
    materialize_animations,
    resolve_animation,
)
from montage.timeline.duration import (
    CompositionMetadata,
    calculate_duration_in_frames,
    resolve_composition_metadata,
)
from montage.timeline.grouping import (
    TimelineGroup,
    TimelineItemRef,
    TransitionRef,
    group_design,
    group_track_items,
    merge_track_items,
)

__all__ = [
    "AnimationIntent",
    "AnimationPair",
    "CompositionMetadata",
    "KeyframeSpec",
    "TimelineGroup",
    "TimelineItemRef",
    "TransitionRef",
    "calculate_duration_in_frames",
    "group_design",
    "group_track_items",
    "item_animation_specs",
    "materialize_animations",
    "merge_track_items",
    "resolve_animation",
    "resolve_composition_metadata",
]
