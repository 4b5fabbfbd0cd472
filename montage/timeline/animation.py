"""Animation intent -> keyframe spec translation.

An animation intent is what the property panel stores on an item
(``{speed, direction, timing}``). The frame renderer needs concrete
keyframes instead: which transform property moves, from where to where,
over how many frames and along which easing curve. The exit animation is
the entry animation played in reverse.
"""

import math
from dataclasses import dataclass, replace
from typing import Any, Literal

from montage.utils.interpolation import get_easing_function, interpolate, resolve_easing_name
from montage.utils.values import as_dict, as_float

Direction = Literal["up", "down", "left", "right"]
KeyframeProperty = Literal["translateX", "translateY"]

# Movement distance as a fraction of (dimension * speed)
DISTANCE_FACTOR = 0.5
# Entry duration is BASE_DURATION_FRAMES / speed, bounded to [MIN, MAX]
BASE_DURATION_FRAMES = 30
MIN_DURATION_FRAMES = 15
MAX_DURATION_FRAMES = 60
# speed <= 0 clamps here instead of dividing by zero
MIN_SPEED = 1e-3
# Item height assumed when the details carry none
DEFAULT_DIMENSION = 100.0

# direction -> (property, sign of the starting offset)
_DIRECTIONS: dict[str, tuple[KeyframeProperty, int]] = {
    "up": ("translateY", 1),
    "down": ("translateY", -1),
    "left": ("translateX", 1),
    "right": ("translateX", -1),
}


@dataclass(frozen=True)
class AnimationIntent:
    speed: float = 1.0
    direction: Direction = "up"
    timing: str = "ease"

    @classmethod
    def from_raw(cls, raw: Any) -> "AnimationIntent":
        """Build an intent from an editor dict, normalizing bad values."""
        data = as_dict(raw)
        direction = data.get("direction")
        if direction not in _DIRECTIONS:
            direction = "up"
        raw_speed = data.get("speed")
        return cls(
            speed=1.0 if raw_speed is None else as_float(raw_speed, MIN_SPEED),
            direction=direction,
            timing=resolve_easing_name(data.get("timing")),
        )


@dataclass(frozen=True)
class KeyframeSpec:
    property: KeyframeProperty
    from_value: float
    to_value: float
    duration_in_frames: int
    easing: str
    delay_in_frames: int = 0

    def reversed(self) -> "KeyframeSpec":
        return replace(self, from_value=self.to_value, to_value=self.from_value)

    def value_at(self, frame: float) -> float:
        """Evaluate the spec at a frame relative to the animation start."""
        start = self.delay_in_frames
        return interpolate(
            frame,
            [start, start + self.duration_in_frames],
            [self.from_value, self.to_value],
            easing=get_easing_function(self.easing),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "property": self.property,
            "from": self.from_value,
            "to": self.to_value,
            "durationInFrames": self.duration_in_frames,
            "easing": self.easing,
            "delay": self.delay_in_frames,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "KeyframeSpec | None":
        """Parse a stored composition entry; returns None if unusable."""
        data = as_dict(raw)
        prop = data.get("property")
        if prop not in ("translateX", "translateY"):
            return None
        duration = int(round(as_float(data.get("durationInFrames"), 0)))
        if duration <= 0:
            return None
        return cls(
            property=prop,
            from_value=as_float(data.get("from"), 0.0),
            to_value=as_float(data.get("to"), 0.0),
            duration_in_frames=duration,
            easing=resolve_easing_name(data.get("easing") or data.get("ease")),
            delay_in_frames=max(0, int(as_float(data.get("delay"), 0))),
        )


@dataclass(frozen=True)
class AnimationPair:
    entry: KeyframeSpec
    exit: KeyframeSpec

    def to_dict(self) -> dict[str, Any]:
        return {"in": self.entry.to_dict(), "out": self.exit.to_dict()}


def entry_duration_frames(speed: float) -> int:
    """Frames for an entry animation: faster intents animate for fewer frames."""
    speed = max(speed, MIN_SPEED)
    frames = min(MAX_DURATION_FRAMES, max(MIN_DURATION_FRAMES, BASE_DURATION_FRAMES / speed))
    return int(math.floor(frames + 0.5))


def resolve_animation(intent: AnimationIntent | dict, dimension: float | None = None) -> AnimationPair:
    """Translate an animation intent into entry/exit keyframe specs.

    Args:
        intent: AnimationIntent or the raw editor dict
        dimension: Reference item dimension (height) in pixels; scales the
            movement distance

    Returns:
        AnimationPair whose exit spec is the entry spec time-reversed
    """
    if not isinstance(intent, AnimationIntent):
        intent = AnimationIntent.from_raw(intent)

    speed = intent.speed if intent.speed > 0 else MIN_SPEED
    if dimension is None or dimension <= 0:
        dimension = DEFAULT_DIMENSION

    distance = dimension * speed * DISTANCE_FACTOR
    prop, sign = _DIRECTIONS.get(intent.direction, _DIRECTIONS["up"])

    entry = KeyframeSpec(
        property=prop,
        from_value=sign * distance,
        to_value=0.0,
        duration_in_frames=entry_duration_frames(speed),
        easing=resolve_easing_name(intent.timing),
        delay_in_frames=0,
    )
    return AnimationPair(entry=entry, exit=entry.reversed())


def materialize_animations(details: dict[str, Any]) -> dict[str, Any]:
    """Build the ``{in, out}`` animation entries attached to an item.

    Mirrors what the property panel dispatches when the animation toggle or
    intent changes: disabled items get ``{in: None, out: None}``.
    """
    details = as_dict(details)
    if not details.get("animationEnabled"):
        return {"in": None, "out": None}

    intent = AnimationIntent.from_raw(details.get("animation") or {})
    pair = resolve_animation(intent, as_float(details.get("height"), DEFAULT_DIMENSION))
    return {
        "in": {"name": f"custom-{intent.direction}-in", "composition": [pair.entry.to_dict()]},
        "out": {"name": f"custom-{intent.direction}-out", "composition": [pair.exit.to_dict()]},
    }


def item_animation_specs(item: dict[str, Any]) -> tuple[KeyframeSpec | None, KeyframeSpec | None]:
    """Entry/exit specs for a merged track item.

    An enabled intent on the details is authoritative (it is re-derived so
    stale stored keyframes never win); otherwise stored
    ``animations.in/out`` compositions are used when present.
    """
    details = as_dict(item.get("details"))
    if details.get("animationEnabled"):
        pair = resolve_animation(
            AnimationIntent.from_raw(details.get("animation") or {}),
            as_float(details.get("height"), DEFAULT_DIMENSION),
        )
        return pair.entry, pair.exit

    animations = as_dict(item.get("animations"))
    return _first_spec(animations.get("in")), _first_spec(animations.get("out"))


def _first_spec(animation: Any) -> KeyframeSpec | None:
    composition = as_dict(animation).get("composition")
    if not isinstance(composition, list):
        return None
    for entry in composition:
        spec = KeyframeSpec.from_dict(entry)
        if spec is not None:
            return spec
    return None

