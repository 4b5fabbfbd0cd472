"""Easing curves and keyframe interpolation.

Curve names are the ones an animation intent's ``timing`` can take. The
smooth curves are built the way the browser-side frame engine builds them
(``in``/``out``/``inOut`` wrappers around one cubic bezier), so a keyframe
evaluated here lands on the same pixel offset as in the editor preview.
"""

import bisect
from enum import Enum
from typing import Callable

EasingFunction = Callable[[float], float]

# Bisection steps when inverting the bezier x(s) polynomial (error < 2^-40)
_BEZIER_STEPS = 40


def linear(t: float) -> float:
    return t


def _cubic(p1: float, p2: float, s: float) -> float:
    """One axis of a cubic bezier anchored at 0 and 1."""
    inv = 1 - s
    return 3 * inv * inv * s * p1 + 3 * inv * s * s * p2 + s * s * s


def bezier(x1: float, y1: float, x2: float, y2: float) -> EasingFunction:
    """Cubic bezier easing with control points (x1, y1) and (x2, y2).

    x1 and x2 must lie in [0, 1] so that x(s) is monotonic and can be
    inverted by bisection.
    """

    def curve(t: float) -> float:
        if t <= 0:
            return 0.0
        if t >= 1:
            return 1.0
        low, high = 0.0, 1.0
        for _ in range(_BEZIER_STEPS):
            mid = (low + high) / 2
            if _cubic(x1, x2, mid) < t:
                low = mid
            else:
                high = mid
        return _cubic(y1, y2, (low + high) / 2)

    return curve


def ease_in(easing: EasingFunction) -> EasingFunction:
    return easing


def ease_out(easing: EasingFunction) -> EasingFunction:
    """Mirror a curve so it decelerates instead of accelerating."""
    return lambda t: 1 - easing(1 - t)


def ease_in_out(easing: EasingFunction) -> EasingFunction:
    """First half runs the curve forwards, second half mirrored."""

    def curve(t: float) -> float:
        if t < 0.5:
            return easing(t * 2) / 2
        return 1 - easing((1 - t) * 2) / 2

    return curve


ease = bezier(0.42, 0, 1, 1)

DEFAULT_EASING = "ease"

EASING_FUNCTIONS: dict[str, EasingFunction] = {
    "ease": ease,
    "ease-in": ease_in(ease),
    "ease-out": ease_out(ease),
    "ease-in-out": ease_in_out(ease),
    "linear": linear,
}


def resolve_easing_name(name: str | None) -> str:
    """Canonical curve name; ``Ease_In`` -> ``ease-in``, unknown -> ``ease``."""
    if isinstance(name, str):
        normalized = name.strip().lower().replace("_", "-")
        if normalized in EASING_FUNCTIONS:
            return normalized
    return DEFAULT_EASING


def get_easing_function(name: str | None) -> EasingFunction:
    return EASING_FUNCTIONS[resolve_easing_name(name)]


class ExtrapolateType(Enum):
    """Behaviour outside the first/last keyframe."""

    CLAMP = "clamp"
    EXTEND = "extend"


def interpolate(
    frame: float,
    input_range: list[float],
    output_range: list[float],
    *,
    easing: EasingFunction = linear,
    extrapolate_left: ExtrapolateType = ExtrapolateType.CLAMP,
    extrapolate_right: ExtrapolateType = ExtrapolateType.CLAMP,
) -> float:
    """Map ``frame`` from keyframe positions to values.

    Args:
        frame: Frame (or time) to evaluate
        input_range: Strictly increasing keyframe positions, at least two
        output_range: Value at each keyframe position
        easing: Curve applied within each segment
        extrapolate_left: Before the first keyframe, hold or continue
        extrapolate_right: After the last keyframe, hold or continue

    Returns:
        Interpolated value

    Raises:
        ValueError: If the ranges are malformed
    """
    if len(input_range) != len(output_range):
        raise ValueError("input_range and output_range must have the same length")
    if len(input_range) < 2:
        raise ValueError("input_range needs at least two keyframes")
    if any(b <= a for a, b in zip(input_range, input_range[1:])):
        raise ValueError("input_range must be strictly increasing")

    if frame <= input_range[0] and extrapolate_left == ExtrapolateType.CLAMP:
        return output_range[0]
    if frame >= input_range[-1] and extrapolate_right == ExtrapolateType.CLAMP:
        return output_range[-1]

    # Segment containing frame; out-of-range frames extend the outer segments
    index = min(max(bisect.bisect_right(input_range, frame) - 1, 0), len(input_range) - 2)
    start, end = input_range[index], input_range[index + 1]
    progress = easing((frame - start) / (end - start))
    return output_range[index] + (output_range[index + 1] - output_range[index]) * progress
