"""Timeline grouping shared by the preview and the offline render path.

Items are grouped into render units: a standalone item, or two adjacent
items joined by a transition. Both paths must build groups from the same
merged items+details map so that what is previewed is what gets rendered.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Iterable

from montage.schemas.design import Design
from montage.utils.values import as_dict, as_float, parse_interval

DEFAULT_TRANSITION_MS = 500.0


@dataclass(frozen=True)
class TimelineItemRef:
    id: str
    start_ms: float
    end_ms: float


@dataclass(frozen=True)
class TransitionRef:
    id: str
    from_id: str
    to_id: str
    kind: str = "fade"
    duration_ms: float = DEFAULT_TRANSITION_MS


@dataclass(frozen=True)
class TimelineGroup:
    """One render unit: a single item, or a transition pair (outgoing, incoming)."""

    items: tuple[TimelineItemRef, ...]
    transition: TransitionRef | None = field(default=None)

    @property
    def is_transition(self) -> bool:
        return len(self.items) == 2

    @property
    def item_ids(self) -> list[str]:
        return [item.id for item in self.items]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "items": [
                {"id": item.id, "from": item.start_ms, "to": item.end_ms} for item in self.items
            ],
        }
        if self.transition is not None:
            data["transition"] = {
                "id": self.transition.id,
                "kind": self.transition.kind,
                "duration": self.transition.duration_ms,
            }
        return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``.

    Nested dicts merge key by key; any other value in ``override`` replaces
    the base value, except None which never erases existing data.
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if value is None and key in merged:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_track_items(design: Design) -> dict[str, dict[str, Any]]:
    """Merge ``trackItemsMap`` with ``trackItemDetailsMap``.

    Only ids present in ``trackItemsMap`` are returned. An id without a
    details entry is kept as-is (it renders without visual properties).
    The design itself is left untouched.
    """
    merged: dict[str, dict[str, Any]] = {}
    for item_id, item in design.track_items_map.items():
        details = as_dict(design.track_item_details_map.get(item_id))
        merged[item_id] = deep_merge(as_dict(item), details)
    return merged


def parse_transitions(transitions_map: dict[str, Any]) -> list[TransitionRef]:
    transitions = []
    for transition_id, raw in transitions_map.items():
        record = as_dict(raw)
        from_id = record.get("fromId")
        to_id = record.get("toId")
        if not isinstance(from_id, str) or not isinstance(to_id, str) or from_id == to_id:
            continue
        kind = record.get("kind") or record.get("type") or "fade"
        duration = as_float(record.get("duration"), DEFAULT_TRANSITION_MS)
        transitions.append(
            TransitionRef(
                id=str(record.get("id") or transition_id),
                from_id=from_id,
                to_id=to_id,
                kind=str(kind).lower(),
                duration_ms=duration if duration > 0 else DEFAULT_TRANSITION_MS,
            )
        )
    return transitions


def item_ref(item_id: str, track_items_map: dict[str, Any]) -> TimelineItemRef:
    start, end = parse_interval(as_dict(track_items_map.get(item_id)).get("display"))
    return TimelineItemRef(id=item_id, start_ms=start, end_ms=end)


def group_track_items(
    track_item_ids: Iterable[str],
    track_items_map: dict[str, Any],
    transitions_map: dict[str, Any] | None = None,
) -> list[TimelineGroup]:
    """Partition items into ordered render groups.

    Items are ordered by ``display.from`` (ties broken by id). Each adjacent
    pair referenced by a transition becomes one two-item group; everything
    else is a singleton. Every input id lands in exactly one group.

    Args:
        track_item_ids: Item ids to group (duplicates are collapsed)
        track_items_map: Merged items+details map supplying display intervals
        transitions_map: Transition records keyed by transition id

    Returns:
        Groups in timeline order
    """
    refs = [item_ref(item_id, track_items_map) for item_id in dict.fromkeys(track_item_ids)]
    refs.sort(key=lambda ref: (ref.start_ms, ref.id))

    transitions_by_pair: dict[frozenset[str], TransitionRef] = {}
    for transition in parse_transitions(transitions_map or {}):
        transitions_by_pair.setdefault(frozenset((transition.from_id, transition.to_id)), transition)

    groups: list[TimelineGroup] = []
    index = 0
    while index < len(refs):
        current = refs[index]
        if index + 1 < len(refs):
            following = refs[index + 1]
            transition = transitions_by_pair.get(frozenset((current.id, following.id)))
            if transition is not None:
                groups.append(TimelineGroup(items=(current, following), transition=transition))
                index += 2
                continue
        groups.append(TimelineGroup(items=(current,)))
        index += 1
    return groups


def group_design(design: Design) -> tuple[dict[str, dict[str, Any]], list[TimelineGroup]]:
    """Merge and group a design: the one entry point both render paths use."""
    merged = merge_track_items(design)
    groups = group_track_items(design.item_ids(), merged, design.transitions_map)
    return merged, groups
