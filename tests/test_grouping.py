"""Tests for timeline grouping and the items+details merge."""

import copy

from montage.schemas.design import Design
from montage.timeline.grouping import (
    DEFAULT_TRANSITION_MS,
    deep_merge,
    group_design,
    group_track_items,
    merge_track_items,
    parse_transitions,
)


def _items(*spans):
    return {item_id: {"id": item_id, "display": {"from": start, "to": end}} for item_id, start, end in spans}


class TestGroupTrackItems:
    """Tests for group_track_items."""

    def test_singletons_in_timeline_order(self):
        """Items without transitions are singleton groups sorted by start."""
        items = _items(("b", 2000, 3000), ("a", 0, 1000), ("c", 1000, 2000))
        groups = group_track_items(["b", "a", "c"], items)

        assert [g.item_ids for g in groups] == [["a"], ["c"], ["b"]]
        assert not any(g.is_transition for g in groups)

    def test_ties_broken_by_id(self):
        """Equal start times are ordered by id so grouping is deterministic."""
        items = _items(("z", 0, 1000), ("m", 0, 500))
        groups = group_track_items(["z", "m"], items)
        assert [g.item_ids for g in groups] == [["m"], ["z"]]

    def test_transition_pairs_adjacent_items(self):
        """A transition between adjacent items produces one two-item group."""
        items = _items(("a", 0, 1000), ("b", 1000, 2000), ("c", 2000, 3000))
        transitions = {"t": {"fromId": "a", "toId": "b", "kind": "fade", "duration": 400}}
        groups = group_track_items(["a", "b", "c"], items, transitions)

        assert [g.item_ids for g in groups] == [["a", "b"], ["c"]]
        assert groups[0].is_transition
        assert groups[0].transition.duration_ms == 400
        assert groups[0].transition.kind == "fade"

    def test_transition_between_non_adjacent_items_is_ignored(self):
        """Only neighbours in timeline order can be joined."""
        items = _items(("a", 0, 1000), ("b", 1000, 2000), ("c", 2000, 3000))
        transitions = {"t": {"fromId": "a", "toId": "c"}}
        groups = group_track_items(["a", "b", "c"], items, transitions)
        assert [g.item_ids for g in groups] == [["a"], ["b"], ["c"]]

    def test_every_item_lands_in_exactly_one_group(self):
        """Partition property holds, duplicates are collapsed."""
        items = _items(("a", 0, 1000), ("b", 1000, 2000), ("c", 2000, 3000), ("d", 3000, 4000))
        transitions = {
            "t1": {"fromId": "a", "toId": "b"},
            "t2": {"fromId": "b", "toId": "c"},
        }
        groups = group_track_items(["a", "b", "b", "c", "d"], items, transitions)

        ids = [item_id for g in groups for item_id in g.item_ids]
        assert sorted(ids) == ["a", "b", "c", "d"]
        assert len(ids) == len(set(ids))

    def test_items_without_display_start_at_zero(self):
        """Missing display intervals are treated as empty spans at 0."""
        groups = group_track_items(["x", "y"], {"x": {}, "y": {"display": {"from": 10, "to": 20}}})
        assert groups[0].items[0].start_ms == 0
        assert groups[0].items[0].end_ms == 0

    def test_to_dict(self):
        items = _items(("a", 0, 1000), ("b", 1000, 2000))
        groups = group_track_items(["a", "b"], items, {"t": {"id": "t", "fromId": "a", "toId": "b"}})
        data = groups[0].to_dict()
        assert data["items"] == [{"id": "a", "from": 0, "to": 1000}, {"id": "b", "from": 1000, "to": 2000}]
        assert data["transition"] == {"id": "t", "kind": "fade", "duration": DEFAULT_TRANSITION_MS}


class TestParseTransitions:
    """Tests for parse_transitions."""

    def test_defaults_and_invalid_records(self):
        """Missing kind/duration get defaults; self or incomplete links are dropped."""
        transitions = parse_transitions(
            {
                "ok": {"fromId": "a", "toId": "b", "type": "Slide", "duration": -5},
                "self": {"fromId": "a", "toId": "a"},
                "partial": {"fromId": "a"},
                "junk": "not-a-record",
            }
        )
        assert len(transitions) == 1
        assert transitions[0].id == "ok"
        assert transitions[0].kind == "slide"
        assert transitions[0].duration_ms == DEFAULT_TRANSITION_MS


class TestMerge:
    """Tests for deep_merge and merge_track_items."""

    def test_deep_merge_nested(self):
        """Nested dicts merge key by key; None never erases."""
        base = {"details": {"text": "a", "left": 1}, "name": "x"}
        merged = deep_merge(base, {"details": {"left": 5, "top": 2}, "name": None})

        assert merged == {"details": {"text": "a", "left": 5, "top": 2}, "name": "x"}
        assert base == {"details": {"text": "a", "left": 1}, "name": "x"}

    def test_merge_only_track_items_ids(self):
        """Detail entries without a track item are ignored."""
        design = Design.model_validate(
            {
                "trackItemsMap": {"a": {"type": "text"}},
                "trackItemDetailsMap": {
                    "a": {"details": {"text": "hi"}},
                    "orphan": {"details": {"text": "never"}},
                },
            }
        )
        merged = merge_track_items(design)
        assert list(merged) == ["a"]
        assert merged["a"] == {"type": "text", "details": {"text": "hi"}}

    def test_design_is_not_mutated(self, sample_design):
        """Grouping works on copies of the submitted design."""
        design = Design.model_validate(sample_design)
        before = copy.deepcopy(design.model_dump(by_alias=True))

        merged, groups = group_design(design)
        merged["title"]["details"]["text"] = "changed"

        assert design.model_dump(by_alias=True) == before
        assert [g.item_ids for g in groups] == [["title", "caption"]]
