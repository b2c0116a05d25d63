"""Tests for pane layout tree operations."""
import json

import pytest

from startall import layout
from startall.models.pane import ColorClass, Direction, Pane, Split


def shape(node):
    """Tree structure without ids, for comparing trees across a round trip."""
    if isinstance(node, Pane):
        return ("pane", node.name, frozenset(node.process_scope), frozenset(node.hidden),
                node.text_filter, node.color_filter)
    return ("split", node.direction, tuple(round(s, 6) for s in node.sizes),
            tuple(shape(child) for child in node.children))


def assert_invariants(node):
    if isinstance(node, Pane):
        return
    assert len(node.children) >= 2
    assert len(node.sizes) == len(node.children)
    assert sum(node.sizes) == pytest.approx(len(node.children))
    for child in node.children:
        if isinstance(child, Split):
            assert child.direction != node.direction
        assert_invariants(child)


def test_split_single_pane():
    """Test splitting the root pane."""
    root = Pane(process_scope={"web"})
    tree = layout.split(root, root.id, Direction.VERTICAL)

    assert isinstance(tree, Split)
    assert tree.direction == Direction.VERTICAL
    assert tree.children[0] is root
    assert tree.children[1].process_scope == {"web"}
    assert tree.children[1].id != root.id
    assert tree.sizes == [1.0, 1.0]


def test_split_flattens_same_direction():
    """Test that same-direction splits join the parent instead of nesting."""
    root = Pane()
    tree = layout.split(root, root.id, Direction.VERTICAL)
    second = tree.children[1]
    tree = layout.split(tree, second.id, Direction.VERTICAL)

    assert isinstance(tree, Split)
    assert len(tree.children) == 3
    assert tree.children[0] is root
    assert tree.children[1] is second
    # The target's slot is halved, the untouched sibling keeps its share
    assert tree.sizes == pytest.approx([1.5, 0.75, 0.75])
    assert_invariants(tree)


def test_split_flatten_redistributes_uneven_sizes():
    """Test that only the target's slot is divided."""
    left, right = Pane(), Pane()
    tree = Split(direction=Direction.VERTICAL, children=[left, right], sizes=[1.5, 0.5])
    tree = layout.split(tree, left.id, Direction.VERTICAL)

    # 0.75 / 0.75 / 0.5 scaled so the sum is 3
    assert tree.sizes == pytest.approx([1.125, 1.125, 0.75])


def test_split_other_direction_nests():
    """Test that a cross-direction split creates a child split."""
    root = Pane()
    tree = layout.split(root, root.id, Direction.VERTICAL)
    tree = layout.split(tree, root.id, Direction.HORIZONTAL)

    assert isinstance(tree.children[0], Split)
    assert tree.children[0].direction == Direction.HORIZONTAL
    assert_invariants(tree)


def test_split_unknown_id_is_noop():
    root = Pane()
    assert layout.split(root, "pane-does-not-exist", Direction.VERTICAL) is root


def test_no_nested_same_direction_after_many_splits():
    """Test the flattening invariant over a sequence of splits."""
    tree = Pane()
    directions = [Direction.VERTICAL, Direction.HORIZONTAL, Direction.VERTICAL,
                  Direction.VERTICAL, Direction.HORIZONTAL, Direction.HORIZONTAL]
    for index, direction in enumerate(directions):
        ids = layout.all_ids(tree)
        tree = layout.split(tree, ids[index % len(ids)], direction)
        assert_invariants(tree)
    assert len(layout.all_ids(tree)) == len(directions) + 1


def test_close_unwraps_single_child():
    root = Pane()
    tree = layout.split(root, root.id, Direction.VERTICAL)
    other = tree.children[1]
    tree = layout.close(tree, other.id)

    assert tree is root


def test_close_renormalizes_sizes():
    panes = [Pane(), Pane(), Pane()]
    tree = Split(direction=Direction.VERTICAL, children=panes, sizes=[2.0, 0.5, 0.5])
    tree = layout.close(tree, panes[2].id)

    assert tree.sizes == pytest.approx([1.6, 0.4])


def test_close_splices_promoted_same_direction_split():
    """Test that unwrapping never leaves a same-direction child split."""
    a, b, c, d = Pane(), Pane(), Pane(), Pane()
    inner = Split(direction=Direction.VERTICAL, children=[c, d])
    middle = Split(direction=Direction.HORIZONTAL, children=[b, inner])
    tree = Split(direction=Direction.VERTICAL, children=[a, middle])
    tree = layout.close(tree, b.id)

    assert isinstance(tree, Split)
    assert tree.children == [a, c, d]
    assert_invariants(tree)


def test_close_last_pane_returns_none():
    root = Pane()
    assert layout.close(root, root.id) is None


def test_close_unknown_id_is_noop():
    root = Pane()
    tree = layout.split(root, root.id, Direction.VERTICAL)
    assert layout.close(tree, "pane-does-not-exist") is tree


def test_all_ids_preorder_and_neighbor_wraps():
    root = Pane()
    tree = layout.split(root, root.id, Direction.VERTICAL)
    tree = layout.split(tree, root.id, Direction.HORIZONTAL)
    ids = layout.all_ids(tree)

    assert ids[0] == root.id
    assert len(ids) == 3
    assert layout.neighbor(tree, ids[-1], 1) == ids[0]
    assert layout.neighbor(tree, ids[0], -1) == ids[-1]
    assert layout.neighbor(tree, "missing", 1) == ids[0]


def test_resize_trades_space_with_sibling():
    left, right = Pane(), Pane()
    tree = Split(direction=Direction.VERTICAL, children=[left, right])
    tree = layout.resize(tree, left.id, 0.5)
    assert tree.sizes == pytest.approx([1.5, 0.5])

    # The last child trades with its previous sibling, never below the minimum
    tree = layout.resize(tree, right.id, -5)
    assert tree.sizes == pytest.approx([2 - layout.MIN_SIZE, layout.MIN_SIZE])


def test_resize_root_pane_is_noop():
    root = Pane()
    assert layout.resize(root, root.id, 1.0) is root


def test_serialize_drops_runtime_fields():
    pane = Pane(name="errors", process_scope={"web", "api"}, is_paused=True, scroll_offset=4)
    data = layout.serialize(pane)

    assert data == {
        "type": "pane",
        "name": "errors",
        "processScope": ["api", "web"],
        "hiddenSet": [],
        "textFilter": "",
        "colorFilter": None,
    }


def test_round_trip_preserves_shape():
    """Test deserialize(serialize(t)) is isomorphic to t with fresh ids."""
    root = Pane(name="all", hidden={"db"})
    tree = layout.split(root, root.id, Direction.VERTICAL)
    tree = layout.split(tree, layout.all_ids(tree)[1], Direction.HORIZONTAL)
    second = layout.find_by_id(tree, layout.all_ids(tree)[1])
    second.process_scope = {"db"}
    second.color_filter = ColorClass.RED
    tree = layout.resize(tree, root.id, 0.3)
    tree = layout.split(tree, root.id, Direction.VERTICAL)
    tree = layout.close(tree, layout.all_ids(tree)[1])

    data = json.loads(json.dumps(layout.serialize(tree)))
    restored = layout.deserialize(data)

    assert shape(restored) == shape(tree)
    assert set(layout.all_ids(restored)).isdisjoint(layout.all_ids(tree))


def test_deserialize_fills_missing_fields():
    restored = layout.deserialize({"children": [{}, {"processScope": ["web", 3]}]})

    assert isinstance(restored, Split)
    assert restored.direction == Direction.VERTICAL
    assert restored.sizes == [1.0, 1.0]
    assert restored.children[1].process_scope == {"web"}
    assert restored.children[0].text_filter == ""


@pytest.mark.parametrize("data", [
    None,
    "garbage",
    42,
    {"type": "split", "children": "nope"},
    {"type": "split", "children": []},
])
def test_deserialize_malformed_gives_default_pane(data):
    restored = layout.deserialize(data)
    assert isinstance(restored, Pane)
    assert restored.process_scope == set()


def test_deserialize_repairs_bad_sizes_and_singletons():
    data = {
        "type": "split",
        "direction": "sideways",
        "sizes": [1, "x", -2],
        "children": [{"type": "pane"}, {"type": "split", "children": [{"name": "only"}]}, 7],
    }
    restored = layout.deserialize(data)

    assert isinstance(restored, Split)
    assert restored.direction == Direction.VERTICAL
    assert len(restored.children) == 2
    assert restored.children[1].name == "only"
    assert sum(restored.sizes) == pytest.approx(2)


def test_deserialize_unknown_color_is_dropped():
    restored = layout.deserialize({"type": "pane", "colorFilter": "ultraviolet"})
    assert restored.color_filter is None
