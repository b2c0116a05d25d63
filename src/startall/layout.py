"""Pane layout tree operations.

Structural changes return a new root. Leaves are shared between the old and
new tree so per-pane state (filters, freeze, scroll) survives a reflow.

Every split built here keeps three invariants:
- at least two children, with one size per child,
- sizes summing to the number of children,
- no child split with the same direction as its parent.
"""
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .models.pane import ColorClass, Direction, Pane, PaneNode, Split

logger = logging.getLogger(__name__)

MIN_SIZE = 0.2


def iter_panes(node: PaneNode) -> Iterator[Pane]:
    """Yield leaves in pre-order."""
    if isinstance(node, Pane):
        yield node
        return
    for child in node.children:
        yield from iter_panes(child)


def all_panes(tree: PaneNode) -> List[Pane]:
    return list(iter_panes(tree))


def all_ids(tree: PaneNode) -> List[str]:
    """Pane ids in pre-order. This order defines next/previous navigation."""
    return [pane.id for pane in iter_panes(tree)]


def find_by_id(tree: PaneNode, pane_id: str) -> Optional[Pane]:
    for pane in iter_panes(tree):
        if pane.id == pane_id:
            return pane
    return None


def neighbor(tree: PaneNode, pane_id: str, offset: int = 1) -> str:
    """Return the id `offset` panes away from `pane_id`, wrapping around."""
    ids = all_ids(tree)
    if pane_id not in ids:
        return ids[0]
    return ids[(ids.index(pane_id) + offset) % len(ids)]


def _normalized(sizes: Sequence[float], count: int) -> List[float]:
    """Scale sizes so they sum to `count`; reset to equal shares if unusable."""
    if len(sizes) != count:
        return [1.0] * count
    sizes = [max(float(size), 0.0) for size in sizes]
    total = sum(sizes)
    if total <= 0:
        return [1.0] * count
    return [size * count / total for size in sizes]


def _make_split(direction: Direction, children: List[PaneNode], sizes: List[float]) -> PaneNode:
    """Build a split node, flattening same-direction children and unwrapping singletons."""
    flat_children: List[PaneNode] = []
    flat_sizes: List[float] = []
    for child, size in zip(children, sizes):
        if isinstance(child, Split) and child.direction == direction:
            inner = _normalized(child.sizes, len(child.children))
            inner_total = sum(inner)
            for grandchild, inner_size in zip(child.children, inner):
                flat_children.append(grandchild)
                flat_sizes.append(size * inner_size / inner_total)
        else:
            flat_children.append(child)
            flat_sizes.append(size)

    if len(flat_children) == 1:
        return flat_children[0]
    return Split(
        direction=direction,
        children=flat_children,
        sizes=_normalized(flat_sizes, len(flat_children)),
    )


def split(tree: PaneNode, pane_id: str, direction: Direction) -> PaneNode:
    """Split a pane in two. The new pane inherits the original's process scope.

    Unknown ids leave the tree unchanged.
    """
    target = find_by_id(tree, pane_id)
    if target is None:
        logger.debug(f"split: pane {pane_id} not found")
        return tree

    fresh = Pane(process_scope=set(target.process_scope))
    return _split_node(tree, target, fresh, direction)


def _split_node(node: PaneNode, target: Pane, fresh: Pane, direction: Direction) -> PaneNode:
    if node is target:
        return Split(direction=direction, children=[target, fresh], sizes=[1.0, 1.0])
    if isinstance(node, Pane):
        return node

    children: List[PaneNode] = []
    sizes: List[float] = []
    for child, size in zip(node.children, _normalized(node.sizes, len(node.children))):
        if child is target and node.direction == direction:
            # Flatten into the parent: the target's slot is shared with the new pane
            children.extend([target, fresh])
            sizes.extend([size / 2, size / 2])
        else:
            children.append(_split_node(child, target, fresh, direction))
            sizes.append(size)
    return _make_split(node.direction, children, sizes)


def close(tree: PaneNode, pane_id: str) -> Optional[PaneNode]:
    """Remove a pane. Returns None when the last pane is closed.

    Unknown ids leave the tree unchanged.
    """
    if find_by_id(tree, pane_id) is None:
        logger.debug(f"close: pane {pane_id} not found")
        return tree
    return _close_node(tree, pane_id)


def _close_node(node: PaneNode, pane_id: str) -> Optional[PaneNode]:
    if isinstance(node, Pane):
        return None if node.id == pane_id else node

    children: List[PaneNode] = []
    sizes: List[float] = []
    for child, size in zip(node.children, _normalized(node.sizes, len(node.children))):
        kept = _close_node(child, pane_id)
        if kept is not None:
            children.append(kept)
            sizes.append(size)
    if not children:
        return None
    return _make_split(node.direction, children, sizes)


def resize(tree: PaneNode, pane_id: str, delta: float) -> PaneNode:
    """Grow (or shrink, for negative delta) a pane's slot in its parent split.

    Space is traded with the next sibling, or the previous one for the last child.
    """
    target = find_by_id(tree, pane_id)
    if target is None or isinstance(tree, Pane):
        return tree
    return _resize_node(tree, target, delta)


def _resize_node(node: PaneNode, target: Pane, delta: float) -> PaneNode:
    if isinstance(node, Pane):
        return node

    sizes = _normalized(node.sizes, len(node.children))
    for index, child in enumerate(node.children):
        if child is target:
            other = index + 1 if index + 1 < len(sizes) else index - 1
            amount = max(min(delta, sizes[other] - MIN_SIZE), MIN_SIZE - sizes[index])
            sizes[index] += amount
            sizes[other] -= amount
            return Split(direction=node.direction, children=list(node.children), sizes=sizes)

    return Split(
        direction=node.direction,
        children=[_resize_node(child, target, delta) for child in node.children],
        sizes=sizes,
    )


def serialize(node: PaneNode) -> Dict[str, Any]:
    """Convert a tree to plain JSON data, dropping ids and runtime-only state."""
    if isinstance(node, Pane):
        return {
            "type": "pane",
            "name": node.name,
            "processScope": sorted(node.process_scope),
            "hiddenSet": sorted(node.hidden),
            "textFilter": node.text_filter,
            "colorFilter": node.color_filter.value if node.color_filter else None,
        }
    return {
        "type": "split",
        "direction": node.direction.value,
        "sizes": list(node.sizes),
        "children": [serialize(child) for child in node.children],
    }


def deserialize(data: Any) -> PaneNode:
    """Rebuild a tree from persisted data with fresh pane ids.

    Missing or malformed fields fall back to defaults; unusable input yields a
    single default pane. Never raises.
    """
    node = _load_node(data)
    if node is None:
        if data is not None:
            logger.warning("Ignoring malformed pane layout")
        return Pane()
    return node


def _load_node(data: Any) -> Optional[PaneNode]:
    if not isinstance(data, dict):
        return None

    if data.get("type") == "split" or "children" in data:
        raw_children = data.get("children")
        if not isinstance(raw_children, list):
            return None
        raw_sizes = data.get("sizes")
        if not isinstance(raw_sizes, list) or len(raw_sizes) != len(raw_children):
            raw_sizes = [1.0] * len(raw_children)

        children: List[PaneNode] = []
        sizes: List[float] = []
        for raw_child, raw_size in zip(raw_children, raw_sizes):
            child = _load_node(raw_child)
            if child is not None:
                children.append(child)
                sizes.append(_as_size(raw_size))
        if not children:
            return None
        return _make_split(_as_direction(data.get("direction")), children, sizes)

    return Pane(
        name=data.get("name") if isinstance(data.get("name"), str) else "",
        process_scope=_as_names(data.get("processScope")),
        hidden=_as_names(data.get("hiddenSet")),
        text_filter=data.get("textFilter") if isinstance(data.get("textFilter"), str) else "",
        color_filter=_as_color(data.get("colorFilter")),
    )


def _as_size(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return 1.0


def _as_direction(value: Any) -> Direction:
    try:
        return Direction(value)
    except ValueError:
        return Direction.VERTICAL


def _as_color(value: Any) -> Optional[ColorClass]:
    if value is None:
        return None
    try:
        return ColorClass(value)
    except ValueError:
        return None


def _as_names(value: Any) -> set:
    if not isinstance(value, list):
        return set()
    return {item for item in value if isinstance(item, str)}
