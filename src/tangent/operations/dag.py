"""Tree utilities for Tangent -- children index and descendant closure.

These utilities operate on (thread_id, parent_thread_id) pairs already
loaded in one bulk query, so a closure over a deep tree costs one round
trip instead of one query per level.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator


def build_children_index(
    links: Iterable[tuple[str, str | None]],
) -> dict[str, list[str]]:
    """Build a parent -> [children] adjacency map.

    Children keep the order in which they appear in *links*.
    Roots (parent None) are not indexed.
    """
    children: dict[str, list[str]] = {}
    for node_id, parent_id in links:
        if parent_id is None:
            continue
        children.setdefault(parent_id, []).append(node_id)
    return children


def _bfs_walk(start: str, children: dict[str, list[str]]) -> Iterator[str]:
    """BFS walk from a start id, yielding each visited id once."""
    visited: set[str] = set()
    queue: deque[str] = deque([start])
    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        yield current
        for child in children.get(current, ()):
            if child not in visited:
                queue.append(child)


def descendant_closure(
    start: str,
    links: Iterable[tuple[str, str | None]],
    *,
    include_start: bool = True,
) -> list[str]:
    """Return *start* plus every id reachable through parent pointers.

    Args:
        start: The subtree root.
        links: (id, parent_id) pairs for the candidate nodes.
        include_start: Whether *start* itself is part of the result.

    Returns:
        Ids in breadth-first order (start first when included).
    """
    closure = list(_bfs_walk(start, build_children_index(links)))
    if not include_start:
        closure = closure[1:]
    return closure
