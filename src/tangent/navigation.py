"""Client-side tangent navigation as a pure reducer.

The navigator mirrors which tangents are open, which child is selected
under each parent, and which thread is shown in the left panel. The right
panel shows ``active_child_by_parent[view_parent_id]`` when set.

All transitions go through :func:`reduce`, a pure ``(state, action) ->
state`` function. :class:`TangentNavigator` is a small holder that
applies one action at a time. The server stays the source of truth: call
``hydrate()`` with :func:`reconstruct_tangent_windows` output to resync.

Two invariants hold after every action:

* every value in ``active_child_by_parent`` is an open tangent whose
  parent is the corresponding key;
* ``view_parent_id`` is :data:`ROOT` or an open tangent id.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Iterable, Union

from tangent.models.thread import ThreadStatus

if TYPE_CHECKING:
    from tangent.models.thread import ThreadInfo

ROOT = "main"
"""Sentinel parent id standing for the conversation's main thread."""


@dataclass(frozen=True)
class TangentWindow:
    """One open tangent as the navigator sees it."""

    thread_id: str
    parent_thread_id: str
    parent_message_id: str = ""
    highlighted_text: str = ""
    depth: int = 1


@dataclass(frozen=True)
class NavigationState:
    conversation_id: str | None = None
    open_tangents: tuple[TangentWindow, ...] = ()
    active_child_by_parent: dict[str, str] = field(default_factory=dict)
    view_parent_id: str = ROOT

    @property
    def open_ids(self) -> list[str]:
        return [t.thread_id for t in self.open_tangents]

    @property
    def right_panel_id(self) -> str | None:
        """Thread shown in the right panel, if any."""
        return self.active_child_by_parent.get(self.view_parent_id)

    def find(self, thread_id: str) -> TangentWindow | None:
        for tangent in self.open_tangents:
            if tangent.thread_id == thread_id:
                return tangent
        return None

    def children_of(self, parent_id: str) -> list[TangentWindow]:
        return [t for t in self.open_tangents if t.parent_thread_id == parent_id]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Hydrate:
    conversation_id: str | None
    tangents: tuple[TangentWindow, ...]


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class Open:
    tangent: TangentWindow


@dataclass(frozen=True)
class Close:
    thread_id: str


@dataclass(frozen=True)
class NavigateTo:
    parent_id: str


@dataclass(frozen=True)
class SetActiveChild:
    parent_id: str
    child_id: str


Action = Union[Hydrate, Reset, Open, Close, NavigateTo, SetActiveChild]


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


def _resolvable(tangents: Iterable[TangentWindow]) -> list[TangentWindow]:
    """Deduplicate by id (last wins) and drop tangents not rooted at ROOT."""
    by_id: dict[str, TangentWindow] = {}
    for tangent in tangents:
        by_id.pop(tangent.thread_id, None)
        by_id[tangent.thread_id] = tangent

    def rooted(tangent: TangentWindow) -> bool:
        seen: set[str] = set()
        current = tangent
        while current.parent_thread_id != ROOT:
            if current.thread_id in seen:
                return False
            seen.add(current.thread_id)
            parent = by_id.get(current.parent_thread_id)
            if parent is None:
                return False
            current = parent
        return True

    return [t for t in by_id.values() if rooted(t)]


def _hydrate(action: Hydrate) -> NavigationState:
    tangents = _resolvable(action.tangents)
    active: dict[str, str] = {}
    for tangent in tangents:
        active[tangent.parent_thread_id] = tangent.thread_id
    return NavigationState(
        conversation_id=action.conversation_id,
        open_tangents=tuple(tangents),
        active_child_by_parent=active,
        view_parent_id=ROOT,
    )


def _subtree(state: NavigationState, thread_id: str) -> set[str]:
    removed: set[str] = set()
    queue = deque([thread_id])
    while queue:
        current = queue.popleft()
        if current in removed:
            continue
        removed.add(current)
        queue.extend(t.thread_id for t in state.children_of(current))
    return removed


def _open(state: NavigationState, action: Open) -> NavigationState:
    tangent = action.tangent
    parent = tangent.parent_thread_id
    if parent != ROOT and state.find(parent) is None:
        return state
    # Re-parenting under its own subtree would orphan it from ROOT
    if parent in _subtree(state, tangent.thread_id):
        return state

    remaining = tuple(t for t in state.open_tangents if t.thread_id != tangent.thread_id)
    open_tangents = remaining + (tangent,)

    active = dict(state.active_child_by_parent)
    for key, child in list(active.items()):
        if child == tangent.thread_id and key != parent:
            # Stale entry from a previous parent
            sibling = next(
                (t.thread_id for t in remaining if t.parent_thread_id == key), None
            )
            if sibling is None:
                del active[key]
            else:
                active[key] = sibling
    active[parent] = tangent.thread_id

    return replace(
        state,
        open_tangents=open_tangents,
        active_child_by_parent=active,
        view_parent_id=parent,
    )


def _close(state: NavigationState, action: Close) -> NavigationState:
    removed = _subtree(state, action.thread_id)
    survivors = tuple(t for t in state.open_tangents if t.thread_id not in removed)

    active: dict[str, str] = {}
    for parent_id, child_id in state.active_child_by_parent.items():
        if parent_id in removed:
            continue
        if child_id in removed:
            sibling = next(
                (t.thread_id for t in survivors if t.parent_thread_id == parent_id),
                None,
            )
            if sibling is not None:
                active[parent_id] = sibling
        else:
            active[parent_id] = child_id

    view = state.view_parent_id
    seen: set[str] = set()
    while view != ROOT and view in removed:
        if view in seen:
            view = ROOT
            break
        seen.add(view)
        node = state.find(view)
        view = node.parent_thread_id if node is not None else ROOT

    # Collapse one level when the right panel has nothing left to show
    if view != ROOT and view not in active:
        node = next((t for t in survivors if t.thread_id == view), None)
        view = node.parent_thread_id if node is not None else ROOT

    return replace(
        state,
        open_tangents=survivors,
        active_child_by_parent=active,
        view_parent_id=view,
    )


def _navigate_to(state: NavigationState, action: NavigateTo) -> NavigationState:
    if action.parent_id != ROOT and state.find(action.parent_id) is None:
        return state
    return replace(state, view_parent_id=action.parent_id)


def _set_active_child(state: NavigationState, action: SetActiveChild) -> NavigationState:
    child = state.find(action.child_id)
    if child is None or child.parent_thread_id != action.parent_id:
        return state
    active = dict(state.active_child_by_parent)
    active[action.parent_id] = action.child_id
    return replace(state, active_child_by_parent=active, view_parent_id=action.parent_id)


def reduce(state: NavigationState, action: Action) -> NavigationState:
    """Apply one action and return the next state. *state* is not mutated.

    Actions that would break an invariant (navigating to an unknown id,
    selecting a child under the wrong parent, opening beneath a thread
    that is not open) leave the state unchanged.
    """
    if isinstance(action, Hydrate):
        return _hydrate(action)
    if isinstance(action, Reset):
        return NavigationState()
    if isinstance(action, Open):
        return _open(state, action)
    if isinstance(action, Close):
        return _close(state, action)
    if isinstance(action, NavigateTo):
        return _navigate_to(state, action)
    if isinstance(action, SetActiveChild):
        return _set_active_child(state, action)
    raise TypeError(f"Unknown navigation action: {action!r}")


def check_invariants(state: NavigationState) -> list[str]:
    """Return a description of every violated invariant (empty when sound)."""
    problems: list[str] = []
    by_id = {t.thread_id: t for t in state.open_tangents}
    if len(by_id) != len(state.open_tangents):
        problems.append("duplicate tangent ids in open_tangents")
    for parent_id, child_id in state.active_child_by_parent.items():
        child = by_id.get(child_id)
        if child is None:
            problems.append(f"active child {child_id} of {parent_id} is not open")
        elif child.parent_thread_id != parent_id:
            problems.append(
                f"active child {child_id} is under {child.parent_thread_id}, not {parent_id}"
            )
    if state.view_parent_id != ROOT and state.view_parent_id not in by_id:
        problems.append(f"view parent {state.view_parent_id} is not open")
    return problems


class TangentNavigator:
    """Holds a NavigationState and applies actions one at a time."""

    def __init__(self, state: NavigationState | None = None) -> None:
        self._state = state or NavigationState()
        self._lock = threading.Lock()

    @property
    def state(self) -> NavigationState:
        return self._state

    def dispatch(self, action: Action) -> NavigationState:
        with self._lock:
            self._state = reduce(self._state, action)
            return self._state

    def hydrate(
        self, conversation_id: str | None, tangents: Iterable[TangentWindow]
    ) -> NavigationState:
        return self.dispatch(Hydrate(conversation_id, tuple(tangents)))

    def reset(self) -> NavigationState:
        return self.dispatch(Reset())

    def open(self, tangent: TangentWindow) -> NavigationState:
        return self.dispatch(Open(tangent))

    def close(self, thread_id: str) -> NavigationState:
        return self.dispatch(Close(thread_id))

    def navigate_to(self, parent_id: str) -> NavigationState:
        return self.dispatch(NavigateTo(parent_id))

    def set_active_child(self, parent_id: str, child_id: str) -> NavigationState:
        return self.dispatch(SetActiveChild(parent_id, child_id))


def reconstruct_tangent_windows(
    threads: Iterable[ThreadInfo],
    main_thread_id: str,
) -> list[TangentWindow]:
    """Build a Hydrate snapshot from a conversation's threads.

    Keeps ACTIVE tangents whose every ancestor up to the main thread is
    also ACTIVE, in input order (callers pass creation order). The main
    thread's id is replaced by :data:`ROOT`.
    """
    candidates = [
        t for t in threads
        if t.parent_thread_id is not None and t.status == ThreadStatus.ACTIVE
    ]
    active_by_id = {t.thread_id: t for t in candidates}

    windows: list[TangentWindow] = []
    for thread in candidates:
        current = thread
        seen: set[str] = set()
        valid = True
        while current.parent_thread_id is not None and current.parent_thread_id != main_thread_id:
            if current.thread_id in seen:
                valid = False
                break
            seen.add(current.thread_id)
            parent = active_by_id.get(current.parent_thread_id)
            if parent is None:
                valid = False
                break
            current = parent
        if not valid:
            continue
        windows.append(
            TangentWindow(
                thread_id=thread.thread_id,
                parent_thread_id=(
                    ROOT if thread.parent_thread_id == main_thread_id else thread.parent_thread_id
                ),
                parent_message_id=thread.parent_message_id or "",
                highlighted_text=thread.highlighted_text or "",
                depth=thread.depth,
            )
        )
    return windows
