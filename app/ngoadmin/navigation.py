"""
Section-visibility gate for the sidebar.

The gate takes the static menu tree and the current user's section
predicate and returns the pruned, render-ready tree:

- a leaf survives only if its section key is permitted;
- a parent survives only if at least one child survives, and carries the
  filtered children;
- declared order is kept.

Until the permission set has been resolved the gate yields ``None`` so the
template renders a loading placeholder instead of a partial or open menu.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from enum import Enum

logger = logging.getLogger(__name__)

SectionPredicate = Callable[[str], bool]
DataLookup = Callable[[str], bool]


@dataclass(frozen=True)
class MenuItem:
    id: str
    title: str
    icon: str | None = None
    children: tuple["MenuItem", ...] | None = None
    requires_data: bool = False
    # Filled in by annotate_availability(); the gate itself never looks at data.
    has_data: bool = True

    @property
    def is_parent(self) -> bool:
        return self.children is not None

    @property
    def is_enabled(self) -> bool:
        return not self.requires_data or self.has_data


def prune_menu(items: Sequence[MenuItem], can_view: SectionPredicate) -> list[MenuItem]:
    """Pure filter over the menu tree; tolerates any nesting depth."""
    pruned: list[MenuItem] = []
    for item in items:
        if item.is_parent:
            kept = prune_menu(item.children or (), can_view)
            if kept:
                pruned.append(replace(item, children=tuple(kept)))
        elif can_view(item.id):
            pruned.append(item)
    return pruned


def annotate_availability(items: Sequence[MenuItem], has_data: DataLookup) -> list[MenuItem]:
    """
    Mark requires_data leaves with whether their dataset is non-empty.
    Structure and order are untouched; nothing is removed.
    """
    out: list[MenuItem] = []
    for item in items:
        if item.is_parent:
            out.append(replace(item, children=tuple(annotate_availability(item.children or (), has_data))))
        elif item.requires_data:
            out.append(replace(item, has_data=bool(has_data(item.id))))
        else:
            out.append(item)
    return out


def leaf_keys(items: Sequence[MenuItem]) -> list[str]:
    keys: list[str] = []
    for item in items:
        if item.is_parent:
            keys.extend(leaf_keys(item.children or ()))
        else:
            keys.append(item.id)
    return keys


def parent_chain(items: Sequence[MenuItem], key: str) -> list[str]:
    """Ids of the parents enclosing ``key`` (outermost first); empty if top-level or absent."""
    for item in items:
        if not item.is_parent:
            continue
        if any(not c.is_parent and c.id == key for c in item.children or ()):
            return [item.id]
        inner = parent_chain(item.children or (), key)
        if inner:
            return [item.id, *inner]
    return []


class GateState(str, Enum):
    LOADING = "loading"
    READY = "ready"


class NavigationGate:
    """
    Holds the static tree and, once resolved, the permission predicate.

    ``loading -> ready`` happens at most once; a second ``resolve`` is ignored.
    """

    def __init__(self, menu: Sequence[MenuItem], *, active_section: str | None = None) -> None:
        self._menu = tuple(menu)
        self._state = GateState.LOADING
        self._can_view: SectionPredicate | None = None
        self._has_data: DataLookup | None = None
        self._rendered: list[MenuItem] | None = None
        self.active_section = active_section

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is GateState.READY

    def resolve(self, can_view: SectionPredicate, *, has_data: DataLookup | None = None) -> None:
        if self._state is GateState.READY:
            logger.warning("NavigationGate.resolve called twice; keeping the first permission set")
            return
        self._can_view = can_view
        self._has_data = has_data
        self._state = GateState.READY

    def render(self) -> list[MenuItem] | None:
        """Pruned tree, or None while loading. Computed once; every template of the request shares it."""
        if self._state is not GateState.READY or self._can_view is None:
            return None
        if self._rendered is None:
            pruned = prune_menu(self._menu, self._can_view)
            if self._has_data is not None:
                pruned = annotate_availability(pruned, self._has_data)
            self._rendered = pruned
        return list(self._rendered)

    def expanded_parents(self) -> list[str]:
        if not self.active_section:
            return []
        return parent_chain(self._menu, self.active_section)
