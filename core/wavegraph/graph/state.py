"""
Run state: the shared key/value record a graph run accumulates.

Only the scheduler writes to it. Nodes in a frontier all see the same
read-only snapshot taken before the frontier starts, and their partial
updates are merged after the barrier join, in frontier order.

Sibling writes to the same key are resolved by a conflict strategy:

- last_wins: later frontier members overwrite earlier ones (default)
- first_wins: the first frontier member to write a key keeps it
- error: raise StateConflictError
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from wavegraph.errors import StateConflictError

logger = logging.getLogger(__name__)


class ConflictStrategy(StrEnum):
    """How to merge sibling writes to the same key."""

    LAST_WINS = "last_wins"
    FIRST_WINS = "first_wins"
    ERROR = "error"


def snapshot(state: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return a read-only shallow copy of ``state``."""
    return MappingProxyType(dict(state))


def find_conflicts(updates: list[tuple[str, Mapping[str, Any]]]) -> dict[str, list[str]]:
    """
    Find keys written by more than one node.

    Args:
        updates: (node_name, partial_update) pairs in frontier order

    Returns:
        Dict mapping key -> names of every node that wrote it
    """
    writers: dict[str, list[str]] = {}
    for node_name, update in updates:
        for key in update:
            writers.setdefault(key, []).append(node_name)
    return {key: names for key, names in writers.items() if len(names) > 1}


def merge_updates(
    state: dict[str, Any],
    updates: list[tuple[str, Mapping[str, Any]]],
    strategy: ConflictStrategy | str = ConflictStrategy.LAST_WINS,
) -> dict[str, list[str]]:
    """
    Shallow-merge partial updates into ``state`` in place.

    Keys are added or overwritten, never removed. Conflicts are checked
    before anything is written, so the "error" strategy leaves ``state``
    untouched.

    Returns:
        The detected conflicts (key -> writer names), empty if none

    Raises:
        StateConflictError: strategy is "error" and two siblings wrote one key
    """
    strategy = ConflictStrategy(strategy)
    conflicts = find_conflicts(updates)

    if conflicts:
        if strategy == ConflictStrategy.ERROR:
            key, writers = next(iter(conflicts.items()))
            raise StateConflictError(key, writers)
        logger.warning(
            f"Sibling nodes wrote the same state keys, resolving with {strategy.value}: "
            f"{conflicts}"
        )

    written: set[str] = set()
    for _node_name, update in updates:
        for key, value in update.items():
            if strategy == ConflictStrategy.FIRST_WINS and key in written:
                continue
            state[key] = value
            written.add(key)

    return conflicts


@dataclass
class RunState:
    """Ephemeral bookkeeping for a single run."""

    state: dict[str, Any]
    frontier: list[str] = field(default_factory=list)
    step_count: int = 0
    path: list[list[str]] = field(default_factory=list)  # One frontier per superstep
    node_visit_counts: dict[str, int] = field(default_factory=dict)
    retry_details: dict[str, int] = field(default_factory=dict)  # {node_name: retries used}

    def record_frontier(self, frontier: list[str]) -> None:
        self.path.append(list(frontier))
        for name in frontier:
            self.node_visit_counts[name] = self.node_visit_counts.get(name, 0) + 1
