"""
Registry of resources created during a run.

Scenario lanes append the identifier of every resource they create; the
cleanup coordinator drains the registry after the run.  Entries are
never removed or re-added, they only move from ``pending`` to one of
the two terminal states.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any


class EntryState(str, Enum):
    """Lifecycle state of a registered resource."""

    PENDING = "pending"
    DELETED = "deleted"
    DELETE_FAILED = "delete-failed"


@dataclass(frozen=True)
class RegistryEntry:
    """Point-in-time view of one registered resource."""

    index: int
    resource_id: Any
    state: EntryState


class ResourceRegistry:
    """Append-only, thread-safe list of created-resource identifiers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: list[Any] = []
        self._states: list[EntryState] = []

    def add(self, resource_id: Any) -> int:
        """Register *resource_id* as pending cleanup and return its index."""
        with self._lock:
            self._ids.append(resource_id)
            self._states.append(EntryState.PENDING)
            return len(self._ids) - 1

    def mark(self, index: int, state: EntryState) -> None:
        """
        Move entry *index* to a terminal state.

        Raises:
            ValueError: If *state* is ``PENDING`` or the entry has
                already left the pending state.
        """
        if state is EntryState.PENDING:
            raise ValueError("Entries cannot be moved back to pending")
        with self._lock:
            current = self._states[index]
            if current is not EntryState.PENDING:
                raise ValueError(
                    f"Entry {index} already {current.value}, cannot mark {state.value}"
                )
            self._states[index] = state

    def entries(self) -> list[RegistryEntry]:
        with self._lock:
            return [
                RegistryEntry(index, resource_id, state)
                for index, (resource_id, state) in enumerate(zip(self._ids, self._states))
            ]

    def pending(self) -> list[RegistryEntry]:
        return [entry for entry in self.entries() if entry.state is EntryState.PENDING]

    def count(self, state: EntryState) -> int:
        with self._lock:
            return sum(1 for current in self._states if current is state)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
