from __future__ import annotations

import threading
from typing import Dict, Mapping, Optional

from scroll_harvester.core.errors import InvalidEntityError
from scroll_harvester.core.models import ScrollState


class PaginationStateStore:
    """
    Keyed holder of every entity's ScrollState for the duration of a run.

    States are created lazily and never deleted. The host owns the store,
    passes it to components by reference and checkpoints it through a
    StatePersistence backend. Each entity id gets its own lock so that one
    worker at a time can own an entity while other entities proceed.
    """

    def __init__(self, states: Optional[Mapping[str, ScrollState]] = None):
        self._states: Dict[str, ScrollState] = {}
        self._entity_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        if states:
            self.restore(states)

    def get_or_create(self, entity_id: str) -> ScrollState:
        key = self._key(entity_id)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = ScrollState()
                self._states[key] = state
            return state

    def lock_for(self, entity_id: str) -> threading.Lock:
        key = self._key(entity_id)
        with self._lock:
            lock = self._entity_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._entity_locks[key] = lock
            return lock

    def snapshot(self) -> Dict[str, ScrollState]:
        """Detached copy of every state, safe to hand to a persistence backend."""
        with self._lock:
            items = list(self._states.items())
        return {key: state.copy() for key, state in items}

    def restore(self, states: Mapping[str, ScrollState]) -> None:
        """Rehydrate states loaded from persistence, replacing in-memory ones."""
        with self._lock:
            for entity_id, state in states.items():
                self._states[self._key(entity_id)] = state.copy()

    def __contains__(self, entity_id: object) -> bool:
        with self._lock:
            return entity_id in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def _key(self, entity_id: object) -> str:
        if entity_id is None:
            raise InvalidEntityError(entity_id)
        key = str(entity_id).strip()
        if not key:
            raise InvalidEntityError(entity_id)
        return key
