"""In-process mutual exclusion per ``employee_id:month`` key."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from commission_desk.errors import ConcurrentRecalculationError


class _KeyState:
    __slots__ = ("held", "users", "released")

    def __init__(self, guard: threading.Lock) -> None:
        self.held = False
        self.users = 0
        self.released = threading.Condition(guard)


class KeyedLockRegistry:
    """Tracks one holder per key; entries are dropped once nobody holds or waits.

    Waiters block on a condition and never take the key themselves, so a
    waiter waking up cannot make a new ``hold`` fail.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._states: dict[str, _KeyState] = {}

    def _checkout(self, key: str) -> _KeyState:
        state = self._states.get(key)
        if state is None:
            state = self._states[key] = _KeyState(self._guard)
        state.users += 1
        return state

    def _checkin(self, key: str, state: _KeyState) -> None:
        state.users -= 1
        if state.users <= 0 and not state.held:
            self._states.pop(key, None)

    def is_locked(self, key: str) -> bool:
        with self._guard:
            state = self._states.get(key)
            return state is not None and state.held

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold ``key`` or fail immediately when another caller already does."""

        with self._guard:
            current = self._states.get(key)
            if current is not None and current.held:
                raise ConcurrentRecalculationError(f"A recalculation for {key} is already running.")
            state = self._checkout(key)
            state.held = True
        try:
            yield
        finally:
            with self._guard:
                state.held = False
                state.released.notify_all()
                self._checkin(key, state)

    def wait(self, key: str, timeout: float) -> bool:
        """Block until nobody holds ``key``; False on timeout."""

        with self._guard:
            state = self._states.get(key)
            if state is None or not state.held:
                return True
            state.users += 1
            try:
                return state.released.wait_for(lambda: not state.held, timeout=max(timeout, 0))
            finally:
                self._checkin(key, state)


recalculation_locks = KeyedLockRegistry()
