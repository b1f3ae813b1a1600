"""Bounded event logs.

The engine keeps one shared log (diagnostics for every agent) plus one
history per agent; the last few history lines are fed back to the oracle as
"recent events". Logs drop their oldest entry once full.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from .schemas import EventEntry, EventKind


EventListener = Callable[[List[EventEntry]], None]


class EventLog:
    """Fixed-size, append-only log with change listeners."""

    def __init__(self, max_entries: int = 50) -> None:
        self.max_entries = max(1, max_entries)
        self._entries: Deque[EventEntry] = deque(maxlen=self.max_entries)
        self._listeners: List[EventListener] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[EventEntry]:
        return list(self._entries)

    def add(self, entry: EventEntry) -> EventEntry:
        self._entries.append(entry)
        self._notify()
        return entry

    def record(
        self,
        kind: EventKind,
        message: str,
        *,
        tick: int = 0,
        actor_id: Optional[str] = None,
        target_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> EventEntry:
        """Build and append an entry in one call."""

        entry = EventEntry(
            tick=tick,
            actor_id=actor_id,
            kind=kind,
            message=message,
            target_id=target_id,
            data=data or {},
        )
        return self.add(entry)

    def recent(self, limit: int) -> List[EventEntry]:
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]

    def of_kind(self, kind: EventKind) -> List[EventEntry]:
        return [entry for entry in self._entries if entry.kind == kind]

    def on_change(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def clear(self) -> None:
        self._entries.clear()
        self._notify()

    def _notify(self) -> None:
        # Listeners get a copy so they cannot mutate the log.
        snapshot = list(self._entries)
        for listener in self._listeners:
            listener(snapshot)


__all__ = ["EventLog", "EventListener"]
