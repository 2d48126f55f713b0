"""Subscription registry: event name -> active flag + ordered listeners.

Writers (subscribe/unsubscribe) may run on any thread while the polling
loop reads, so every access goes through one lock and reads hand out
copies.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable

Listener = Callable[[list], Any]


@dataclass
class Subscription:
    listeners: list[Listener] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return len(self.listeners) > 0


class SubscriptionRegistry:
    """Thread-safe mapping of event names to their listeners."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, Subscription] = {}

    def add(self, event_name: str, listener: Listener) -> None:
        with self._lock:
            sub = self._subscriptions.setdefault(event_name, Subscription())
            sub.listeners.append(listener)

    def remove(self, event_name: str, listener: Listener) -> None:
        """Drop *listener*.  Unknown events or listeners are ignored."""
        with self._lock:
            sub = self._subscriptions.get(event_name)
            if sub is None:
                return
            sub.listeners = [l for l in sub.listeners if l != listener]

    def is_active(self, event_name: str) -> bool:
        with self._lock:
            sub = self._subscriptions.get(event_name)
            return sub is not None and sub.active

    def active_events(self) -> list[str]:
        with self._lock:
            return [name for name, sub in self._subscriptions.items() if sub.active]

    def listeners(self, event_name: str) -> list[Listener]:
        with self._lock:
            sub = self._subscriptions.get(event_name)
            return list(sub.listeners) if sub is not None else []

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()
