"""chainwatch -- Polling loop, subscriptions and dispatch."""

from chainwatch.watcher.event_watcher import (
    DEFAULT_EVENT_POLL_INTERVAL_MS,
    DEFAULT_FINALITY_DEPTH,
    EventWatcher,
    ListenerError,
    WatcherState,
)
from chainwatch.watcher.registry import Subscription, SubscriptionRegistry

__all__ = [
    "EventWatcher",
    "ListenerError",
    "WatcherState",
    "DEFAULT_FINALITY_DEPTH",
    "DEFAULT_EVENT_POLL_INTERVAL_MS",
    "Subscription",
    "SubscriptionRegistry",
]
