"""Event Watcher - polls a contract for finalized events and notifies listeners.

Rules:
- One polling loop per watcher; cycles never overlap
- Only blocks at or below ``head - finality_depth`` are ever fetched
- Per-event checks in a cycle run concurrently and are joined
- Events are marked seen BEFORE listeners run (no duplicate delivery;
  a crash in between loses that delivery)
- The per-event cursor is advanced to the cutoff only after the batch is
  persisted and dispatched; any failure before that leaves it untouched,
  so the next cycle retries the same range

Failure handling:
- Node unreachable   -> skip cycle, retry next interval
- Malformed log      -> MalformedEventError escapes the event check
- Listener raises    -> ListenerError logged, siblings still run
- Store write fails  -> StoreWriteError escapes the cycle, loop keeps going

Known gap: listeners have no timeout.  A listener that never returns
stalls the whole loop.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import logging
import threading
from enum import Enum
from typing import Any, Iterable, Optional

from chainwatch.chain.client import ChainClient, ConnectivityError
from chainwatch.events.canonical import CanonicalEvent, canonicalize
from chainwatch.store.sync_store import SyncStore
from chainwatch.watcher.registry import Listener, SubscriptionRegistry

logger = logging.getLogger(__name__)

DEFAULT_FINALITY_DEPTH = 12
DEFAULT_EVENT_POLL_INTERVAL_MS = 15000

# Watcher whose poll task (or a task it spawned) is currently running.
_polling_watcher: contextvars.ContextVar[Optional["EventWatcher"]] = contextvars.ContextVar(
    "chainwatch_polling_watcher", default=None,
)


class WatcherState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


_STATE_GAUGE = {WatcherState.IDLE: 0, WatcherState.RUNNING: 1, WatcherState.STOPPED: 2}


class ListenerError(Exception):
    """A subscriber callback raised while handling a batch."""

    def __init__(self, event_name: str, listener: Listener, original: BaseException):
        self.event_name = event_name
        self.listener = listener
        self.original = original
        super().__init__(
            f"Listener {_listener_name(listener)} failed on {event_name} events: {original!r}"
        )


class EventWatcher:
    """Watches contract events and delivers each new one once.

    Args:
        chain: Chain client (block height, logs, connectivity, address).
        store: Sync Store holding cursors and the seen-event set.
        finality_depth: Blocks behind head that are still considered
            reorg-prone and never processed.
        event_poll_interval: Milliseconds between the end of one cycle and
            the start of the next.
        metrics: Optional ``MetricsCollector`` for Prometheus export.
    """

    def __init__(
        self,
        chain: ChainClient,
        store: SyncStore,
        finality_depth: int = DEFAULT_FINALITY_DEPTH,
        event_poll_interval: int = DEFAULT_EVENT_POLL_INTERVAL_MS,
        metrics=None,
    ):
        if finality_depth < 0:
            raise ValueError("finality_depth must be >= 0")
        if event_poll_interval <= 0:
            raise ValueError("event_poll_interval must be > 0")

        self._chain = chain
        self._store = store
        self._finality_depth = finality_depth
        self._poll_interval_ms = event_poll_interval
        self._metrics = metrics

        self._registry = SubscriptionRegistry()
        self._state = WatcherState.IDLE
        self._state_lock = threading.Lock()
        self._started = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        # Metrics
        self._cycles_completed = 0
        self._cycles_skipped = 0
        self._cycles_failed = 0
        self._events_dispatched = 0
        self._listener_errors = 0
        self._last_cutoff: Optional[int] = None

    @classmethod
    def from_settings(cls, chain: ChainClient, store: SyncStore, settings, metrics=None) -> EventWatcher:
        return cls(
            chain,
            store,
            finality_depth=settings.finality_depth,
            event_poll_interval=settings.event_poll_interval,
            metrics=metrics,
        )

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def finality_depth(self) -> int:
        return self._finality_depth

    # ------------------------------------------------------------------
    # Service lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Mark the service started and begin polling."""
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        with self._state_lock:
            self._started = True
            if self._state is WatcherState.STOPPED:
                self._state = WatcherState.IDLE
        logger.info(
            "Event watcher starting (finality_depth=%d, poll_interval=%dms)",
            self._finality_depth, self._poll_interval_ms,
        )
        self.start_polling()
        # Let the scheduled spawn run so the task exists once start() returns.
        await asyncio.sleep(0)

    async def stop(self):
        """Stop polling.  Waits for the in-flight cycle to finish.

        Called from a listener, it returns without waiting: the current
        cycle runs to completion and the loop exits after it.
        """
        with self._state_lock:
            self._started = False
            self._state = WatcherState.STOPPED
        self._set_state_gauge()
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            if _polling_watcher.get() is not self:
                await self._task
            self._task = None
        self._registry.clear()
        logger.info("Event watcher stopped")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, event_name: str, listener: Listener) -> None:
        """Register *listener* for *event_name* and make sure polling runs."""
        self._registry.add(event_name, listener)
        logger.info("Subscribed %s to %s events", _listener_name(listener), event_name)
        self.start_polling()

    def unsubscribe(self, event_name: str, listener: Listener) -> None:
        """Remove *listener*.  The event goes inactive once no listeners remain."""
        self._registry.remove(event_name, listener)
        if not self._registry.is_active(event_name):
            logger.info("No listeners left for %s, no longer polling it", event_name)

    def start_polling(self) -> None:
        """Start the polling loop.  Only the first call after start() has any effect.

        Callable from any thread; the task is always created on the loop
        that ran start().
        """
        with self._state_lock:
            if self._state is not WatcherState.IDLE:
                return
            if not self._started:
                logger.debug("Polling deferred until the watcher is started")
                return
            self._state = WatcherState.RUNNING

        self._set_state_gauge()
        self._loop.call_soon_threadsafe(self._spawn_poll_task)

    def _spawn_poll_task(self) -> None:
        self._task = self._loop.create_task(self._poll_loop(), name="event-watcher")

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def _poll_loop(self):
        """Run cycles until stopped.  The stop flag is checked between cycles only."""
        _polling_watcher.set(self)
        while self._state is WatcherState.RUNNING:
            try:
                await self.check_events()
            except Exception as e:
                self._cycles_failed += 1
                self._count_cycle("error")
                logger.exception(f"Event check cycle failed: {e}")
            await self._sleep_interval()

        logger.info("Stopped watching for events")

    async def _sleep_interval(self):
        try:
            await asyncio.wait_for(
                self._stop_event.wait(), timeout=self._poll_interval_ms / 1000,
            )
        except asyncio.TimeoutError:
            pass

    def compute_cutoff(self, current_block: int) -> int:
        """Highest block treated as final for a given chain head."""
        return max(0, current_block - self._finality_depth)

    async def check_events(self) -> bool:
        """Run one cycle.  Returns False when the cycle was skipped.

        Checks only events that currently have listeners, and only once the
        contract address is known.
        """
        if not await self._chain.connected():
            self._skip_cycle("Could not connect to the chain node")
            return False

        try:
            block = await self._chain.current_block_number()
        except ConnectivityError as e:
            self._skip_cycle(str(e))
            return False

        cutoff = self.compute_cutoff(block)
        self._last_cutoff = cutoff
        if self._metrics is not None:
            self._metrics.chain_head.set(block)
            self._metrics.cutoff_block.set(cutoff)

        event_names = self._registry.active_events() if self._chain.has_address else []
        results = await asyncio.gather(
            *(self.check_event(name, cutoff) for name in event_names),
            return_exceptions=True,
        )

        failures = [
            (name, result)
            for name, result in zip(event_names, results)
            if isinstance(result, BaseException)
        ]
        for name, exc in failures:
            logger.error("Checking %s events failed: %r", name, exc)
        if failures:
            raise failures[0][1]

        self._cycles_completed += 1
        self._count_cycle("ok")
        return True

    async def check_event(self, event_name: str, cutoff: int) -> list[CanonicalEvent]:
        """Check one event up to *cutoff* and notify its listeners.

        Returns the batch that was delivered (empty if nothing new).
        """
        last_logged = await self._store.get_last_logged_event_block(event_name)
        first_unsynced = last_logged + 1
        if first_unsynced > cutoff:
            return []

        logger.info(
            "Checking for new %s events between blocks %d and %d",
            event_name, first_unsynced, cutoff,
        )
        raw_events = await self._chain.get_past_events(event_name, first_unsynced, cutoff)
        events = await self.get_unique_events(raw_events)

        beyond = [e for e in events if e.block_number > cutoff]
        if beyond:
            logger.warning(
                "Chain client returned %d %s events past cutoff %d, ignoring them",
                len(beyond), event_name, cutoff,
            )
            events = [e for e in events if e.block_number <= cutoff]

        if events:
            # Seen before notify: favours no duplicates over no misses.
            await self._store.add_events(events)
            await self._notify(event_name, events)

        await self._store.set_last_logged_event_block(event_name, cutoff)
        if self._metrics is not None:
            self._metrics.event_cursor.labels(event=event_name).set(cutoff)
        return events

    async def get_unique_events(self, raw_events: Iterable[Any]) -> list[CanonicalEvent]:
        """Canonicalize *raw_events* and drop any already seen.

        Duplicates inside the batch collapse to their first occurrence.
        """
        unique: dict[str, CanonicalEvent] = {}
        for raw in raw_events:
            event = canonicalize(raw)
            unique.setdefault(event.hash, event)

        candidates = list(unique.values())
        seen = await asyncio.gather(*(self._store.has_event(e) for e in candidates))
        return [event for event, was_seen in zip(candidates, seen) if not was_seen]

    async def _notify(self, event_name: str, events: list[CanonicalEvent]):
        """Call every listener in registration order; one failure never stops the rest."""
        for listener in self._registry.listeners(event_name):
            try:
                result = listener(list(events))
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                err = ListenerError(event_name, listener, exc)
                self._listener_errors += 1
                if self._metrics is not None:
                    self._metrics.listener_errors.labels(event=event_name).inc()
                logger.error("%s", err, exc_info=exc)

        self._events_dispatched += len(events)
        if self._metrics is not None:
            self._metrics.events_dispatched.labels(event=event_name).inc(len(events))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _skip_cycle(self, reason: str):
        self._cycles_skipped += 1
        self._count_cycle("skipped")
        logger.error(f"Skipping event check cycle: {reason}")

    def _count_cycle(self, outcome: str):
        if self._metrics is not None:
            self._metrics.poll_cycles.labels(outcome=outcome).inc()

    def _set_state_gauge(self):
        if self._metrics is not None:
            self._metrics.watcher_state.set(_STATE_GAUGE[self._state])

    def get_metrics(self) -> dict:
        return {
            "state": self._state.value,
            "active_events": self._registry.active_events(),
            "cycles_completed": self._cycles_completed,
            "cycles_skipped": self._cycles_skipped,
            "cycles_failed": self._cycles_failed,
            "events_dispatched": self._events_dispatched,
            "listener_errors": self._listener_errors,
            "last_cutoff": self._last_cutoff,
        }


def _listener_name(listener: Listener) -> str:
    return getattr(listener, "__qualname__", repr(listener))
