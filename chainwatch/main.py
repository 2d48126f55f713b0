"""chainwatch - Main Application Entry Point.

Wires the watcher together in build order:
1. Configuration + logging
2. Observability (metrics server)
3. Chain client (contract ABI, optional address)
4. Sync Store (opened once the contract address is known)
5. Event Watcher + one logging subscriber per configured event

Shutdown tears everything down in reverse.
"""

import asyncio
import json
import logging
import logging.config
import signal
from typing import Optional


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def setup_logging(log_level: str = "INFO", log_format: str = "json"):
    """Configure the root logger to write to stdout.

    ``log_format="json"`` emits one JSON object per line for log shippers;
    anything else gives plain ``time [LEVEL] logger: message`` lines.
    """
    if log_format == "json":
        formatter = {
            "class": "logging.Formatter",
            "format": json.dumps({
                "time": "%(asctime)s",
                "level": "%(levelname)s",
                "module": "%(name)s",
                "message": "%(message)s",
            }),
        }
    else:
        formatter = {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        }
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            }
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }
    logging.config.dictConfig(config)


logger = logging.getLogger(__name__)


def log_events(events):
    """Default subscriber: log each delivered event."""
    for event in events:
        logger.info(
            "Event %s at block %d: %s",
            event.event_name or "?", event.block_number, event.hash,
        )


# ---------------------------------------------------------------------------
# Application orchestrator
# ---------------------------------------------------------------------------

class ChainwatchApplication:
    """Owns the lifecycle of the chain client, Sync Store and watcher.

    Usage::

        app = ChainwatchApplication()
        await app.initialize()
        await app.run()        # blocks until shutdown signal
        await app.shutdown()
    """

    def __init__(self, settings=None):
        self._settings = settings
        self._chain = None
        self._backend = None
        self._store = None
        self._watcher = None
        self._open_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    async def initialize(self):
        """Build every component from settings."""
        # ---- 1. Load configuration ----------------------------------------
        from chainwatch.config.settings import get_settings

        if self._settings is None:
            self._settings = get_settings()
        setup_logging(self._settings.log_level, self._settings.log_format)

        logger.info("Instance: %s", self._settings.instance_id)
        logger.info("Environment: %s", self._settings.environment)
        logger.info("Watched events: %s", self._settings.watched_events)

        # ---- 2. Metrics ----------------------------------------------------
        metrics = None
        if self._settings.metrics_enabled:
            from chainwatch import __version__
            from chainwatch.observability.metrics import get_metrics

            metrics = get_metrics(self._settings.prometheus_port)
            metrics.start_server()
            metrics.set_build_info(
                __version__,
                self._settings.instance_id,
                self._settings.environment,
            )

        # ---- 3. Chain client ----------------------------------------------
        from chainwatch.chain.client import Web3ChainClient, load_abi

        self._chain = Web3ChainClient(
            rpc_url=self._settings.rpc_url,
            abi=load_abi(self._settings.contract_abi_path),
            address=self._settings.contract_address or None,
            request_timeout=self._settings.rpc_timeout_seconds,
        )
        if not self._chain.has_address:
            logger.warning("Contract address not configured, waiting for it to be set")

        # ---- 4. Sync Store -------------------------------------------------
        from chainwatch.store.backends import create_store
        from chainwatch.store.sync_store import SyncStore

        self._backend = create_store(self._settings)
        self._store = SyncStore(self._backend)
        logger.info("Sync store backend: %s", self._settings.store_backend)

        # ---- 5. Event Watcher ---------------------------------------------
        from chainwatch.watcher.event_watcher import EventWatcher

        self._watcher = EventWatcher.from_settings(
            self._chain, self._store, self._settings, metrics=metrics,
        )
        logger.info("All components initialized")

    async def run(self):
        """Open the store, start watching and block until shutdown signal."""
        self._open_task = asyncio.create_task(
            self._store.open_when_ready(self._chain), name="syncstore-open",
        )
        shutdown_wait = asyncio.create_task(self._shutdown_event.wait())

        # The address may never resolve; a shutdown signal must still get through.
        done, _ = await asyncio.wait(
            {self._open_task, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED,
        )
        if self._open_task not in done:
            return
        self._open_task.result()

        await self._watcher.start()
        for event_name in self._settings.watched_events:
            self._watcher.subscribe(event_name, log_events)

        logger.info("chainwatch running for contract %s", self._chain.address)
        await shutdown_wait

    def request_shutdown(self):
        self._shutdown_event.set()

    async def shutdown(self):
        """Graceful shutdown in reverse order."""
        logger.info("Shutting down chainwatch...")

        if self._watcher is not None:
            try:
                await self._watcher.stop()
            except Exception as exc:
                logger.error("Error stopping watcher: %s", exc)

        if self._open_task is not None and not self._open_task.done():
            self._open_task.cancel()
            try:
                await self._open_task
            except asyncio.CancelledError:
                pass

        if self._store is not None:
            try:
                self._store.close()
                if hasattr(self._backend, "aclose"):
                    await self._backend.aclose()
            except Exception as exc:
                logger.error("Error closing sync store: %s", exc)

        logger.info("chainwatch shutdown complete")


# ---------------------------------------------------------------------------
# Async entry point
# ---------------------------------------------------------------------------

async def main():
    """Main async entry point."""
    app = ChainwatchApplication()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        app.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.initialize()
        await app.run()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as exc:
        logger.critical("Fatal error: %s", exc, exc_info=True)
    finally:
        await app.shutdown()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
