"""
Reconciliation background worker.

Runs the follow-up sweeper on a fixed interval: stale pending attempts are
queried at the gateway, and terminal outcomes that never reached their order
are re-applied.
"""
import asyncio
import signal
from typing import Any, Optional

import structlog

from gateway_reconciliation.bootstrap import build_components
from gateway_reconciliation.config import Settings, get_settings
from gateway_reconciliation.core.sweeper import ReconciliationSweeper
from gateway_reconciliation.database.connection import close_db, get_session_factory
from gateway_reconciliation.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run_sweep(sweeper: ReconciliationSweeper) -> None:
    """Run one sweep; failures are logged and the worker keeps going."""
    try:
        result = await sweeper.run_once()
        logger.info("reconciliation_sweep_completed", **result)
    except Exception as e:
        logger.error("reconciliation_sweep_failed", error=str(e))


async def start_reconciliation_worker(settings: Optional[Settings] = None) -> None:
    """
    Start the reconciliation worker.

    Runs until SIGINT or SIGTERM.

    Args:
        settings: Application settings; loaded from the environment when omitted
    """
    settings = settings or get_settings()
    setup_logging(settings)

    interval = settings.sweeper_interval_seconds
    logger.info("reconciliation_worker_starting", interval_seconds=interval)

    components = build_components(settings, get_session_factory(settings))
    components.notifications.start()

    stop_event = asyncio.Event()

    def signal_handler(sig: int, frame: Any) -> None:
        logger.info("reconciliation_worker_shutdown_signal_received", signal=sig)
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        while not stop_event.is_set():
            await run_sweep(components.sweeper)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
    finally:
        await components.close()
        await close_db()
        logger.info("reconciliation_worker_stopped")


def main() -> None:
    """Console entry point."""
    asyncio.run(start_reconciliation_worker())


if __name__ == "__main__":
    main()
