# src/pagepilot/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts the background event loop
(cache janitors + executions), then runs the console REPL in the main thread.
"""

from __future__ import annotations

import logging
import signal

from ..cache.bounded_cache import run_cache_janitor
from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState, BackgroundLoop
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        if state.loop is not None:
            state.loop.stop()
    except Exception:
        logger.exception("Background loop stop failed.")

    try:
        state.orchestrator.dispose()
    except Exception:
        logger.exception("Orchestrator dispose failed.")

    # SQLiteTaskStore uses short-lived sqlite connections per call; close() is a no-op hook.
    try:
        state.store.close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_file = setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s (log file: %s)...", settings.app_name, log_file)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    state.loop = BackgroundLoop()
    state.loop.start()
    for cache in (state.cache, state.response_cache):
        if cache is not None:
            state.loop.spawn(
                run_cache_janitor(cache, interval_seconds=settings.cache_cleanup_seconds)
            )

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        raise KeyboardInterrupt

    try:
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError, AttributeError):
        # Some platforms may not support SIGTERM.
        pass

    try:
        run_console_loop(state)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
