# src/pagepilot/core/state.py

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ..cache.bounded_cache import BoundedCache
from ..execution.orchestrator import ExecutionOrchestrator
from ..tasks.task_index import TaskIndex
from ..tasks.task_store import SQLiteTaskStore
from .ports import AIClient, SecurityClassifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackgroundLoop:
    """
    asyncio event loop running in a daemon thread.

    The console REPL is synchronous; async work (executions, cache janitor)
    is submitted here and waited on from the calling thread.
    """

    def __init__(self, name: str = "pagepilot-loop") -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def start(self) -> None:
        self._thread.start()
        logger.debug("Background loop started.")

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Fire-and-forget: start a long-running task (cancelled on stop())."""
        asyncio.run_coroutine_threadsafe(coro, self._loop)

    def stop(self, timeout: float = 5.0) -> None:
        if not self._thread.is_alive():
            return

        async def _cancel_all() -> None:
            current = asyncio.current_task()
            tasks = [t for t in asyncio.all_tasks() if t is not current]
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        try:
            asyncio.run_coroutine_threadsafe(_cancel_all(), self._loop).result(timeout)
        except Exception:
            logger.debug("Background task cancellation failed.", exc_info=True)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=timeout)
        self._loop.close()
        logger.debug("Background loop stopped.")


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    store: SQLiteTaskStore
    task_index: TaskIndex
    cache: BoundedCache
    ai: AIClient
    security: SecurityClassifier
    orchestrator: ExecutionOrchestrator
    ai_mode: str = "offline"
    response_cache: BoundedCache | None = None

    loop: BackgroundLoop | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)

    def run_async(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run a coroutine to completion from synchronous code."""
        if self.loop is not None:
            return self.loop.run(coro)
        return asyncio.run(coro)
