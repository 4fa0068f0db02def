"""
Opt-in graceful shutdown for hosts embedding a LogDatabase.

Nothing here is installed implicitly. A host that wants SIGTERM/SIGINT to
back up and close its log stores creates a handler, registers the stores'
``shutdown`` coroutines, and installs it on its event loop:
    
    handler = GracefulShutdownHandler()
    handler.register_cleanup(db.shutdown)
    handler.install(asyncio.get_running_loop())

Hosts with their own lifecycle management can skip ``install`` and await
``run_cleanup()`` from their own teardown.
"""

import asyncio
import inspect
import signal
from typing import Any, Callable, Optional
import structlog

logger = structlog.get_logger(__name__)


class GracefulShutdownHandler:
    """
    Runs registered cleanup callbacks once, in reverse order of registration.
    
    Callbacks may be plain callables or coroutine functions. A failing
    callback is logged and the remaining callbacks still run.
    """
    
    def __init__(self):
        self.shutdown_requested = False
        self._cleanup_callbacks: list[Callable[[], Any]] = []
        self._cleanup_done = False
        self._task: Optional[asyncio.Task] = None
    
    def register_cleanup(self, callback: Callable[[], Any]) -> None:
        """
        Register a cleanup callback to run on shutdown.
        
        Callbacks are run in reverse order of registration (LIFO).
        """
        self._cleanup_callbacks.append(callback)
    
    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        """
        Route SIGTERM and SIGINT to ``run_cleanup`` on ``loop``.
        
        Raises NotImplementedError on platforms without loop signal
        handlers (Windows); such hosts should call run_cleanup() themselves.
        """
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)
        logger.info("signal_handlers_installed")
    
    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=signal.Signals(sig).name)
        self.shutdown_requested = True
        if self._task is None:
            self._task = asyncio.ensure_future(self.run_cleanup())
    
    async def run_cleanup(self) -> None:
        """Run every callback once; later calls are no-ops."""
        if self._cleanup_done:
            return
        self._cleanup_done = True
        self.shutdown_requested = True
        
        logger.info("running_cleanup_callbacks", count=len(self._cleanup_callbacks))
        
        for callback in reversed(self._cleanup_callbacks):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("cleanup_callback_error", error=str(e))
        
        logger.info("graceful_shutdown_complete")
