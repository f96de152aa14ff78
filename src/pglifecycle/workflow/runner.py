"""Run a workflow coroutine so that SIGINT/SIGTERM unwind it cleanly.

The first signal cancels the workflow task. Cancellation travels up through
the current poll or CLI call into the resource tracker, which destroys what
was created before the ``CancelledError`` reaches the caller. Later signals
are only logged so they cannot interrupt that cleanup.
"""

import asyncio
import signal
from typing import Awaitable, TypeVar

from ..utils.logging_utils import get_logger

logger = get_logger("workflow.runner")

T = TypeVar("T")

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


async def run_cancellable(workflow: Awaitable[T]) -> T:
    """Await ``workflow`` with signal handlers that cancel it once.

    Raises:
        asyncio.CancelledError: If a signal interrupted the workflow.
    """
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(workflow)
    installed = []
    interrupted = []

    def interrupt(sig: signal.Signals) -> None:
        if interrupted:
            logger.warning("Received %s, cleanup already in progress", sig.name)
            return
        interrupted.append(sig)
        logger.warning("Received %s, cancelling and cleaning up...", sig.name)
        task.cancel()

    for sig in HANDLED_SIGNALS:
        try:
            loop.add_signal_handler(sig, interrupt, sig)
        except (NotImplementedError, RuntimeError):
            # Not the main thread, or a platform without loop signal support
            logger.debug("Cannot install handler for %s", sig.name)
            continue
        installed.append(sig)

    try:
        return await task
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
