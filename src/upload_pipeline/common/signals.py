"""Signal handling for graceful pipeline shutdown."""

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def install_shutdown_handlers(
    shutdown_event: asyncio.Event,
    loop: asyncio.AbstractEventLoop | None = None,
) -> None:
    """Set ``shutdown_event`` when SIGTERM or SIGINT arrives.

    Queue workers watch the event, finish their current batch and exit.
    Uses the loop's add_signal_handler() where supported and falls back to
    signal.signal() elsewhere (Windows).
    """
    loop = loop or asyncio.get_running_loop()

    def _trigger(sig: signal.Signals) -> None:
        if not shutdown_event.is_set():
            logger.info("Received %s, initiating shutdown", sig.name)
        shutdown_event.set()

    try:
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, _trigger, sig)
    except NotImplementedError:
        def _handler(signum, frame):
            loop.call_soon_threadsafe(_trigger, signal.Signals(signum))

        for sig in SHUTDOWN_SIGNALS:
            signal.signal(sig, _handler)
