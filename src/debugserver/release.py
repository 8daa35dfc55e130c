from __future__ import annotations

import asyncio
import logging
import threading
from typing import TextIO

from debugserver.registry import PendingRequestRegistry
from debugserver.telemetry import Telemetry

logger = logging.getLogger(__name__)


class ReleaseTrigger:
    """Turn each line of operator input into one release-all event.

    Lines are read on a dedicated daemon thread. The drain and the signal
    firing run on the event loop that owns the registry.
    """

    def __init__(
        self,
        registry: PendingRequestRegistry,
        stream: TextIO,
        telemetry: Telemetry,
    ) -> None:
        self._registry = registry
        self._stream = stream
        self._telemetry = telemetry

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    async def release_all(self) -> int:
        drained = await self._registry.drain_all()
        self._telemetry.record_release_batch(
            released=len(drained), pending_count=self._registry.pending_count
        )
        if not drained:
            logger.info("No pending requests")
            return 0

        logger.info("Releasing %d pending request(s)...", len(drained))
        for pending in drained:
            pending.release()
        return len(drained)

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(loop,),
            name="release-trigger",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        # One iteration per line; an empty line still releases.
        for _line in self._stream:
            if self._stop_event.is_set():
                return
            try:
                future = asyncio.run_coroutine_threadsafe(self.release_all(), loop)
            except RuntimeError:
                logger.warning("Event loop closed; release trigger stopped")
                return
            future.result()

        if not self._stop_event.is_set():
            logger.info("Operator input closed; no further releases possible")
