"""Size and time based flush triggering with a single in-flight flush."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from .dispatcher import BatchDispatcher
from .events import FlushReport
from .queue import EventQueue


class FlushState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class FlushScheduler:
    """Decides when the dispatcher drains the queue.

    At most one flush task exists at a time; ``flush()`` hands every caller
    that same task. The interval timer is a plain ``loop.call_later`` handle,
    which never keeps an interpreter from exiting.
    """

    def __init__(
        self,
        queue: EventQueue,
        dispatcher: BatchDispatcher,
        *,
        logger: logging.Logger,
        flush_at: int = 10,
        flush_interval: float = 1.0,
    ) -> None:
        self.queue = queue
        self.dispatcher = dispatcher
        self.logger = logger
        self.flush_at = max(flush_at, 1)
        self.flush_interval = flush_interval
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_task: Optional[asyncio.Task[FlushReport]] = None
        self._closed = False

    @property
    def state(self) -> FlushState:
        if self._flush_task is not None and not self._flush_task.done():
            return FlushState.FLUSHING
        if len(self.queue) or self._timer is not None:
            return FlushState.ACCUMULATING
        return FlushState.IDLE

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def notify_enqueued(self) -> None:
        """Apply the trigger policy after an event was appended."""

        loop = _running_loop()
        if loop is None:
            self.logger.debug("No running event loop; %s events wait for an explicit flush", len(self.queue))
            return
        if self._closed:
            return
        if len(self.queue) >= self.flush_at:
            self.flush()
        elif self._timer is None:
            self._timer = loop.call_later(self.flush_interval, self._on_timer)

    def flush(self) -> "asyncio.Task[FlushReport]":
        """Start a flush, or return the one already in flight."""

        if self._flush_task is not None and not self._flush_task.done():
            return self._flush_task
        self._cancel_timer()
        self._flush_task = asyncio.get_running_loop().create_task(self._run_flush())
        return self._flush_task

    async def shutdown(self) -> None:
        """Deliver everything still queued and leave no timer behind."""

        self._closed = True
        self._cancel_timer()
        await self.flush_pending()
        self._cancel_timer()

    async def flush_pending(self) -> None:
        """Flush until the queue is empty and no flush is in flight."""

        while len(self.queue) or (self._flush_task is not None and not self._flush_task.done()):
            await self.flush()

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run_flush(self) -> FlushReport:
        try:
            report = await self.dispatcher.drain_and_send(self.queue)
        except Exception:
            self.logger.exception("Error flushing event queue")
            report = FlushReport()
        finally:
            self._flush_task = None
        self._rearm()
        return report

    def _rearm(self) -> None:
        # Events enqueued while the flush ran must always have a trigger pending.
        if self._closed or not len(self.queue):
            return
        if len(self.queue) >= self.flush_at:
            self.flush()
        elif self._timer is None:
            self._timer = asyncio.get_running_loop().call_later(self.flush_interval, self._on_timer)
