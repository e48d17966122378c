"""Batch delivery of queued events to the ingestion endpoint."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Sequence

from ..api.models import IngestionResponse
from .events import FlushReport, IngestionEvent, SendResult
from .queue import EventQueue

DEFAULT_MAX_BATCH_SIZE = 100

BatchSender = Callable[[Sequence[Mapping[str, Any]]], Awaitable[IngestionResponse]]


class BatchDispatcher:
    """Drains an :class:`EventQueue` into concurrent batch sends.

    Every send failure ends in a log call and a failed :class:`SendResult`;
    ``drain_and_send`` itself never raises.
    """

    def __init__(
        self,
        sender: BatchSender,
        *,
        logger: logging.Logger,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    ) -> None:
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")
        self._sender = sender
        self.logger = logger
        self.max_batch_size = max_batch_size

    async def drain_and_send(self, queue: EventQueue) -> FlushReport:
        batches = queue.drain(self.max_batch_size)
        if not batches:
            return FlushReport()
        self.logger.debug(
            "Flushing %s events in %s batches", sum(len(batch) for batch in batches), len(batches)
        )
        results = await asyncio.gather(*(self.send_batch(batch) for batch in batches))
        report = FlushReport(results=list(results))
        if report.failed_batches or report.rejected:
            self.logger.warning(
                "Flush finished with %s failed batches and %s rejected events",
                report.failed_batches,
                report.rejected,
            )
        return report

    async def send_batch(self, batch: List[IngestionEvent]) -> SendResult:
        payload = [event.to_wire() for event in batch]
        try:
            response = await self._sender(payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.error("Failed to export batch of %s events: %s", len(batch), exc)
            return SendResult(batch_size=len(batch), ok=False, error=exc)

        rejected: List[Dict[str, Any]] = []
        for failure in response.errors:
            self.logger.error(
                "Event %s rejected by ingestion endpoint (status %s): %s",
                failure.id,
                failure.status,
                failure.message or failure.error,
            )
            rejected.append(failure.to_wire())
        return SendResult(batch_size=len(batch), ok=True, rejected=rejected)
