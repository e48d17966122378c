"""Bounded in-memory buffer of pending ingestion events."""
from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Iterator, List

from .events import IngestionEvent

DEFAULT_QUEUE_CAPACITY = 100_000


class EventQueue:
    """FIFO buffer that drops new events once it reaches capacity."""

    def __init__(self, *, logger: logging.Logger, capacity: int = DEFAULT_QUEUE_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.logger = logger
        self._events: Deque[IngestionEvent] = deque()
        self.dropped_count = 0

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[IngestionEvent]:
        return iter(tuple(self._events))

    def enqueue(self, event: IngestionEvent) -> bool:
        if len(self._events) >= self.capacity:
            self.dropped_count += 1
            self.logger.error(
                "Event queue is at max size %s. Dropping %s event %s.", self.capacity, event.type.value, event.id
            )
            return False
        self._events.append(event)
        return True

    def take_batch(self, max_size: int) -> List[IngestionEvent]:
        batch: List[IngestionEvent] = []
        while self._events and len(batch) < max_size:
            batch.append(self._events.popleft())
        return batch

    def drain(self, max_size: int) -> List[List[IngestionEvent]]:
        """Remove the events present right now, split into batches of ``max_size``.

        Events appended after the call starts are left for the next drain.
        """

        if max_size <= 0:
            raise ValueError("max_size must be positive")
        remaining = len(self._events)
        batches: List[List[IngestionEvent]] = []
        while remaining > 0:
            batch = self.take_batch(min(max_size, remaining))
            remaining -= len(batch)
            batches.append(batch)
        return batches
