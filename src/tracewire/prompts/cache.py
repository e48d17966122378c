"""Prompt cache with TTL expiry and single-flight refresh tracking."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

DEFAULT_PROMPT_CACHE_TTL_SECONDS = 60.0
DEFAULT_LABEL = "production"

T = TypeVar("T")
Clock = Callable[[], float]


def create_key(name: str, *, version: Optional[int] = None, label: Optional[str] = None) -> str:
    """Compose the cache key; version and label are separate identity axes."""

    parts = [name]
    if version is not None:
        parts.append(f"version:{version}")
    if label is not None:
        parts.append(f"label:{label}")
    if version is None and label is None:
        parts.append(f"label:{DEFAULT_LABEL}")
    return "-".join(parts)


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expiry: float
    clock: Clock = time.monotonic

    @property
    def is_expired(self) -> bool:
        return self.clock() > self.expiry


class PromptCache(Generic[T]):
    def __init__(
        self,
        *,
        logger: logging.Logger,
        default_ttl_seconds: float = DEFAULT_PROMPT_CACHE_TTL_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        self.logger = logger
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._names: Dict[str, str] = {}
        self._refreshing: Dict[str, "asyncio.Task[Any]"] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get_including_expired(self, key: str) -> Optional[CacheEntry[T]]:
        return self._entries.get(key)

    def set(self, key: str, value: T, ttl_seconds: Optional[float] = None, *, name: Optional[str] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = CacheEntry(value=value, expiry=self._clock() + ttl, clock=self._clock)
        self._names[key] = name or key

    def add_refreshing(self, key: str, task: "asyncio.Task[Any]") -> None:
        self._refreshing[key] = task
        task.add_done_callback(lambda _: self._refresh_finished(key, task))

    def is_refreshing(self, key: str) -> bool:
        return key in self._refreshing

    def invalidate(self, name: str) -> None:
        """Drop every entry cached for prompt ``name``, whatever its version or label."""

        stale = [key for key, owner in self._names.items() if owner == name]
        for key in stale:
            self._entries.pop(key, None)
            self._names.pop(key, None)
        self.logger.debug("Invalidated %s cache entries for prompt %s", len(stale), name)

    async def wait_for_refreshes(self) -> None:
        while self._refreshing:
            await asyncio.gather(*tuple(self._refreshing.values()), return_exceptions=True)

    def _refresh_finished(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._refreshing.get(key) is task:
            del self._refreshing[key]
