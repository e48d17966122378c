"""Prompt retrieval with stale-while-revalidate caching."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from ..api.client import ApiClient
from .cache import PromptCache, create_key
from .clients import ChatPrompt, Prompt, TextPrompt, prompt_from_response

Fallback = Union[str, List[Dict[str, Any]]]


class PromptManager:
    def __init__(self, api: ApiClient, cache: PromptCache[Prompt], *, logger: logging.Logger) -> None:
        self.api = api
        self.cache = cache
        self.logger = logger

    async def get(
        self,
        name: str,
        *,
        version: Optional[int] = None,
        label: Optional[str] = None,
        cache_ttl_seconds: Optional[float] = None,
        fallback: Optional[Fallback] = None,
        type: str = "text",
        fetch_timeout_seconds: Optional[float] = None,
    ) -> Prompt:
        """Return a prompt, serving cached values without waiting on the network.

        A missing entry is fetched synchronously and falls back to ``fallback``
        on failure. An expired entry is returned as is while a single background
        refresh runs for its key.
        """

        key = create_key(name, version=version, label=label)
        cached = self.cache.get_including_expired(key)
        ttl = self.cache.default_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        fetch_args = dict(
            name=name,
            version=version,
            label=label,
            cache_ttl_seconds=ttl,
            fetch_timeout_seconds=fetch_timeout_seconds,
        )

        if cached is None or ttl == 0:
            try:
                return await self._fetch_and_cache(**fetch_args)
            except Exception:
                if fallback is None:
                    raise
                self.logger.warning("Returning fallback for prompt '%s'", key)
                return self._build_fallback(name, version=version, label=label, fallback=fallback, type=type)

        if cached.is_expired and not self.cache.is_refreshing(key):
            task = asyncio.get_running_loop().create_task(self._refresh(key, fetch_args))
            self.cache.add_refreshing(key, task)
        return cached.value

    async def create(self, body: Mapping[str, Any]) -> Prompt:
        request = dict(body)
        request.setdefault("type", "text")
        if request["type"] == "chat":
            request["prompt"] = [
                {"type": "placeholder", "name": message["name"]}
                if message.get("type") == "placeholder"
                else {"type": "chatmessage", **{k: v for k, v in message.items() if k != "type"}}
                for message in request.get("prompt") or []
            ]
        data = await self.api.create_prompt(request)
        return prompt_from_response(data)

    async def update(self, *, name: str, version: int, new_labels: List[str]) -> Prompt:
        data = await self.api.update_prompt_labels(name, version, new_labels)
        self.cache.invalidate(name)
        return prompt_from_response(data)

    async def _fetch_and_cache(
        self,
        *,
        name: str,
        version: Optional[int],
        label: Optional[str],
        cache_ttl_seconds: float,
        fetch_timeout_seconds: Optional[float],
    ) -> Prompt:
        key = create_key(name, version=version, label=label)
        try:
            data = await self.api.get_prompt(name, version=version, label=label, timeout=fetch_timeout_seconds)
            prompt = prompt_from_response(data)
        except Exception as exc:
            self.logger.error("Error fetching prompt '%s': %s", key, exc)
            raise
        if cache_ttl_seconds != 0:
            self.cache.set(key, prompt, cache_ttl_seconds, name=name)
        return prompt

    async def _refresh(self, key: str, fetch_args: Dict[str, Any]) -> bool:
        try:
            await self._fetch_and_cache(**fetch_args)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.warning(
                "Failed to refresh prompt cache '%s', stale cache will be used until next refresh succeeds.", key
            )
            return False
        return True

    @staticmethod
    def _build_fallback(
        name: str,
        *,
        version: Optional[int],
        label: Optional[str],
        fallback: Fallback,
        type: str,
    ) -> Prompt:
        common = dict(
            name=name,
            version=version or 0,
            labels=[label] if label else [],
            is_fallback=True,
        )
        if type == "chat":
            if isinstance(fallback, str):
                raise TypeError("chat prompt fallback must be a list of messages")
            return ChatPrompt(prompt=[{"type": "chatmessage", **message} for message in fallback], **common)
        if not isinstance(fallback, str):
            raise TypeError("text prompt fallback must be a string")
        return TextPrompt(prompt=fallback, **common)
