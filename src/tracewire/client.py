"""Client entrypoint wiring the ingestion pipeline, prompt cache and media codec."""
from __future__ import annotations

import logging
from types import TracebackType
from typing import Any, List, Optional, Type

import httpx

from .api.client import ApiClient
from .core.config import Settings, resolve_settings
from .core.http import create_async_client
from .core.logging import ROOT_LOGGER_NAME, component_logger
from .datasets.manager import DatasetManager
from .ingestion.dispatcher import BatchDispatcher
from .ingestion.queue import EventQueue
from .ingestion.scheduler import FlushScheduler
from .ingestion.service import IngestionService
from .media.codec import MediaReferenceCodec
from .media.uploader import MediaUploader
from .prompts.cache import PromptCache
from .prompts.manager import PromptManager


class TracewireClient:
    """Records telemetry in the background and exposes the prompt, media and dataset APIs.

    Settings are resolved once here. ``http_client`` and ``storage_client``
    may be supplied by the host; clients created here are closed by
    :meth:`shutdown`.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        logger: Optional[logging.Logger] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        storage_client: Optional[httpx.AsyncClient] = None,
        **overrides: Any,
    ) -> None:
        self.settings = settings if settings is not None else resolve_settings(**overrides)
        self.logger = logger or logging.getLogger(ROOT_LOGGER_NAME)
        if not self.settings.public_key or not self.settings.secret_key:
            self.logger.warning(
                "Tracewire credentials missing (public_key/secret_key). Client operations will fail."
            )

        self._owned_clients: List[httpx.AsyncClient] = []
        if http_client is None:
            http_client = create_async_client(self.settings)
            self._owned_clients.append(http_client)
        if storage_client is None:
            storage_client = create_async_client(self.settings, authenticated=False)
            self._owned_clients.append(storage_client)
        self.api = ApiClient(http_client, storage_http=storage_client)

        settings = self.settings
        uploader = MediaUploader(
            self.api,
            logger=component_logger(self.logger, "media"),
            max_retries=settings.upload_max_retries,
            base_delay_ms=settings.upload_base_delay_ms,
            max_jitter_ms=settings.upload_max_jitter_ms,
        )
        self.media = MediaReferenceCodec(
            self.api,
            uploader,
            logger=component_logger(self.logger, "media"),
            max_depth=settings.media_max_depth,
        )

        ingestion_logger = component_logger(self.logger, "ingestion")
        queue = EventQueue(logger=ingestion_logger, capacity=settings.queue_capacity)
        dispatcher = BatchDispatcher(
            self.api.ingestion_batch, logger=ingestion_logger, max_batch_size=settings.max_batch_size
        )
        scheduler = FlushScheduler(
            queue,
            dispatcher,
            logger=ingestion_logger,
            flush_at=settings.flush_at,
            flush_interval=settings.flush_interval,
        )
        self.ingestion = IngestionService(
            queue,
            scheduler,
            logger=ingestion_logger,
            media=self.media,
            environment=settings.environment,
            release=settings.release,
            sample_rate=settings.sample_rate,
            enabled=settings.enabled,
            max_event_size_bytes=settings.max_event_size_bytes,
        )

        prompts_logger = component_logger(self.logger, "prompts")
        self.prompt_cache: PromptCache = PromptCache(
            logger=prompts_logger, default_ttl_seconds=settings.cache_ttl_seconds
        )
        self.prompts = PromptManager(self.api, self.prompt_cache, logger=prompts_logger)
        self.datasets = DatasetManager(self.api, logger=component_logger(self.logger, "datasets"))

    def trace(self, **body: Any) -> str:
        return self.ingestion.trace(body)

    def span(self, **body: Any) -> str:
        return self.ingestion.span(body)

    def update_span(self, **body: Any) -> str:
        return self.ingestion.update_span(body)

    def generation(self, **body: Any) -> str:
        return self.ingestion.generation(body)

    def update_generation(self, **body: Any) -> str:
        return self.ingestion.update_generation(body)

    def event(self, **body: Any) -> str:
        return self.ingestion.event(body)

    def score(self, **body: Any) -> str:
        return self.ingestion.score(body)

    async def flush(self) -> None:
        """Wait until queued events, media uploads and prompt refreshes have settled."""

        await self.ingestion.flush_pending()
        await self.media.flush()
        await self.prompt_cache.wait_for_refreshes()

    async def shutdown(self) -> None:
        await self.ingestion.shutdown()
        await self.media.flush()
        await self.prompt_cache.wait_for_refreshes()
        for client in self._owned_clients:
            await client.aclose()
        self._owned_clients.clear()

    async def __aenter__(self) -> "TracewireClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.shutdown()
