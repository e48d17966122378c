"""Externalizes inline base64 media as reference tokens and resolves them back."""
from __future__ import annotations

import asyncio
import copy
import logging
import re
from typing import Any, Dict, Mapping, Optional, Set

from ..api.client import ApiClient
from .reference import (
    DATA_URI_PATTERN,
    REFERENCE_PATTERN,
    Media,
    parse_reference,
    to_data_uri,
)
from .uploader import MediaUploader, UploadResult

DEFAULT_MAX_DEPTH = 10


class MediaReferenceCodec:
    """Scans payloads for data URIs, swaps them for references and uploads them in the background.

    Uploads are keyed by content id: while an upload for an id is pending or
    has succeeded, the same bytes are never uploaded again. A failed upload
    forgets the id so a later payload can retry it.
    """

    def __init__(
        self,
        api: ApiClient,
        uploader: MediaUploader,
        *,
        logger: logging.Logger,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.api = api
        self.uploader = uploader
        self.logger = logger
        self.max_depth = max_depth
        self._pending: Set["asyncio.Task[UploadResult]"] = set()
        self._scheduled_ids: Set[str] = set()

    @property
    def pending_uploads(self) -> int:
        return len(self._pending)

    def scan_and_replace(
        self,
        obj: Any,
        max_depth: Optional[int] = None,
        *,
        trace_id: Optional[str] = None,
        observation_id: Optional[str] = None,
        field: str = "input",
    ) -> Any:
        """Return a deep copy of ``obj`` with every base64 data URI replaced by its reference."""

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning("No running event loop; media payloads are sent inline")
            return copy.deepcopy(obj)

        limit = self.max_depth if max_depth is None else max_depth
        upload_context = {"trace_id": trace_id, "observation_id": observation_id, "field": field}

        def walk(value: Any, depth: int) -> Any:
            if depth > limit:
                return copy.deepcopy(value)
            if isinstance(value, str):
                return self._replace_in_string(value, upload_context)
            if isinstance(value, Mapping):
                return {key: walk(item, depth + 1) for key, item in value.items()}
            if isinstance(value, list):
                return [walk(item, depth + 1) for item in value]
            if isinstance(value, tuple):
                return tuple(walk(item, depth + 1) for item in value)
            return copy.deepcopy(value)

        return walk(obj, 0)

    def _replace_in_string(self, value: str, upload_context: Dict[str, Any]) -> str:
        if "data:" not in value:
            return value

        def replace(match: "re.Match[str]") -> str:
            data_uri = match.group(0)
            media = Media.from_data_uri(data_uri, logger=self.logger)
            reference = media.reference
            if reference is None:
                self.logger.warning("Failed to create media reference. Skipping media item.")
                return data_uri
            self._schedule_upload(media, **upload_context)
            return reference

        return DATA_URI_PATTERN.sub(replace, value)

    def _schedule_upload(self, media: Media, **upload_context: Any) -> None:
        media_id = media.id
        if media_id is None or media_id in self._scheduled_ids:
            return
        self._scheduled_ids.add(media_id)
        task = asyncio.get_running_loop().create_task(self.uploader.upload(media, **upload_context))
        self._pending.add(task)
        task.add_done_callback(lambda done: self._upload_finished(media_id, done))

    def _upload_finished(self, media_id: str, task: "asyncio.Task[UploadResult]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            self._scheduled_ids.discard(media_id)
            return
        result = task.result()
        if not result.ok:
            self._scheduled_ids.discard(media_id)

    async def flush(self) -> None:
        """Wait for every upload scheduled so far."""

        while self._pending:
            await asyncio.gather(*tuple(self._pending), return_exceptions=True)

    async def resolve_references(self, obj: Any, max_depth: Optional[int] = None) -> Any:
        """Return a deep copy of ``obj`` with reference tokens replaced by base64 data URIs."""

        limit = self.max_depth if max_depth is None else max_depth
        resolved: Dict[str, "asyncio.Task[Optional[str]]"] = {}

        async def walk(value: Any, depth: int) -> Any:
            if depth > limit:
                return copy.deepcopy(value)
            if isinstance(value, str):
                return await resolve_string(value)
            if isinstance(value, Mapping):
                keys = list(value.keys())
                items = await asyncio.gather(*(walk(value[key], depth + 1) for key in keys))
                return dict(zip(keys, items))
            if isinstance(value, list):
                return list(await asyncio.gather(*(walk(item, depth + 1) for item in value)))
            if isinstance(value, tuple):
                return tuple(await asyncio.gather(*(walk(item, depth + 1) for item in value)))
            return copy.deepcopy(value)

        async def resolve_string(value: str) -> str:
            tokens = list(dict.fromkeys(REFERENCE_PATTERN.findall(value)))
            if not tokens:
                return value
            for token in tokens:
                if token not in resolved:
                    resolved[token] = asyncio.ensure_future(self._fetch_data_uri(token))
            contents = await asyncio.gather(*(resolved[token] for token in tokens))
            data_uris = dict(zip(tokens, contents))
            return REFERENCE_PATTERN.sub(lambda match: data_uris.get(match.group(0)) or match.group(0), value)

        return await walk(obj, 0)

    async def _fetch_data_uri(self, token: str) -> Optional[str]:
        try:
            parsed = parse_reference(token)
            record = await self.api.get_media(parsed.media_id)
            content = await self.api.download_bytes(record.url)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning("Error fetching media content for reference string %s: %s", token, exc)
            return None
        return to_data_uri(content, record.content_type)
