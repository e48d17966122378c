"""Two-step media upload with exponential backoff."""
from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse

import httpx

from ..api.client import ApiClient
from ..api.models import MediaUploadRequest, MediaUploadStatus
from ..core.errors import MediaIntegrityError, TracewireError
from .reference import Media

Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class UploadResult:
    media_id: Optional[str]
    uploaded: bool = False
    skipped: bool = False
    status_code: Optional[int] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _is_gcs_host(url: str) -> bool:
    hostname = urlparse(url).hostname or ""
    return hostname == "storage.googleapis.com" or hostname.endswith(".storage.googleapis.com")


def upload_headers(url: str, content_type: str, sha256_hash: str) -> Dict[str, str]:
    if _is_gcs_host(url):
        return {"Content-Type": content_type}
    return {
        "Content-Type": content_type,
        "x-amz-checksum-sha256": sha256_hash,
        "x-ms-blob-type": "BlockBlob",
    }


class MediaUploader:
    """Requests an upload slot, PUTs the bytes and reports the outcome back to the API."""

    def __init__(
        self,
        api: ApiClient,
        *,
        logger: logging.Logger,
        max_retries: int = 3,
        base_delay_ms: float = 1000,
        max_jitter_ms: float = 1000,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.api = api
        self.logger = logger
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_jitter_ms = max_jitter_ms
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (0-based)."""

        jitter = self._rng.uniform(0, self.max_jitter_ms)
        return (self.base_delay_ms * 2**attempt + jitter) / 1000

    async def upload(
        self,
        media: Media,
        *,
        trace_id: Optional[str] = None,
        observation_id: Optional[str] = None,
        field: str = "input",
    ) -> UploadResult:
        client_id = media.id
        try:
            if media.content_bytes is None or not media.content_type or media.sha256_hash is None:
                return UploadResult(media_id=client_id, skipped=True)

            slot = await self.api.get_media_upload_url(
                MediaUploadRequest(
                    content_length=len(media.content_bytes),
                    content_type=media.content_type,
                    sha256_hash=media.sha256_hash,
                    trace_id=trace_id,
                    observation_id=observation_id,
                    field=field,
                )
            )
            if not slot.upload_url:
                self.logger.debug("Media %s already uploaded. Skipping duplicate upload.", slot.media_id)
                return UploadResult(media_id=slot.media_id, skipped=True)
            if client_id != slot.media_id:
                raise MediaIntegrityError(str(client_id), slot.media_id)

            self.logger.debug("Uploading media %s", slot.media_id)
            started = time.monotonic()
            response = await self._put_with_backoff(slot.upload_url, media)
            await self.api.patch_media(
                slot.media_id,
                MediaUploadStatus(
                    uploaded_at=datetime.now(timezone.utc),
                    upload_http_status=response.status_code,
                    upload_http_error=response.text if response.status_code >= 300 else None,
                    upload_time_ms=int((time.monotonic() - started) * 1000),
                ),
            )
            self.logger.debug("Media upload status reported for %s", slot.media_id)
            if response.status_code >= 300:
                self.logger.error("Media %s upload failed with status %s", slot.media_id, response.status_code)
                return UploadResult(
                    media_id=slot.media_id,
                    status_code=response.status_code,
                    error=TracewireError(f"Upload failed with status {response.status_code}"),
                )
            return UploadResult(media_id=slot.media_id, uploaded=True, status_code=response.status_code)
        except MediaIntegrityError as exc:
            self.logger.error("Media integrity error: %s", exc)
            return UploadResult(media_id=client_id, error=exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.error("Error processing media item %s: %s", client_id, exc)
            return UploadResult(media_id=client_id, error=exc)

    async def _put_with_backoff(self, url: str, media: Media) -> httpx.Response:
        assert media.content_bytes is not None and media.content_type and media.sha256_hash
        headers = upload_headers(url, media.content_type, media.sha256_hash)
        attempt = 0
        while True:
            try:
                response = await self.api.upload_bytes(url, media.content_bytes, headers)
                if response.status_code in (200, 201) or attempt >= self.max_retries:
                    return response
                self.logger.warning(
                    "Media upload attempt %s failed with status %s", attempt + 1, response.status_code
                )
            except TracewireError as exc:
                if attempt >= self.max_retries:
                    raise
                self.logger.warning("Media upload attempt %s failed: %s", attempt + 1, exc)
            await self._sleep(self.backoff_delay(attempt))
            attempt += 1
