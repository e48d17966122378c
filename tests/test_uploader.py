"""Tests for the two-step media upload and its backoff policy."""

import logging
import random
from typing import List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from tracewire.api.models import MediaUploadUrl
from tracewire.core.errors import MediaIntegrityError, TransportError
from tracewire.media.reference import Media
from tracewire.media.uploader import MediaUploader, upload_headers

CONTENT = b"hello media"


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_media() -> Media:
    return Media(content_bytes=CONTENT, content_type="text/plain")


def make_api(media: Media, *, upload_url: str = "https://bucket.s3.amazonaws.com/upload") -> MagicMock:
    api = MagicMock()
    api.get_media_upload_url = AsyncMock(return_value=MediaUploadUrl(media_id=media.id, upload_url=upload_url))
    api.upload_bytes = AsyncMock(return_value=httpx.Response(200))
    api.patch_media = AsyncMock(return_value=None)
    return api


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


class TestUpload:
    """Upload slot handling"""

    @pytest.mark.asyncio
    async def test_successful_upload_reports_status(self, logger: logging.Logger, sleep: RecordingSleep) -> None:
        media = make_media()
        api = make_api(media)
        uploader = MediaUploader(api, logger=logger, sleep=sleep)

        result = await uploader.upload(media, trace_id="t-1", field="output")

        assert result.ok and result.uploaded
        request = api.get_media_upload_url.await_args.args[0]
        assert request.to_wire() == {
            "contentLength": len(CONTENT),
            "contentType": "text/plain",
            "sha256Hash": media.sha256_hash,
            "traceId": "t-1",
            "field": "output",
        }
        url, content, headers = api.upload_bytes.await_args.args
        assert content == CONTENT
        assert headers["x-amz-checksum-sha256"] == media.sha256_hash
        media_id, status = api.patch_media.await_args.args
        assert media_id == media.id
        assert status.upload_http_status == 200
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_already_uploaded_media_is_skipped(self, logger: logging.Logger) -> None:
        media = make_media()
        api = make_api(media)
        api.get_media_upload_url.return_value = MediaUploadUrl(media_id=media.id, upload_url=None)

        result = await MediaUploader(api, logger=logger).upload(media)

        assert result.skipped and result.ok
        api.upload_bytes.assert_not_awaited()
        api.patch_media.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_id_mismatch_aborts_before_put(
        self, logger: logging.Logger, caplog: pytest.LogCaptureFixture
    ) -> None:
        media = make_media()
        api = make_api(media)
        api.get_media_upload_url.return_value = MediaUploadUrl(media_id="server-id", upload_url="https://x/y")

        with caplog.at_level(logging.ERROR, logger=logger.name):
            result = await MediaUploader(api, logger=logger).upload(media)

        assert isinstance(result.error, MediaIntegrityError)
        assert result.error.server_id == "server-id"
        api.upload_bytes.assert_not_awaited()
        assert any("integrity" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_media_without_content_is_skipped(self, logger: logging.Logger) -> None:
        api = MagicMock()
        api.get_media_upload_url = AsyncMock()

        result = await MediaUploader(api, logger=logger).upload(Media(content_type="image/png"))

        assert result.skipped
        api.get_media_upload_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slot_request_failure_becomes_error_result(self, logger: logging.Logger) -> None:
        media = make_media()
        api = make_api(media)
        api.get_media_upload_url.side_effect = TransportError("unreachable")

        result = await MediaUploader(api, logger=logger).upload(media)

        assert isinstance(result.error, TransportError)


class TestBackoff:
    """Retry schedule of the PUT step"""

    def test_delay_grows_exponentially_with_bounded_jitter(self, logger: logging.Logger) -> None:
        uploader = MediaUploader(MagicMock(), logger=logger, rng=random.Random(7))

        first, second, third = (uploader.backoff_delay(attempt) for attempt in range(3))

        assert 1.0 <= first < 2.0
        assert 2.0 <= second < 3.0
        assert 4.0 <= third < 5.0

    @pytest.mark.asyncio
    async def test_retries_until_success(self, logger: logging.Logger, sleep: RecordingSleep) -> None:
        media = make_media()
        api = make_api(media)
        api.upload_bytes.side_effect = [httpx.Response(503), httpx.Response(503), httpx.Response(201)]
        uploader = MediaUploader(api, logger=logger, sleep=sleep, max_jitter_ms=0)

        result = await uploader.upload(media)

        assert result.uploaded
        assert api.upload_bytes.await_count == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_report_failure(self, logger: logging.Logger, sleep: RecordingSleep) -> None:
        media = make_media()
        api = make_api(media)
        api.upload_bytes.return_value = httpx.Response(500, text="storage error")
        uploader = MediaUploader(api, logger=logger, sleep=sleep, max_retries=2, max_jitter_ms=0)

        result = await uploader.upload(media)

        assert not result.ok
        assert result.status_code == 500
        assert api.upload_bytes.await_count == 3
        assert sleep.delays == [1.0, 2.0]
        status = api.patch_media.await_args.args[1]
        assert status.upload_http_status == 500
        assert status.upload_http_error == "storage error"

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried_then_reported(
        self, logger: logging.Logger, sleep: RecordingSleep
    ) -> None:
        media = make_media()
        api = make_api(media)
        api.upload_bytes.side_effect = TransportError("reset")
        uploader = MediaUploader(api, logger=logger, sleep=sleep, max_retries=1, max_jitter_ms=0)

        result = await uploader.upload(media)

        assert isinstance(result.error, TransportError)
        assert api.upload_bytes.await_count == 2
        api.patch_media.assert_not_awaited()


class TestUploadHeaders:
    def test_gcs_gets_content_type_only(self) -> None:
        headers = upload_headers("https://storage.googleapis.com/bucket/key", "image/png", "abc=")

        assert headers == {"Content-Type": "image/png"}

    def test_other_hosts_get_checksum(self) -> None:
        headers = upload_headers("https://bucket.s3.amazonaws.com/key", "image/png", "abc=")

        assert headers["x-amz-checksum-sha256"] == "abc="
        assert headers["Content-Type"] == "image/png"
