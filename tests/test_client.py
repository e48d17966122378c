"""End-to-end tests of the client against the in-process fake collector."""

import logging

import httpx
import pytest

from tracewire.client import TracewireClient
from tracewire.ingestion.scheduler import FlushState
from tracewire.media.reference import Media, to_data_uri

IMAGE = b"\x89PNG\r\n\x1a\n" + b"frame" * 32


def make_client(http: httpx.AsyncClient, logger: logging.Logger, **overrides) -> TracewireClient:
    options = {"public_key": "pk-test", "secret_key": "sk-test", "flush_interval": 10.0, **overrides}
    return TracewireClient(logger=logger, http_client=http, storage_client=http, **options)


@pytest.mark.asyncio
async def test_score_with_flush_at_one_is_sent_immediately(collector_http, collector_state, logger) -> None:
    client = make_client(collector_http, logger, flush_at=1)

    score_id = client.score(traceId="t-1", name="quality", value=0.8)
    assert client.ingestion.scheduler.state is FlushState.FLUSHING
    await client.flush()

    assert len(collector_state.batches) == 1
    (event,) = collector_state.batches[0]
    assert event["type"] == "score-create"
    assert event["body"]["id"] == score_id
    assert event["body"]["name"] == "quality"
    assert event["body"]["value"] == 0.8
    await client.shutdown()


@pytest.mark.asyncio
async def test_trace_media_is_uploaded_and_referenced(collector_http, collector_state, logger) -> None:
    client = make_client(collector_http, logger)
    reference = Media(content_bytes=IMAGE, content_type="image/png", source="base64_data_uri").reference

    trace_id = client.trace(name="vision", input={"image": to_data_uri(IMAGE, "image/png")})
    await client.flush()

    (event,) = collector_state.events
    assert event["body"]["input"] == {"image": reference}
    assert collector_state.upload_requests[0]["traceId"] == trace_id
    assert len(collector_state.uploads) == 1

    resolved = await client.media.resolve_references(event["body"]["input"])
    assert resolved == {"image": to_data_uri(IMAGE, "image/png")}
    await client.shutdown()


@pytest.mark.asyncio
async def test_shutdown_delivers_everything_in_batches(collector_http, collector_state, logger) -> None:
    client = make_client(collector_http, logger, flush_at=1000, max_batch_size=10)
    ids = [client.trace(name=f"trace-{i}") for i in range(25)]

    await client.shutdown()

    assert sorted(e["body"]["id"] for e in collector_state.events) == sorted(ids)
    assert sorted(len(batch) for batch in collector_state.batches) == [5, 10, 10]
    assert not client.ingestion.scheduler.timer_pending


@pytest.mark.asyncio
async def test_rejected_events_are_logged_not_raised(
    collector_http, collector_state, logger, caplog: pytest.LogCaptureFixture
) -> None:
    collector_state.reject_names.add("bad-score")
    client = make_client(collector_http, logger)

    client.score(traceId="t-1", name="bad-score", value=1)
    client.score(traceId="t-1", name="good-score", value=1)
    with caplog.at_level(logging.ERROR, logger=logger.name):
        await client.flush()

    assert len(collector_state.events) == 2
    assert any("rejected" in r.getMessage() for r in caplog.records)
    await client.shutdown()


@pytest.mark.asyncio
async def test_prompts_are_cached_across_calls(collector_http, collector_state, logger) -> None:
    collector_state.prompts["greeting"] = {
        "name": "greeting",
        "version": 4,
        "type": "text",
        "prompt": "Hello {{name}}",
        "labels": ["production"],
    }
    client = make_client(collector_http, logger)

    first = await client.prompts.get("greeting")
    second = await client.prompts.get("greeting")

    assert first.version == 4 and first is second
    assert collector_state.prompt_fetches == ["greeting"]
    await client.shutdown()


@pytest.mark.asyncio
async def test_missing_credentials_warn(collector_http, logger, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger=logger.name):
        client = TracewireClient(
            logger=logger, http_client=collector_http, storage_client=collector_http, public_key="pk-only"
        )

    assert any("credentials missing" in r.getMessage() for r in caplog.records)
    await client.shutdown()
