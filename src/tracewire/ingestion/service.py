"""Fire-and-forget API for recording traces, observations and scores."""
from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, Mapping, Optional

from pydantic_core import to_json

from ..media.codec import MediaReferenceCodec
from .events import EventType, FlushReport, IngestionEvent, new_id, utc_now_iso
from .queue import EventQueue
from .scheduler import FlushScheduler

MEDIA_FIELDS = ("input", "output", "metadata")
DEFAULT_MAX_EVENT_SIZE_BYTES = 1_000_000
TRUNCATED_MARKER = "<truncated due to size exceeding limit>"


def is_in_sample(trace_id: str, sample_rate: Optional[float]) -> bool:
    """Consistent sampling decision: a trace id is always kept or always dropped."""

    if sample_rate is None:
        return True
    if sample_rate <= 0:
        return False
    if sample_rate >= 1:
        return True
    digest = hashlib.sha256(trace_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big") / 0xFFFFFFFF < sample_rate


def json_byte_size(value: Any) -> int:
    """Size of ``value`` as compact UTF-8 JSON."""

    return len(to_json(value, serialize_unknown=True))


def truncate_event_body(body: Any, max_bytes: int) -> Any:
    """Replace the largest of ``input``, ``output`` and ``metadata`` until ``body`` fits ``max_bytes``.

    Anything that already fits or has no truncatable field is returned as
    is. The given body is never modified.
    """

    if not isinstance(body, Mapping) or json_byte_size(body) <= max_bytes:
        return body
    candidates = sorted(
        (field for field in MEDIA_FIELDS if field in body),
        key=lambda field: json_byte_size(body[field]),
        reverse=True,
    )
    if not candidates:
        return body
    truncated = dict(body)
    for field in candidates:
        truncated[field] = TRUNCATED_MARKER
        if json_byte_size(truncated) <= max_bytes:
            break
    return truncated


class IngestionService:
    def __init__(
        self,
        queue: EventQueue,
        scheduler: FlushScheduler,
        *,
        logger: logging.Logger,
        media: Optional[MediaReferenceCodec] = None,
        environment: Optional[str] = None,
        release: Optional[str] = None,
        sample_rate: Optional[float] = None,
        enabled: bool = True,
        max_event_size_bytes: int = DEFAULT_MAX_EVENT_SIZE_BYTES,
    ) -> None:
        self.queue = queue
        self.scheduler = scheduler
        self.logger = logger
        self.media = media
        self.environment = environment
        self.release = release
        self.sample_rate = sample_rate
        self.enabled = enabled
        self.max_event_size_bytes = max_event_size_bytes

    def trace(self, body: Mapping[str, Any]) -> str:
        data = dict(body)
        data.setdefault("id", new_id())
        data.setdefault("timestamp", utc_now_iso())
        self._apply_defaults(data, release=True)
        return self.enqueue(EventType.TRACE_CREATE, data)

    def span(self, body: Mapping[str, Any]) -> str:
        return self._observation(EventType.SPAN_CREATE, body)

    def update_span(self, body: Mapping[str, Any]) -> str:
        return self._observation_update(EventType.SPAN_UPDATE, body)

    def generation(self, body: Mapping[str, Any]) -> str:
        return self._observation(EventType.GENERATION_CREATE, body)

    def update_generation(self, body: Mapping[str, Any]) -> str:
        return self._observation_update(EventType.GENERATION_UPDATE, body)

    def event(self, body: Mapping[str, Any]) -> str:
        return self._observation(EventType.EVENT_CREATE, body)

    def score(self, body: Mapping[str, Any]) -> str:
        data = dict(body)
        data.setdefault("id", new_id())
        self._apply_defaults(data)
        return self.enqueue(EventType.SCORE_CREATE, data)

    def enqueue(self, event_type: EventType, body: Dict[str, Any]) -> str:
        """Queue one event and return its body id.

        Oversized bodies are truncated before queueing; disabled or sampled-out
        calls queue nothing.
        """

        body_id = str(body.get("id") or "")
        if not self.enabled:
            return body_id
        trace_id = body.get("id") if event_type is EventType.TRACE_CREATE else body.get("traceId")
        if trace_id and not is_in_sample(str(trace_id), self.sample_rate):
            self.logger.debug("Trace %s not in sample, skipping %s event", trace_id, event_type.value)
            return body_id
        if self.media is not None:
            self._externalize_media(event_type, body, trace_id)
        fitted = truncate_event_body(body, self.max_event_size_bytes)
        if fitted is not body:
            self.logger.warning(
                "%s event %s exceeds %s bytes; truncated its largest fields",
                event_type.value,
                body_id,
                self.max_event_size_bytes,
            )
            body = fitted
        if self.queue.enqueue(IngestionEvent(type=event_type, body=body)):
            self.scheduler.notify_enqueued()
        return body_id

    async def flush(self) -> FlushReport:
        return await self.scheduler.flush()

    async def flush_pending(self) -> None:
        await self.scheduler.flush_pending()

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()

    def _observation(self, event_type: EventType, body: Mapping[str, Any]) -> str:
        data = dict(body)
        data.setdefault("id", new_id())
        data.setdefault("startTime", utc_now_iso())
        self._apply_defaults(data)
        return self.enqueue(event_type, data)

    def _observation_update(self, event_type: EventType, body: Mapping[str, Any]) -> str:
        data = dict(body)
        if not data.get("id"):
            raise ValueError(f"{event_type.value} requires the id of the observation to update")
        return self.enqueue(event_type, data)

    def _apply_defaults(self, data: Dict[str, Any], *, release: bool = False) -> None:
        if self.environment and "environment" not in data:
            data["environment"] = self.environment
        if release and self.release and "release" not in data:
            data["release"] = self.release

    def _externalize_media(self, event_type: EventType, body: Dict[str, Any], trace_id: Any) -> None:
        assert self.media is not None
        observation_id = None if event_type is EventType.TRACE_CREATE else body.get("id")
        for field in MEDIA_FIELDS:
            if body.get(field) is None:
                continue
            body[field] = self.media.scan_and_replace(
                body[field],
                trace_id=str(trace_id) if trace_id else None,
                observation_id=str(observation_id) if observation_id else None,
                field=field,
            )
