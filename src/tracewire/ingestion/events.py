"""Ingestion event records and delivery results."""
from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from pydantic_core import to_jsonable_python


class EventType(str, Enum):
    TRACE_CREATE = "trace-create"
    SPAN_CREATE = "span-create"
    SPAN_UPDATE = "span-update"
    GENERATION_CREATE = "generation-create"
    GENERATION_UPDATE = "generation-update"
    EVENT_CREATE = "event-create"
    SCORE_CREATE = "score-create"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True, slots=True)
class IngestionEvent:
    """A single telemetry fact waiting for delivery.

    The body is frozen at construction; the queue and dispatcher only ever
    read it.
    """

    type: EventType
    body: Mapping[str, Any]
    id: str = field(default_factory=new_id)
    timestamp: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        object.__setattr__(self, "body", MappingProxyType(copy.deepcopy(dict(self.body))))

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp,
            "body": to_jsonable_python(dict(self.body)),
        }


@dataclass(slots=True)
class SendResult:
    """Outcome of one batch send; produced instead of raising."""

    batch_size: int
    ok: bool
    rejected: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def delivered(self) -> int:
        if not self.ok:
            return 0
        return self.batch_size - len(self.rejected)


@dataclass(slots=True)
class FlushReport:
    """Aggregate of every batch sent by one flush."""

    results: List[SendResult] = field(default_factory=list)

    @property
    def batches(self) -> int:
        return len(self.results)

    @property
    def delivered(self) -> int:
        return sum(result.delivered for result in self.results)

    @property
    def rejected(self) -> int:
        return sum(len(result.rejected) for result in self.results)

    @property
    def failed_batches(self) -> int:
        return sum(1 for result in self.results if not result.ok)
