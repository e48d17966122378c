"""Wire models for the collection API."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class IngestionSuccess(ApiModel):
    id: str
    status: int = 201


class IngestionFailure(ApiModel):
    id: str
    status: int = 400
    message: Optional[str] = None
    error: Any = None


class IngestionResponse(ApiModel):
    successes: List[IngestionSuccess] = Field(default_factory=list)
    errors: List[IngestionFailure] = Field(default_factory=list)


class MediaUploadRequest(ApiModel):
    content_length: int
    content_type: str
    sha256_hash: str
    trace_id: Optional[str] = None
    observation_id: Optional[str] = None
    field: str = "input"


class MediaUploadUrl(ApiModel):
    media_id: str
    upload_url: Optional[str] = None


class MediaUploadStatus(ApiModel):
    uploaded_at: datetime
    upload_http_status: int
    upload_http_error: Optional[str] = None
    upload_time_ms: Optional[int] = None


class MediaRecord(ApiModel):
    media_id: str
    content_type: str
    content_length: Optional[int] = None
    url: str
    url_expiry: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class PageMeta(ApiModel):
    page: int = 1
    limit: int = 50
    total_items: int = 0
    total_pages: int = 0


class DatasetItemPage(ApiModel):
    data: List[Dict[str, Any]] = Field(default_factory=list)
    meta: PageMeta = Field(default_factory=PageMeta)
