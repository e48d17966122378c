"""Thin async client for the Tracewire public REST API."""
from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional
from urllib.parse import quote

import httpx

from ..core.errors import ApiError, TransportError
from .models import (
    DatasetItemPage,
    IngestionResponse,
    MediaRecord,
    MediaUploadRequest,
    MediaUploadStatus,
    MediaUploadUrl,
)

INGESTION_PATH = "/api/public/ingestion"
PROMPTS_PATH = "/api/public/v2/prompts"
MEDIA_PATH = "/api/public/media"
DATASETS_PATH = "/api/public/v2/datasets"
DATASET_ITEMS_PATH = "/api/public/dataset-items"
DATASET_RUN_ITEMS_PATH = "/api/public/dataset-run-items"


def _segment(value: str) -> str:
    return quote(value, safe="")


class ApiClient:
    """Resource methods over a shared ``httpx.AsyncClient``.

    ``http`` talks to the API with SDK credentials; ``storage_http`` is used
    for presigned upload and download URLs and defaults to ``http``.
    """

    def __init__(self, http: httpx.AsyncClient, *, storage_http: Optional[httpx.AsyncClient] = None) -> None:
        self.http = http
        self.storage_http = storage_http or http

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        kwargs: Dict[str, Any] = {}
        if json is not None:
            kwargs["json"] = json
        if params:
            kwargs["params"] = {key: value for key, value in params.items() if value is not None}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self.http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 300:
            raise ApiError(response.status_code, response.text, url=str(response.request.url))
        return response

    async def ingestion_batch(self, batch: Iterable[Mapping[str, Any]]) -> IngestionResponse:
        payload = {"batch": list(batch)}
        response = await self._request("POST", INGESTION_PATH, json=payload)
        if not response.content:
            return IngestionResponse()
        return IngestionResponse.model_validate(response.json())

    async def get_prompt(
        self,
        name: str,
        *,
        version: Optional[int] = None,
        label: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        response = await self._request(
            "GET",
            f"{PROMPTS_PATH}/{_segment(name)}",
            params={"version": version, "label": label},
            timeout=timeout,
        )
        return response.json()

    async def create_prompt(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._request("POST", PROMPTS_PATH, json=dict(body))
        return response.json()

    async def update_prompt_labels(self, name: str, version: int, new_labels: Iterable[str]) -> Dict[str, Any]:
        response = await self._request(
            "PATCH",
            f"{PROMPTS_PATH}/{_segment(name)}/versions/{version}",
            json={"newLabels": list(new_labels)},
        )
        return response.json()

    async def get_media_upload_url(self, request: MediaUploadRequest) -> MediaUploadUrl:
        response = await self._request("POST", MEDIA_PATH, json=request.to_wire())
        return MediaUploadUrl.model_validate(response.json())

    async def patch_media(self, media_id: str, status: MediaUploadStatus) -> None:
        await self._request("PATCH", f"{MEDIA_PATH}/{_segment(media_id)}", json=status.to_wire())

    async def get_media(self, media_id: str) -> MediaRecord:
        response = await self._request("GET", f"{MEDIA_PATH}/{_segment(media_id)}")
        return MediaRecord.model_validate(response.json())

    async def upload_bytes(self, url: str, content: bytes, headers: Mapping[str, str]) -> httpx.Response:
        """PUT raw bytes to a presigned URL and return the response whatever its status."""

        try:
            return await self.storage_http.put(url, content=content, headers=dict(headers), auth=None)
        except httpx.HTTPError as exc:
            raise TransportError(f"PUT {url} failed: {exc}") from exc

    async def download_bytes(self, url: str) -> bytes:
        try:
            response = await self.storage_http.get(url, auth=None)
        except httpx.HTTPError as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        if response.status_code != 200:
            raise ApiError(response.status_code, response.text, url=url)
        return response.content

    async def get_dataset(self, name: str) -> Dict[str, Any]:
        response = await self._request("GET", f"{DATASETS_PATH}/{_segment(name)}")
        return response.json()

    async def list_dataset_items(self, dataset_name: str, *, page: int = 1, limit: int = 50) -> DatasetItemPage:
        response = await self._request(
            "GET",
            DATASET_ITEMS_PATH,
            params={"datasetName": dataset_name, "page": page, "limit": limit},
        )
        return DatasetItemPage.model_validate(response.json())

    async def create_dataset_run_item(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._request("POST", DATASET_RUN_ITEMS_PATH, json=dict(body))
        return response.json()
