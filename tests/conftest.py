"""Shared fixtures: component loggers and an in-process fake collection service."""

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Tuple

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI, HTTPException, Request, Response

from tracewire.api.client import ApiClient

COLLECTOR_URL = "http://collector.test"
STORAGE_URL = "http://storage.test"


@pytest.fixture
def logger() -> logging.Logger:
    test_logger = logging.getLogger("tests.tracewire")
    test_logger.setLevel(logging.DEBUG)
    return test_logger


@dataclass
class CollectorState:
    """Everything the fake collector received, for assertions."""

    batches: List[List[Dict[str, Any]]] = field(default_factory=list)
    reject_names: set = field(default_factory=set)
    media: Dict[str, Tuple[str, bytes]] = field(default_factory=dict)
    upload_requests: List[Dict[str, Any]] = field(default_factory=list)
    uploads: List[str] = field(default_factory=list)
    patches: List[Dict[str, Any]] = field(default_factory=list)
    prompts: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    prompt_fetches: List[str] = field(default_factory=list)

    @property
    def events(self) -> List[Dict[str, Any]]:
        return [event for batch in self.batches for event in batch]


def _media_id(sha256_hash: str) -> str:
    return sha256_hash.replace("+", "-").replace("/", "_")[:22]


def build_collector(state: CollectorState) -> FastAPI:
    app = FastAPI()
    pending_types: Dict[str, str] = {}

    @app.post("/api/public/ingestion", status_code=207)
    async def ingest(payload: Dict[str, Any]) -> Dict[str, Any]:
        batch = payload["batch"]
        state.batches.append(batch)
        successes, errors = [], []
        for event in batch:
            if event["body"].get("name") in state.reject_names:
                errors.append({"id": event["id"], "status": 400, "message": "rejected by test"})
            else:
                successes.append({"id": event["id"], "status": 201})
        return {"successes": successes, "errors": errors}

    @app.post("/api/public/media")
    async def media_upload_url(payload: Dict[str, Any]) -> Dict[str, Any]:
        state.upload_requests.append(payload)
        media_id = _media_id(payload["sha256Hash"])
        if media_id in state.media:
            return {"mediaId": media_id, "uploadUrl": None}
        pending_types[media_id] = payload["contentType"]
        return {"mediaId": media_id, "uploadUrl": f"{STORAGE_URL}/upload/{media_id}"}

    @app.put("/upload/{media_id}")
    async def upload(media_id: str, request: Request) -> Response:
        content = await request.body()
        checksum = base64.b64encode(hashlib.sha256(content).digest()).decode("ascii")
        if request.headers.get("x-amz-checksum-sha256") != checksum:
            return Response(status_code=400, content="checksum mismatch")
        state.media[media_id] = (request.headers["content-type"], content)
        state.uploads.append(media_id)
        return Response(status_code=200)

    @app.patch("/api/public/media/{media_id}", status_code=204)
    async def patch_media(media_id: str, payload: Dict[str, Any]) -> Response:
        state.patches.append({"mediaId": media_id, **payload})
        return Response(status_code=204)

    @app.get("/api/public/media/{media_id}")
    async def get_media(media_id: str) -> Dict[str, Any]:
        if media_id not in state.media:
            raise HTTPException(status_code=404, detail="media not found")
        content_type, content = state.media[media_id]
        return {
            "mediaId": media_id,
            "contentType": content_type,
            "contentLength": len(content),
            "url": f"{STORAGE_URL}/download/{media_id}",
        }

    @app.get("/download/{media_id}")
    async def download(media_id: str) -> Response:
        content_type, content = state.media[media_id]
        return Response(content=content, media_type=content_type)

    @app.get("/api/public/v2/prompts/{name}")
    async def get_prompt(name: str) -> Dict[str, Any]:
        state.prompt_fetches.append(name)
        if name not in state.prompts:
            raise HTTPException(status_code=404, detail="prompt not found")
        return state.prompts[name]

    return app


@pytest.fixture
def collector_state() -> CollectorState:
    return CollectorState()


@pytest_asyncio.fixture
async def collector_http(collector_state: CollectorState) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=build_collector(collector_state))
    async with httpx.AsyncClient(transport=transport, base_url=COLLECTOR_URL) as client:
        yield client


@pytest.fixture
def collector_api(collector_http: httpx.AsyncClient) -> ApiClient:
    return ApiClient(collector_http)
