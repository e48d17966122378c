"""HTTP utilities for Tracewire clients."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

import httpx

from .config import Settings

SDK_NAME = "tracewire-python"
SDK_VERSION = "0.4.0"


def default_headers(settings: Settings) -> Dict[str, str]:
    headers = {
        "X-Tracewire-Sdk-Name": SDK_NAME,
        "X-Tracewire-Sdk-Version": SDK_VERSION,
    }
    if settings.public_key:
        headers["X-Tracewire-Public-Key"] = settings.public_key
        if not settings.secret_key:
            headers["Authorization"] = f"Bearer {settings.public_key}"
    return headers


def create_async_client(settings: Settings, *, authenticated: bool = True) -> httpx.AsyncClient:
    """Build an HTTP client for API calls, or a plain one for presigned storage URLs.

    Storage URLs carry their own credentials, so the plain client sends no
    SDK headers and no auth.
    """

    limits = httpx.Limits(max_connections=settings.max_connections, max_keepalive_connections=settings.max_connections)
    if not authenticated:
        return httpx.AsyncClient(timeout=settings.timeout_seconds, limits=limits)
    auth = None
    if settings.public_key and settings.secret_key:
        auth = httpx.BasicAuth(settings.public_key, settings.secret_key)
    return httpx.AsyncClient(
        base_url=settings.base_url,
        timeout=settings.timeout_seconds,
        limits=limits,
        headers=default_headers(settings),
        auth=auth,
    )


@asynccontextmanager
async def get_async_client(settings: Settings, *, authenticated: bool = True) -> AsyncIterator[httpx.AsyncClient]:
    async with create_async_client(settings, authenticated=authenticated) as client:
        yield client
