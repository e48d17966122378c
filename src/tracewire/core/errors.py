"""Exception hierarchy for Tracewire."""
from __future__ import annotations

from typing import Optional


class TracewireError(RuntimeError):
    """Base class for SDK errors."""


class ApiError(TracewireError):
    """Raised when the collection API answers with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", *, url: Optional[str] = None) -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        target = f" from {url}" if url else ""
        super().__init__(f"HTTP {status_code}{target}: {body[:200]}")


class TransportError(TracewireError):
    """Raised when a request fails before a response is received."""


class MediaIntegrityError(TracewireError):
    """Raised when the server-assigned media id differs from the client-computed one."""

    def __init__(self, client_id: str, server_id: str) -> None:
        self.client_id = client_id
        self.server_id = server_id
        super().__init__(
            f"Media ID mismatch between SDK ({client_id}) and server ({server_id}). Upload cancelled."
        )


class InvalidMediaReference(TracewireError, ValueError):
    """Raised when a media reference token cannot be parsed."""
