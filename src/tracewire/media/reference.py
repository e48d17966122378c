"""Content-addressed media references.

A reference token stands in for an inline binary payload::

    @@@tracewireMedia:type=image/png|id=<contentId>|source=base64_data_uri@@@

The content id is the URL-safe base64 SHA-256 of the bytes truncated to 22
characters, so identical bytes always map to the same token.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from ..core.errors import InvalidMediaReference

REFERENCE_PREFIX = "@@@tracewireMedia:"
REFERENCE_SUFFIX = "@@@"
REFERENCE_PATTERN = re.compile(r"@@@tracewireMedia:.+?@@@")
DATA_URI_PATTERN = re.compile(r"data:[^;,\s\"']+;base64,[A-Za-z0-9+/]+=*")
CONTENT_ID_LENGTH = 22

SOURCE_BASE64_DATA_URI = "base64_data_uri"
SOURCE_BYTES = "bytes"

HASHING_AVAILABLE = "sha256" in hashlib.algorithms_available


@dataclass(frozen=True, slots=True)
class ParsedMediaReference:
    media_id: str
    content_type: str
    source: str


def sha256_base64(content: bytes) -> Optional[str]:
    """Return the base64 SHA-256 digest, or ``None`` when hashing is unavailable."""

    if not HASHING_AVAILABLE:
        return None
    try:
        digest = hashlib.sha256(content).digest()
    except (ValueError, TypeError):
        return None
    return base64.b64encode(digest).decode("ascii")


def content_id_from_hash(sha256_hash: str) -> str:
    return sha256_hash.replace("+", "-").replace("/", "_")[:CONTENT_ID_LENGTH]


def format_reference(content_type: str, media_id: str, source: str) -> str:
    return f"{REFERENCE_PREFIX}type={content_type}|id={media_id}|source={source}{REFERENCE_SUFFIX}"


def build_reference(content: bytes, content_type: str, origin: str = SOURCE_BYTES) -> Optional[str]:
    """Derive the reference token for ``content``; ``None`` means media handling is unavailable."""

    sha256_hash = sha256_base64(content)
    if sha256_hash is None:
        return None
    return format_reference(content_type, content_id_from_hash(sha256_hash), origin)


def parse_reference(token: str) -> ParsedMediaReference:
    if not token.startswith(REFERENCE_PREFIX):
        raise InvalidMediaReference(f"Reference string does not start with {REFERENCE_PREFIX!r}")
    if not token.endswith(REFERENCE_SUFFIX) or len(token) < len(REFERENCE_PREFIX) + len(REFERENCE_SUFFIX):
        raise InvalidMediaReference(f"Reference string does not end with {REFERENCE_SUFFIX!r}")

    content = token[len(REFERENCE_PREFIX):-len(REFERENCE_SUFFIX)]
    fields = {}
    for pair in content.split("|"):
        key, _, value = pair.partition("=")
        fields[key] = value
    if not all(fields.get(key) for key in ("type", "id", "source")):
        raise InvalidMediaReference("Missing required fields in reference string")
    return ParsedMediaReference(media_id=fields["id"], content_type=fields["type"], source=fields["source"])


def parse_data_uri(data_uri: str) -> Tuple[bytes, str]:
    """Split ``data:<type>;base64,<payload>`` into bytes and content type."""

    if not data_uri.startswith("data:"):
        raise ValueError("Data URI does not start with 'data:'")
    header, sep, payload = data_uri[5:].partition(",")
    if not sep or not header or not payload:
        raise ValueError("Invalid data URI")
    header_parts = header.split(";")
    if "base64" not in header_parts[1:]:
        raise ValueError("Data URI is not base64 encoded")
    content_type = header_parts[0]
    if not content_type:
        raise ValueError("Data URI content type is empty")
    try:
        content = base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Data URI payload is not valid base64: {exc}") from exc
    return content, content_type


def to_data_uri(content: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(content).decode('ascii')}"


class Media:
    """A binary payload prepared for externalization."""

    def __init__(
        self,
        *,
        content_bytes: Optional[bytes] = None,
        content_type: Optional[str] = None,
        source: str = SOURCE_BYTES,
    ) -> None:
        self.content_bytes = content_bytes
        self.content_type = content_type
        self.source = source
        self._sha256_hash: Optional[str] = None

    @classmethod
    def from_data_uri(cls, data_uri: str, *, logger: logging.Logger) -> "Media":
        try:
            content, content_type = parse_data_uri(data_uri)
        except ValueError as exc:
            logger.error("Error parsing base64 data URI: %s", exc)
            return cls(source=SOURCE_BASE64_DATA_URI)
        return cls(content_bytes=content, content_type=content_type, source=SOURCE_BASE64_DATA_URI)

    @property
    def content_length(self) -> Optional[int]:
        return len(self.content_bytes) if self.content_bytes is not None else None

    @property
    def sha256_hash(self) -> Optional[str]:
        if self.content_bytes is None:
            return None
        if self._sha256_hash is None:
            self._sha256_hash = sha256_base64(self.content_bytes)
        return self._sha256_hash

    @property
    def id(self) -> Optional[str]:
        sha256_hash = self.sha256_hash
        return content_id_from_hash(sha256_hash) if sha256_hash else None

    @property
    def reference(self) -> Optional[str]:
        media_id = self.id
        if not self.content_type or media_id is None:
            return None
        return format_reference(self.content_type, media_id, self.source)

    @property
    def base64_data_uri(self) -> Optional[str]:
        if self.content_bytes is None or not self.content_type:
            return None
        return to_data_uri(self.content_bytes, self.content_type)

    def __repr__(self) -> str:
        return f"Media(type={self.content_type!r}, id={self.id!r}, length={self.content_length!r})"
