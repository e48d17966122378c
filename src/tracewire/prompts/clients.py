"""Prompt value objects returned by the prompt manager."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union


@dataclass(frozen=True, slots=True)
class BasePrompt:
    name: str
    version: int
    config: Dict[str, Any] = field(default_factory=dict)
    labels: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    commit_message: Optional[str] = None
    is_fallback: bool = False


@dataclass(frozen=True, slots=True)
class TextPrompt(BasePrompt):
    prompt: str = ""
    type: str = "text"


@dataclass(frozen=True, slots=True)
class ChatPrompt(BasePrompt):
    prompt: List[Dict[str, Any]] = field(default_factory=list)
    type: str = "chat"


Prompt = Union[TextPrompt, ChatPrompt]


def prompt_from_response(data: Mapping[str, Any], *, is_fallback: bool = False) -> Prompt:
    """Build a prompt value from an API payload."""

    common = dict(
        name=data["name"],
        version=int(data.get("version") or 0),
        config=dict(data.get("config") or {}),
        labels=list(data.get("labels") or []),
        tags=list(data.get("tags") or []),
        commit_message=data.get("commitMessage"),
        is_fallback=is_fallback,
    )
    if data.get("type") == "chat":
        messages = [
            dict(message) if "type" in message else {"type": "chatmessage", **message}
            for message in data.get("prompt") or []
        ]
        return ChatPrompt(prompt=messages, **common)
    return TextPrompt(prompt=str(data.get("prompt") or ""), **common)
