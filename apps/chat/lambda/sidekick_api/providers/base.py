"""Provider interfaces and shared request/response models."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from sidekick_api.schemas import ConversationTurn, FileAttachment, TokenUsage


@dataclass(frozen=True)
class DispatchResult:
    content: str
    usage: TokenUsage
    duration_seconds: float = 0.0


class PayloadMode(str, Enum):
    CHAT = "chat"
    SESSION = "session"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class UploadedFile:
    file_id: str
    file_name: str
    mime_type: str
    url: str


@dataclass
class ProviderPayload:
    provider_id: str
    model_id: str
    mode: PayloadMode = PayloadMode.CHAT
    messages: list[dict[str, Any]] = field(default_factory=list)
    system: str | None = None
    session_turns: list[ConversationTurn] = field(default_factory=list)
    uploaded_files: list[UploadedFile] = field(default_factory=list)
    image_count: int = 0
    skipped_images: int = 0
    cancel_event: asyncio.Event | None = None


class ProviderAdapter(Protocol):
    async def dispatch(self, payload: ProviderPayload) -> DispatchResult:
        """Send a normalized payload to the provider and return a uniform result."""
        ...


class FileStore(Protocol):
    """A provider-side file store used for native file uploads."""

    async def upload(self, file: FileAttachment) -> UploadedFile: ...

    async def delete(self, file_id: str) -> None: ...
