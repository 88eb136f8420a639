"""Persistence records and the store protocol used by the chat service."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from sidekick_api.constants import FREE_TIER_PLAN
from sidekick_api.schemas import ChatMessage


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    plan: str = FREE_TIER_PLAN
    messages_this_month: int = 0


@dataclass(frozen=True)
class ChatRecord:
    chat_id: str
    user_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    project_id: str | None = None
    message_count: int = 0


@dataclass(frozen=True)
class ProjectFile:
    name: str
    content: str = ""


@dataclass(frozen=True)
class ProjectRecord:
    project_id: str
    user_id: str
    instructions: str = ""
    system_prompt: str = ""
    shared_context: str = ""
    files: tuple[ProjectFile, ...] = field(default_factory=tuple)
    chat_count: int = 0


class ChatStore(Protocol):
    """Document-store operations; counters must be atomic increments."""

    async def get_user(self, user_id: str) -> UserRecord | None: ...

    async def increment_usage(self, user_id: str) -> None: ...

    async def get_chat(self, chat_id: str) -> ChatRecord | None: ...

    async def create_chat(self, user_id: str, project_id: str | None, title: str) -> ChatRecord: ...

    async def list_chats(self, user_id: str, limit: int) -> list[ChatRecord]: ...

    async def update_chat_title(self, chat_id: str, title: str) -> None: ...

    async def delete_chat(self, chat_id: str) -> None: ...

    async def get_recent_messages(self, chat_id: str, limit: int) -> list[ChatMessage]:
        """Return the most recent ``limit`` messages, oldest first."""
        ...

    async def append_message(self, chat_id: str, message: ChatMessage) -> None: ...

    async def append_messages(self, chat_id: str, messages: Sequence[ChatMessage]) -> None:
        """Write every message or none of them."""
        ...

    async def get_project(self, project_id: str) -> ProjectRecord | None: ...
