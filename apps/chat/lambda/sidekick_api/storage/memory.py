"""In-process chat store for local runs and tests."""

import uuid
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime

from sidekick_api.schemas import ChatMessage

from .base import ChatRecord, ProjectRecord, UserRecord


class InMemoryChatStore:
    def __init__(
        self,
        users: list[UserRecord] | None = None,
        projects: list[ProjectRecord] | None = None,
    ) -> None:
        self.users: dict[str, UserRecord] = {user.user_id: user for user in users or []}
        self.projects: dict[str, ProjectRecord] = {
            project.project_id: project for project in projects or []
        }
        self.chats: dict[str, ChatRecord] = {}
        self.messages: dict[str, list[ChatMessage]] = {}

    def add_user(self, user: UserRecord) -> None:
        self.users[user.user_id] = user

    def add_project(self, project: ProjectRecord) -> None:
        self.projects[project.project_id] = project

    async def get_user(self, user_id: str) -> UserRecord | None:
        return self.users.get(user_id)

    async def increment_usage(self, user_id: str) -> None:
        user = self.users.get(user_id) or UserRecord(user_id=user_id)
        self.users[user_id] = replace(user, messages_this_month=user.messages_this_month + 1)

    async def get_chat(self, chat_id: str) -> ChatRecord | None:
        return self.chats.get(chat_id)

    async def create_chat(self, user_id: str, project_id: str | None, title: str) -> ChatRecord:
        now = datetime.now(UTC)
        chat = ChatRecord(
            chat_id=uuid.uuid4().hex,
            user_id=user_id,
            title=title,
            created_at=now,
            updated_at=now,
            project_id=project_id,
        )
        self.chats[chat.chat_id] = chat
        self.messages[chat.chat_id] = []
        if project_id and project_id in self.projects:
            project = self.projects[project_id]
            self.projects[project_id] = replace(project, chat_count=project.chat_count + 1)
        return chat

    async def list_chats(self, user_id: str, limit: int) -> list[ChatRecord]:
        owned = [chat for chat in self.chats.values() if chat.user_id == user_id]
        owned.sort(key=lambda chat: chat.updated_at, reverse=True)
        return owned[:limit]

    async def update_chat_title(self, chat_id: str, title: str) -> None:
        chat = self.chats[chat_id]
        self.chats[chat_id] = replace(chat, title=title, updated_at=datetime.now(UTC))

    async def delete_chat(self, chat_id: str) -> None:
        self.chats.pop(chat_id, None)
        self.messages.pop(chat_id, None)

    async def get_recent_messages(self, chat_id: str, limit: int) -> list[ChatMessage]:
        history = sorted(self.messages.get(chat_id, []), key=lambda message: message.timestamp)
        return history[-limit:] if limit > 0 else []

    async def append_message(self, chat_id: str, message: ChatMessage) -> None:
        await self.append_messages(chat_id, [message])

    async def append_messages(self, chat_id: str, messages: Sequence[ChatMessage]) -> None:
        self.messages.setdefault(chat_id, []).extend(messages)
        chat = self.chats.get(chat_id)
        if chat is not None:
            self.chats[chat_id] = replace(
                chat,
                message_count=chat.message_count + len(messages),
                updated_at=datetime.now(UTC),
            )

    async def get_project(self, project_id: str) -> ProjectRecord | None:
        return self.projects.get(project_id)
