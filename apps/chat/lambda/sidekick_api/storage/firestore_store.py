"""Firestore-backed chat store.

Layout: ``users/{uid}`` (``subscription.plan``, ``usage.messagesThisMonth``),
``chats/{chatId}`` with a ``messages`` subcollection, and ``projects/{id}``.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from firebase_admin import firestore

from sidekick_api.constants import FREE_TIER_PLAN
from sidekick_api.schemas import ChatMessage

from .base import ChatRecord, ProjectFile, ProjectRecord, UserRecord

logger = logging.getLogger(__name__)


def _as_datetime(value: Any) -> datetime:
    return value if isinstance(value, datetime) else datetime.now(UTC)


def _chat_from_snapshot(snapshot: Any) -> ChatRecord:
    data = snapshot.to_dict() or {}
    return ChatRecord(
        chat_id=snapshot.id,
        user_id=data.get("userId", ""),
        title=data.get("title", ""),
        created_at=_as_datetime(data.get("createdAt")),
        updated_at=_as_datetime(data.get("updatedAt")),
        project_id=data.get("projectId"),
        message_count=int(data.get("messageCount", 0)),
    )


class FirestoreChatStore:
    def __init__(self, client: Any) -> None:
        self._db = client

    def _chat_ref(self, chat_id: str) -> Any:
        return self._db.collection("chats").document(chat_id)

    async def get_user(self, user_id: str) -> UserRecord | None:
        snapshot = await self._db.collection("users").document(user_id).get()
        if not snapshot.exists:
            return None
        data = snapshot.to_dict() or {}
        return UserRecord(
            user_id=user_id,
            plan=(data.get("subscription") or {}).get("plan", FREE_TIER_PLAN),
            messages_this_month=int((data.get("usage") or {}).get("messagesThisMonth", 0)),
        )

    async def increment_usage(self, user_id: str) -> None:
        await self._db.collection("users").document(user_id).update(
            {"usage.messagesThisMonth": firestore.Increment(1)}
        )

    async def get_chat(self, chat_id: str) -> ChatRecord | None:
        snapshot = await self._chat_ref(chat_id).get()
        if not snapshot.exists:
            return None
        return _chat_from_snapshot(snapshot)

    async def create_chat(self, user_id: str, project_id: str | None, title: str) -> ChatRecord:
        chat_ref = self._db.collection("chats").document()
        batch = self._db.batch()
        batch.set(
            chat_ref,
            {
                "userId": user_id,
                "projectId": project_id,
                "title": title,
                "createdAt": firestore.SERVER_TIMESTAMP,
                "updatedAt": firestore.SERVER_TIMESTAMP,
                "messageCount": 0,
            },
        )
        if project_id:
            batch.update(
                self._db.collection("projects").document(project_id),
                {"chatCount": firestore.Increment(1), "updatedAt": firestore.SERVER_TIMESTAMP},
            )
        await batch.commit()
        logger.info("Chat created", extra={"chat_id": chat_ref.id, "project_id": project_id})

        now = datetime.now(UTC)
        return ChatRecord(
            chat_id=chat_ref.id,
            user_id=user_id,
            title=title,
            created_at=now,
            updated_at=now,
            project_id=project_id,
        )

    async def list_chats(self, user_id: str, limit: int) -> list[ChatRecord]:
        query = (
            self._db.collection("chats")
            .where("userId", "==", user_id)
            .order_by("updatedAt", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        return [_chat_from_snapshot(snapshot) async for snapshot in query.stream()]

    async def update_chat_title(self, chat_id: str, title: str) -> None:
        await self._chat_ref(chat_id).update(
            {"title": title, "updatedAt": firestore.SERVER_TIMESTAMP}
        )

    async def delete_chat(self, chat_id: str) -> None:
        chat_ref = self._chat_ref(chat_id)
        batch = self._db.batch()
        async for snapshot in chat_ref.collection("messages").stream():
            batch.delete(snapshot.reference)
        batch.delete(chat_ref)
        await batch.commit()

    async def get_recent_messages(self, chat_id: str, limit: int) -> list[ChatMessage]:
        query = (
            self._chat_ref(chat_id)
            .collection("messages")
            .order_by("timestamp", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        newest_first = [
            ChatMessage.model_validate({**(snapshot.to_dict() or {}), "id": snapshot.id})
            async for snapshot in query.stream()
        ]
        return list(reversed(newest_first))

    async def append_message(self, chat_id: str, message: ChatMessage) -> None:
        await self.append_messages(chat_id, [message])

    async def append_messages(self, chat_id: str, messages: Sequence[ChatMessage]) -> None:
        """Write the messages and bump the chat counter in one batch."""
        chat_ref = self._chat_ref(chat_id)
        batch = self._db.batch()
        for message in messages:
            batch.set(
                chat_ref.collection("messages").document(message.id),
                message.model_dump(by_alias=True, exclude={"id"}),
            )
        batch.update(
            chat_ref,
            {
                "messageCount": firestore.Increment(len(messages)),
                "updatedAt": firestore.SERVER_TIMESTAMP,
            },
        )
        await batch.commit()

    async def get_project(self, project_id: str) -> ProjectRecord | None:
        snapshot = await self._db.collection("projects").document(project_id).get()
        if not snapshot.exists:
            return None
        data = snapshot.to_dict() or {}
        settings = data.get("settings") or {}
        return ProjectRecord(
            project_id=project_id,
            user_id=data.get("userId", ""),
            instructions=settings.get("instructions") or "",
            system_prompt=settings.get("systemPrompt") or "",
            shared_context=data.get("sharedContext") or "",
            files=tuple(
                ProjectFile(name=item.get("name", ""), content=item.get("content") or "")
                for item in settings.get("files") or []
            ),
            chat_count=int(data.get("chatCount", 0)),
        )
