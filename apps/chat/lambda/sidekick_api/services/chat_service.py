"""Application service for chats and message sending."""

import asyncio
import logging
import uuid
from datetime import UTC, datetime

from sidekick_api.config import AppConfig, get_provider_descriptor
from sidekick_api.constants import CHAT_LIST_LIMIT, DEFAULT_CHAT_TITLE, FREE_TIER_PLAN
from sidekick_api.errors import (
    InternalError,
    NotFound,
    PermissionDenied,
    ResourceExhausted,
)
from sidekick_api.message_mappers import MessageNormalizer
from sidekick_api.model_registry import CapabilityRegistry
from sidekick_api.orchestration.base import ChatOrchestrator
from sidekick_api.schemas import (
    ChatMessage,
    ChatSummary,
    ConversationTurn,
    ModelDescriptor,
    SendMessageRequest,
    SendMessageResponse,
)
from sidekick_api.storage.base import ChatRecord, ChatStore, ProjectRecord

logger = logging.getLogger(__name__)


def build_project_turns(project: ProjectRecord) -> list[ConversationTurn]:
    """System turns for a project, in the order they lead the conversation."""
    turns: list[ConversationTurn] = []
    file_context = "\n\n".join(
        f"File: {file.name}\nContent: {file.content}" for file in project.files if file.content
    )
    if file_context:
        turns.append(ConversationTurn.system(f"Project Files:\n{file_context}"))
    if project.system_prompt:
        turns.append(ConversationTurn.system(project.system_prompt))
    if project.shared_context:
        turns.append(ConversationTurn.system(f"Project Context: {project.shared_context}"))
    if project.instructions:
        turns.append(ConversationTurn.system(f"Project Instructions: {project.instructions}"))
    return turns


def to_summary(chat: ChatRecord) -> ChatSummary:
    return ChatSummary(
        id=chat.chat_id,
        title=chat.title,
        project_id=chat.project_id,
        message_count=chat.message_count,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
    )


class ChatService:
    def __init__(
        self,
        config: AppConfig,
        store: ChatStore,
        normalizer: MessageNormalizer,
        orchestrator: ChatOrchestrator,
        registry: CapabilityRegistry,
    ) -> None:
        self._config = config
        self._store = store
        self._normalizer = normalizer
        self._orchestrator = orchestrator
        self._registry = registry

    async def _get_owned_chat(self, user_id: str, chat_id: str) -> ChatRecord:
        chat = await self._store.get_chat(chat_id)
        if chat is None:
            raise NotFound("Chat not found")
        if chat.user_id != user_id:
            raise PermissionDenied("Access denied")
        return chat

    async def _check_quota(self, user_id: str) -> None:
        user = await self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        if (
            user.plan == FREE_TIER_PLAN
            and user.messages_this_month >= self._config.free_tier_monthly_limit
        ):
            logger.info(
                "Monthly message limit reached",
                extra={"user_id": user_id, "messages_this_month": user.messages_this_month},
            )
            raise ResourceExhausted("Monthly message limit exceeded")

    async def _build_turns(
        self, chat: ChatRecord, request: SendMessageRequest
    ) -> tuple[list[ConversationTurn], ConversationTurn]:
        project_turns: list[ConversationTurn] = []
        if chat.project_id:
            project = await self._store.get_project(chat.project_id)
            if project is not None:
                project_turns = build_project_turns(project)

        history = await self._store.get_recent_messages(chat.chat_id, self._config.history_limit)
        turns = project_turns + [message.to_turn() for message in history]

        file_turn = await self._normalizer.prepare_file_context(request.provider, request.files)
        if file_turn is not None:
            turns.append(file_turn)

        user_turn = ConversationTurn(
            role="user",
            content=request.content,
            images=tuple(request.images),
            files=tuple(request.files),
        )
        turns.append(user_turn)
        logger.info(
            "Conversation assembled",
            extra={
                "chat_id": chat.chat_id,
                "project_turn_count": len(project_turns),
                "history_count": len(history),
                "has_file_turn": file_turn is not None,
                "message_count": len(turns),
            },
        )
        return turns, user_turn

    async def send_message(
        self,
        user_id: str,
        chat_id: str,
        request: SendMessageRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> SendMessageResponse:
        logger.info(
            "Chat request received",
            extra={
                "chat_id": chat_id,
                "provider": request.provider,
                "model": request.model,
                "image_count": len(request.images),
                "file_count": len(request.files),
            },
        )
        chat = await self._get_owned_chat(user_id, chat_id)
        await self._check_quota(user_id)
        get_provider_descriptor(request.provider)
        self._config.api_key(request.provider)

        turns, user_turn = await self._build_turns(chat, request)
        result = await self._orchestrator.run(
            turns, request.provider, request.model, cancel_event=cancel_event
        )

        user_message = ChatMessage(
            id=uuid.uuid4().hex,
            chat_id=chat_id,
            role="user",
            content=user_turn.content,
            timestamp=datetime.now(UTC),
            images=list(user_turn.images),
            files=list(user_turn.files),
        )
        assistant_message = ChatMessage(
            id=uuid.uuid4().hex,
            chat_id=chat_id,
            role="assistant",
            content=result.content,
            timestamp=datetime.now(UTC),
            model=request.model,
            provider=request.provider,
            token_count=result.usage.total_tokens,
        )
        try:
            await self._store.append_messages(chat_id, [user_message, assistant_message])
        except Exception as exc:
            logger.exception("Failed to persist chat messages", extra={"chat_id": chat_id})
            raise InternalError("Failed to save message") from exc

        try:
            await self._store.increment_usage(user_id)
        except Exception as exc:
            logger.exception("Failed to record message usage", extra={"user_id": user_id})
            raise InternalError("Failed to record usage") from exc

        logger.info(
            "Chat message completed",
            extra={
                "chat_id": chat_id,
                "provider": request.provider,
                "model": request.model,
                "total_tokens": result.usage.total_tokens,
                "duration_seconds": result.duration_seconds,
            },
        )
        return SendMessageResponse(message=assistant_message, usage=result.usage)

    async def create_chat(self, user_id: str, project_id: str | None = None) -> ChatSummary:
        if project_id:
            project = await self._store.get_project(project_id)
            if project is None or project.user_id != user_id:
                raise PermissionDenied("Access denied to project")
        chat = await self._store.create_chat(user_id, project_id, DEFAULT_CHAT_TITLE)
        return to_summary(chat)

    async def list_chats(self, user_id: str, limit: int = CHAT_LIST_LIMIT) -> list[ChatSummary]:
        chats = await self._store.list_chats(user_id, limit)
        return [to_summary(chat) for chat in chats]

    async def delete_chat(self, user_id: str, chat_id: str) -> None:
        await self._get_owned_chat(user_id, chat_id)
        await self._store.delete_chat(chat_id)
        logger.info("Chat deleted", extra={"chat_id": chat_id})

    async def update_chat_title(self, user_id: str, chat_id: str, title: str) -> None:
        await self._get_owned_chat(user_id, chat_id)
        await self._store.update_chat_title(chat_id, title)

    async def list_models(self) -> list[ModelDescriptor]:
        return await self._registry.list_available_models(self._config.credential_flags)
