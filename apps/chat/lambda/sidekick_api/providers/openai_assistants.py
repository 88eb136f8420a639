"""Assistants-API session used for file-only OpenAI requests.

The session walks a fixed protocol: upload files, create an assistant with
the ``file_search`` tool, create a thread, add every turn as a thread
message, then start a run and poll it until it reaches a terminal state.
The assistant and every uploaded file are deleted afterwards, whatever the
outcome.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Any

from openai import AsyncOpenAI

from sidekick_api.constants import (
    ASSISTANT_INSTRUCTIONS,
    ASSISTANT_MAX_POLL_ATTEMPTS,
    ASSISTANT_NAME,
    ASSISTANT_POLL_INTERVAL_SECONDS,
)
from sidekick_api.errors import ProviderError
from sidekick_api.schemas import ConversationTurn, TokenUsage

from .base import DispatchResult, FileStore, UploadedFile

logger = logging.getLogger(__name__)

POLLING_RUN_STATUSES = frozenset({"queued", "in_progress"})
FILE_SEARCH_TOOL = {"type": "file_search"}
EMPTY_FILE_MESSAGE = "Please analyze the attached files."


class SessionState(str, Enum):
    CREATED = "created"
    UPLOADING_FILES = "uploading_files"
    ASSISTANT_CREATED = "assistant_created"
    THREAD_CREATED = "thread_created"
    MESSAGES_ADDED = "messages_added"
    RUN_QUEUED = "run_queued"
    RUN_IN_PROGRESS = "run_in_progress"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_TIMED_OUT = "run_timed_out"
    RUN_CANCELLED = "run_cancelled"


class AssistantSession:
    def __init__(
        self,
        client: AsyncOpenAI,
        file_store: FileStore,
        *,
        poll_interval_seconds: float = ASSISTANT_POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = ASSISTANT_MAX_POLL_ATTEMPTS,
        cancel_event: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._file_store = file_store
        self._poll_interval_seconds = poll_interval_seconds
        self._max_poll_attempts = max_poll_attempts
        self._cancel_event = cancel_event
        self._sleep = sleep
        self.state = SessionState.CREATED
        self.history: list[SessionState] = [SessionState.CREATED]

    def _advance(self, state: SessionState) -> None:
        if self.state == state:
            return
        logger.debug(
            "Assistant session state change",
            extra={"from_state": self.state.value, "to_state": state.value},
        )
        self.state = state
        self.history.append(state)

    async def run(self, model_id: str, turns: Sequence[ConversationTurn]) -> DispatchResult:
        uploaded: list[UploadedFile] = []
        assistant_id: str | None = None
        try:
            self._advance(SessionState.UPLOADING_FILES)
            for turn in turns:
                for file in turn.files:
                    uploaded.append(await self._file_store.upload(file))

            assistant = await self._client.beta.assistants.create(
                name=ASSISTANT_NAME,
                instructions=self._instructions(turns),
                model=model_id,
                tools=[FILE_SEARCH_TOOL],
            )
            assistant_id = assistant.id
            self._advance(SessionState.ASSISTANT_CREATED)

            thread = await self._client.beta.threads.create()
            self._advance(SessionState.THREAD_CREATED)

            await self._add_messages(thread.id, turns, uploaded)
            self._advance(SessionState.MESSAGES_ADDED)

            run = await self._client.beta.threads.runs.create(
                thread.id, assistant_id=assistant_id
            )
            logger.info("Assistant run started", extra={"run_id": run.id})
            run = await self._wait_for_run(thread.id, run)

            if run.status != "completed":
                self._advance(SessionState.RUN_FAILED)
                raise ProviderError("openai", f"Assistant run failed: {run.status}")
            self._advance(SessionState.RUN_COMPLETED)

            return DispatchResult(content=await self._read_reply(thread.id), usage=TokenUsage())
        finally:
            await self._cleanup(assistant_id, uploaded)

    def _instructions(self, turns: Sequence[ConversationTurn]) -> str:
        system_parts = [turn.content for turn in turns if turn.role == "system" and turn.content]
        return "\n\n".join([ASSISTANT_INSTRUCTIONS, *system_parts])

    async def _add_messages(
        self, thread_id: str, turns: Sequence[ConversationTurn], uploaded: Sequence[UploadedFile]
    ) -> None:
        file_ids = {item.file_name: item.file_id for item in uploaded}
        for turn in turns:
            if turn.role == "system":
                continue
            attachments = [
                {"file_id": file_ids[file.file_name], "tools": [FILE_SEARCH_TOOL]}
                for file in turn.files
                if file.file_name in file_ids
            ]
            content = turn.content or (EMPTY_FILE_MESSAGE if attachments else " ")
            await self._client.beta.threads.messages.create(
                thread_id,
                role=turn.role,
                content=content,
                attachments=attachments,
            )

    async def _wait_for_run(self, thread_id: str, run: Any) -> Any:
        attempts = 0
        while run.status in POLLING_RUN_STATUSES:
            self._advance(
                SessionState.RUN_QUEUED if run.status == "queued" else SessionState.RUN_IN_PROGRESS
            )
            if self._cancel_event is not None and self._cancel_event.is_set():
                self._advance(SessionState.RUN_CANCELLED)
                await self._cancel_run(thread_id, run.id)
                raise ProviderError("openai", "Assistant run cancelled")
            if attempts >= self._max_poll_attempts:
                self._advance(SessionState.RUN_TIMED_OUT)
                await self._cancel_run(thread_id, run.id)
                raise ProviderError(
                    "openai", f"Assistant run timed out after {attempts} status checks"
                )
            await self._sleep(self._poll_interval_seconds)
            attempts += 1
            run = await self._client.beta.threads.runs.retrieve(run.id, thread_id=thread_id)
            logger.debug("Assistant run status", extra={"run_id": run.id, "status": run.status})
        return run

    async def _read_reply(self, thread_id: str) -> str:
        messages = await self._client.beta.threads.messages.list(thread_id)
        for message in messages.data:
            if message.role != "assistant" or not message.content:
                continue
            block = message.content[0]
            if block.type == "text":
                return block.text.value
            break
        raise ProviderError("openai", "Assistant run completed without a text reply")

    async def _cancel_run(self, thread_id: str, run_id: str) -> None:
        try:
            await self._client.beta.threads.runs.cancel(run_id, thread_id=thread_id)
        except Exception:
            logger.warning("Failed to cancel assistant run", extra={"run_id": run_id}, exc_info=True)

    async def _cleanup(self, assistant_id: str | None, uploaded: Sequence[UploadedFile]) -> None:
        if assistant_id is not None:
            try:
                await self._client.beta.assistants.delete(assistant_id)
            except Exception:
                logger.warning(
                    "Failed to delete assistant",
                    extra={"assistant_id": assistant_id},
                    exc_info=True,
                )
        for item in uploaded:
            try:
                await self._file_store.delete(item.file_id)
            except Exception:
                logger.warning(
                    "Failed to delete uploaded file", extra={"file_id": item.file_id}, exc_info=True
                )
