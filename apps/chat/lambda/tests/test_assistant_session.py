import asyncio
import unittest
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, Mock

from sidekick_api.errors import ProviderError
from sidekick_api.providers.base import UploadedFile
from sidekick_api.providers.openai_assistants import (
    EMPTY_FILE_MESSAGE,
    AssistantSession,
    SessionState,
)
from sidekick_api.schemas import ConversationTurn, FileAttachment

REPORT = FileAttachment(
    url="https://storage.example.com/report.pdf",
    file_name="report.pdf",
    mime_type="application/pdf",
)


def _run(status: str) -> Any:
    return SimpleNamespace(id="run_1", status=status)


def _fake_client(statuses: list[str]) -> Mock:
    client = Mock()
    beta = client.beta
    beta.assistants.create = AsyncMock(return_value=SimpleNamespace(id="asst_1"))
    beta.assistants.delete = AsyncMock()
    beta.threads.create = AsyncMock(return_value=SimpleNamespace(id="thread_1"))
    beta.threads.messages.create = AsyncMock()
    beta.threads.runs.create = AsyncMock(return_value=_run(statuses[0]))
    beta.threads.runs.retrieve = AsyncMock(side_effect=[_run(status) for status in statuses[1:]])
    beta.threads.runs.cancel = AsyncMock()
    reply = SimpleNamespace(
        role="assistant",
        content=[SimpleNamespace(type="text", text=SimpleNamespace(value="The report says hi."))],
    )
    beta.threads.messages.list = AsyncMock(return_value=SimpleNamespace(data=[reply]))
    return client


def _file_store() -> AsyncMock:
    store = AsyncMock()
    store.upload.return_value = UploadedFile(
        file_id="file_1",
        file_name="report.pdf",
        mime_type="application/pdf",
        url="https://files.openai.com/files/file_1",
    )
    return store


class AssistantSessionTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.turns = [
            ConversationTurn.system("Project Context: quarterly numbers"),
            ConversationTurn(role="user", content="", files=(REPORT,)),
        ]
        self.sleep = AsyncMock()

    async def test_completed_run_returns_reply_and_cleans_up(self) -> None:
        client = _fake_client(["queued", "in_progress", "completed"])
        store = _file_store()
        session = AssistantSession(client, store, poll_interval_seconds=0.5, sleep=self.sleep)

        result = await session.run("gpt-4o", self.turns)

        self.assertEqual(result.content, "The report says hi.")
        self.assertEqual(result.usage.total_tokens, 0)
        self.assertEqual(
            session.history,
            [
                SessionState.CREATED,
                SessionState.UPLOADING_FILES,
                SessionState.ASSISTANT_CREATED,
                SessionState.THREAD_CREATED,
                SessionState.MESSAGES_ADDED,
                SessionState.RUN_QUEUED,
                SessionState.RUN_IN_PROGRESS,
                SessionState.RUN_COMPLETED,
            ],
        )
        self.assertEqual(self.sleep.await_count, 2)
        self.sleep.assert_awaited_with(0.5)

        create_kwargs = client.beta.assistants.create.call_args.kwargs
        self.assertEqual(create_kwargs["tools"], [{"type": "file_search"}])
        self.assertIn("Project Context: quarterly numbers", create_kwargs["instructions"])

        client.beta.threads.messages.create.assert_awaited_once()
        message_kwargs = client.beta.threads.messages.create.call_args.kwargs
        self.assertEqual(message_kwargs["role"], "user")
        self.assertEqual(message_kwargs["content"], EMPTY_FILE_MESSAGE)
        self.assertEqual(
            message_kwargs["attachments"], [{"file_id": "file_1", "tools": [{"type": "file_search"}]}]
        )

        client.beta.assistants.delete.assert_awaited_once_with("asst_1")
        store.delete.assert_awaited_once_with("file_1")

    async def test_poll_limit_times_out_and_still_cleans_up(self) -> None:
        client = _fake_client(["queued", "in_progress", "in_progress", "in_progress"])
        store = _file_store()
        session = AssistantSession(client, store, max_poll_attempts=3, sleep=self.sleep)

        with self.assertRaisesRegex(ProviderError, "timed out"):
            await session.run("gpt-4o", self.turns)

        self.assertEqual(session.state, SessionState.RUN_TIMED_OUT)
        self.assertEqual(client.beta.threads.runs.retrieve.await_count, 3)
        client.beta.threads.runs.cancel.assert_awaited_once_with("run_1", thread_id="thread_1")
        client.beta.assistants.delete.assert_awaited_once_with("asst_1")
        store.delete.assert_awaited_once_with("file_1")

    async def test_cancel_event_stops_polling(self) -> None:
        client = _fake_client(["queued", "in_progress", "completed"])
        cancel_event = asyncio.Event()
        cancel_event.set()
        session = AssistantSession(
            client, _file_store(), cancel_event=cancel_event, sleep=self.sleep
        )

        with self.assertRaisesRegex(ProviderError, "cancelled"):
            await session.run("gpt-4o", self.turns)

        self.assertEqual(session.state, SessionState.RUN_CANCELLED)
        client.beta.threads.runs.retrieve.assert_not_awaited()
        client.beta.assistants.delete.assert_awaited_once()

    async def test_failed_run_raises_provider_error(self) -> None:
        client = _fake_client(["queued", "failed"])
        session = AssistantSession(client, _file_store(), sleep=self.sleep)

        with self.assertRaisesRegex(ProviderError, "failed"):
            await session.run("gpt-4o", self.turns)

        self.assertEqual(session.state, SessionState.RUN_FAILED)
        client.beta.assistants.delete.assert_awaited_once()

    async def test_cleanup_failures_are_swallowed(self) -> None:
        client = _fake_client(["completed"])
        client.beta.assistants.delete.side_effect = RuntimeError("gone")
        store = _file_store()
        store.delete.side_effect = RuntimeError("gone")
        session = AssistantSession(client, store, sleep=self.sleep)

        result = await session.run("gpt-4o", self.turns)

        self.assertEqual(result.content, "The report says hi.")
        self.sleep.assert_not_awaited()

    async def test_upload_failure_skips_assistant_creation(self) -> None:
        client = _fake_client(["completed"])
        store = _file_store()
        store.upload.side_effect = ProviderError("openai", "Failed to download file: 404")
        session = AssistantSession(client, store, sleep=self.sleep)

        with self.assertRaises(ProviderError):
            await session.run("gpt-4o", self.turns)

        client.beta.assistants.create.assert_not_awaited()
        client.beta.assistants.delete.assert_not_awaited()
        store.delete.assert_not_awaited()


if __name__ == "__main__":
    unittest.main()
