import unittest
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from unittest.mock import AsyncMock, Mock

import httpx

from sidekick_api.config import AppConfig
from sidekick_api.errors import (
    ConfigurationError,
    InternalError,
    NotFound,
    PermissionDenied,
    ProviderError,
    ResourceExhausted,
)
from sidekick_api.file_extractor import FileContentExtractor
from sidekick_api.message_mappers import MessageNormalizer
from sidekick_api.providers.base import DispatchResult
from sidekick_api.schemas import ChatMessage, ConversationTurn, SendMessageRequest, TokenUsage
from sidekick_api.services.chat_service import ChatService, build_project_turns
from sidekick_api.storage.base import ProjectFile, ProjectRecord, UserRecord
from sidekick_api.storage.memory import InMemoryChatStore

CSV_URL = "https://storage.example.com/report.csv"


class StubOrchestrator:
    def __init__(self, result: DispatchResult | None = None, error: Exception | None = None) -> None:
        self._result = result or DispatchResult(
            content="assistant reply",
            usage=TokenUsage.from_counts(12, 30),
            duration_seconds=0.4,
        )
        self._error = error
        self.calls: list[tuple[list[ConversationTurn], str, str]] = []

    async def run(
        self,
        turns: Sequence[ConversationTurn],
        provider_id: str,
        model_id: str,
        cancel_event: object = None,
    ) -> DispatchResult:
        self.calls.append((list(turns), provider_id, model_id))
        if self._error is not None:
            raise self._error
        return self._result


def _config(**overrides: object) -> AppConfig:
    values: dict[str, object] = {
        "api_keys": MappingProxyType(
            {"openai": "sk-test", "anthropic": "ak-test", "deepseek": "dk-test"}
        ),
    }
    values.update(overrides)
    return AppConfig(**values)  # type: ignore[arg-type]


def _csv_transport(request: httpx.Request) -> httpx.Response:
    if str(request.url) == CSV_URL:
        return httpx.Response(200, content=b"region,total\nnorth,42\n")
    return httpx.Response(404)


class ChatServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = InMemoryChatStore(users=[UserRecord(user_id="user_1", messages_this_month=9)])
        self.chat = await self.store.create_chat("user_1", None, "New Chat")
        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(_csv_transport))
        self.addAsyncCleanup(self.http_client.aclose)
        self.config = _config()
        self.normalizer = MessageNormalizer(
            self.config, self.http_client, FileContentExtractor(self.http_client)
        )
        self.orchestrator = StubOrchestrator()
        self.registry = Mock()
        self.service = self._service()

    def _service(self) -> ChatService:
        return ChatService(
            config=self.config,
            store=self.store,
            normalizer=self.normalizer,
            orchestrator=self.orchestrator,
            registry=self.registry,
        )

    async def test_free_tier_message_increments_usage_once(self) -> None:
        request = SendMessageRequest(content="hello", model="gpt-4o-mini", provider="openai")

        response = await self.service.send_message("user_1", self.chat.chat_id, request)

        self.assertEqual(response.message.content, "assistant reply")
        self.assertEqual(response.message.role, "assistant")
        self.assertEqual(response.message.token_count, 42)
        self.assertEqual(response.usage.total_tokens, 42)
        self.assertEqual(self.store.users["user_1"].messages_this_month, 10)

        stored = self.store.messages[self.chat.chat_id]
        self.assertEqual([message.role for message in stored], ["user", "assistant"])
        self.assertEqual(self.store.chats[self.chat.chat_id].message_count, 2)

        turns, provider_id, model_id = self.orchestrator.calls[0]
        self.assertEqual((provider_id, model_id), ("openai", "gpt-4o-mini"))
        self.assertEqual(turns[-1].role, "user")
        self.assertEqual(turns[-1].content, "hello")

    async def test_quota_exhausted_makes_no_provider_call(self) -> None:
        self.store.add_user(UserRecord(user_id="user_1", messages_this_month=10))
        request = SendMessageRequest(content="hello", model="gpt-4o-mini", provider="openai")

        with self.assertRaises(ResourceExhausted):
            await self.service.send_message("user_1", self.chat.chat_id, request)

        self.assertEqual(self.orchestrator.calls, [])
        self.assertEqual(self.store.users["user_1"].messages_this_month, 10)

    async def test_paid_plan_is_not_limited(self) -> None:
        self.store.add_user(UserRecord(user_id="user_1", plan="monthly_pro", messages_this_month=500))
        request = SendMessageRequest(content="hello", model="gpt-4o-mini", provider="openai")

        await self.service.send_message("user_1", self.chat.chat_id, request)

        self.assertEqual(self.store.users["user_1"].messages_this_month, 501)

    async def test_provider_failure_leaves_usage_and_history_untouched(self) -> None:
        self.orchestrator = StubOrchestrator(error=ProviderError("openai", "503 Service Unavailable"))
        service = self._service()
        request = SendMessageRequest(content="hello", model="gpt-4o-mini", provider="openai")

        with self.assertRaises(ProviderError):
            await service.send_message("user_1", self.chat.chat_id, request)

        self.assertEqual(self.store.users["user_1"].messages_this_month, 9)
        self.assertEqual(self.store.messages[self.chat.chat_id], [])

    async def test_persistence_failure_after_dispatch_does_not_increment_usage(self) -> None:
        self.store.append_messages = AsyncMock(side_effect=RuntimeError("write failed"))  # type: ignore[method-assign]
        request = SendMessageRequest(content="hello", model="gpt-4o-mini", provider="openai")

        with self.assertRaises(InternalError) as ctx:
            await self.service.send_message("user_1", self.chat.chat_id, request)

        self.assertNotIsInstance(ctx.exception, ProviderError)
        self.assertEqual(len(self.orchestrator.calls), 1)
        self.assertEqual(self.store.users["user_1"].messages_this_month, 9)

    async def test_exchange_is_written_in_one_store_call(self) -> None:
        append_messages = AsyncMock()
        self.store.append_messages = append_messages  # type: ignore[method-assign]
        request = SendMessageRequest(content="hello", model="gpt-4o-mini", provider="openai")

        await self.service.send_message("user_1", self.chat.chat_id, request)

        append_messages.assert_awaited_once()
        chat_id, messages = append_messages.call_args.args
        self.assertEqual(chat_id, self.chat.chat_id)
        self.assertEqual([message.role for message in messages], ["user", "assistant"])

    async def test_missing_chat_and_foreign_chat(self) -> None:
        request = SendMessageRequest(content="hello", model="gpt-4o-mini", provider="openai")
        foreign = await self.store.create_chat("user_2", None, "New Chat")

        with self.assertRaises(NotFound):
            await self.service.send_message("user_1", "missing", request)
        with self.assertRaises(PermissionDenied):
            await self.service.send_message("user_1", foreign.chat_id, request)
        self.assertEqual(self.orchestrator.calls, [])

    async def test_missing_user_is_not_found(self) -> None:
        chat = await self.store.create_chat("ghost", None, "New Chat")
        request = SendMessageRequest(content="hello", model="gpt-4o-mini", provider="openai")

        with self.assertRaises(NotFound):
            await self.service.send_message("ghost", chat.chat_id, request)

    async def test_unconfigured_provider_is_configuration_error(self) -> None:
        request = SendMessageRequest(content="hello", model="gemini-1.5-flash", provider="google")

        with self.assertRaises(ConfigurationError):
            await self.service.send_message("user_1", self.chat.chat_id, request)
        self.assertEqual(self.orchestrator.calls, [])

    async def test_history_is_bounded_and_chronological(self) -> None:
        self.config = _config(history_limit=3)
        service = self._service()
        start = datetime(2024, 1, 1, tzinfo=UTC)
        for index in range(5):
            await self.store.append_message(
                self.chat.chat_id,
                ChatMessage(
                    id=f"m{index}",
                    chat_id=self.chat.chat_id,
                    role="user" if index % 2 == 0 else "assistant",
                    content=f"message {index}",
                    timestamp=start + timedelta(minutes=index),
                ),
            )
        request = SendMessageRequest(content="latest", model="gpt-4o-mini", provider="openai")

        await service.send_message("user_1", self.chat.chat_id, request)

        turns, _, _ = self.orchestrator.calls[0]
        self.assertEqual(
            [turn.content for turn in turns],
            ["message 2", "message 3", "message 4", "latest"],
        )

    async def test_project_context_leads_the_conversation_in_order(self) -> None:
        self.store.add_project(
            ProjectRecord(
                project_id="proj_1",
                user_id="user_1",
                instructions="Answer in French.",
                system_prompt="You are a finance analyst.",
                shared_context="Fiscal year ends in March.",
                files=(ProjectFile("notes.txt", "Q1 was strong."), ProjectFile("empty.txt", "")),
            )
        )
        chat = await self.store.create_chat("user_1", "proj_1", "New Chat")
        request = SendMessageRequest(content="Summarize", model="gpt-4o-mini", provider="openai")

        await self.service.send_message("user_1", chat.chat_id, request)

        turns, _, _ = self.orchestrator.calls[0]
        self.assertEqual(
            [turn.content for turn in turns[:4]],
            [
                "Project Files:\nFile: notes.txt\nContent: Q1 was strong.",
                "You are a finance analyst.",
                "Project Context: Fiscal year ends in March.",
                "Project Instructions: Answer in French.",
            ],
        )
        self.assertTrue(all(turn.role == "system" for turn in turns[:4]))
        self.assertEqual(turns[-1].content, "Summarize")

    def test_project_without_fields_adds_no_turns(self) -> None:
        project = ProjectRecord(project_id="p", user_id="u", files=(ProjectFile("a.txt"),))

        self.assertEqual(build_project_turns(project), [])

    async def test_csv_file_is_extracted_for_provider_that_cannot_download(self) -> None:
        request = SendMessageRequest(
            content="What is the total?",
            model="gpt-4o-mini",
            provider="openai",
            files=[{"url": CSV_URL, "fileName": "report.csv", "mimeType": "text/csv"}],
        )

        await self.service.send_message("user_1", self.chat.chat_id, request)

        turns, _, _ = self.orchestrator.calls[0]
        file_turn, user_turn = turns[-2], turns[-1]
        self.assertEqual(file_turn.role, "system")
        self.assertIn("region,total\nnorth,42", file_turn.content)
        self.assertIn("=== FILE: report.csv (text/csv) ===", file_turn.content)
        self.assertNotIn(CSV_URL, file_turn.content)
        self.assertEqual(user_turn.content, "What is the total?")

    async def test_files_are_referenced_by_url_for_downloading_provider(self) -> None:
        request = SendMessageRequest(
            content="Review",
            model="deepseek-chat",
            provider="deepseek",
            files=[{"url": CSV_URL, "fileName": "report.csv", "mimeType": "text/csv"}],
        )

        await self.service.send_message("user_1", self.chat.chat_id, request)

        turns, _, _ = self.orchestrator.calls[0]
        self.assertIn(f"URL: {CSV_URL}", turns[-2].content)
        self.assertTrue(turns[-2].content.startswith("Please download and analyze"))

    async def test_create_chat_checks_project_owner(self) -> None:
        self.store.add_project(ProjectRecord(project_id="proj_1", user_id="user_1"))
        self.store.add_project(ProjectRecord(project_id="proj_2", user_id="user_2"))

        summary = await self.service.create_chat("user_1", "proj_1")

        self.assertEqual(summary.title, "New Chat")
        self.assertEqual(summary.project_id, "proj_1")
        self.assertEqual(self.store.projects["proj_1"].chat_count, 1)
        with self.assertRaises(PermissionDenied):
            await self.service.create_chat("user_1", "proj_2")
        with self.assertRaises(PermissionDenied):
            await self.service.create_chat("user_1", "missing")

    async def test_list_rename_and_delete_chats(self) -> None:
        second = await self.store.create_chat("user_1", None, "New Chat")
        await self.store.create_chat("user_2", None, "New Chat")

        await self.service.update_chat_title("user_1", self.chat.chat_id, "Budget")
        chats = await self.service.list_chats("user_1")

        self.assertEqual([chat.id for chat in chats], [self.chat.chat_id, second.chat_id])
        self.assertEqual(chats[0].title, "Budget")

        await self.service.delete_chat("user_1", second.chat_id)
        self.assertNotIn(second.chat_id, self.store.chats)
        with self.assertRaises(NotFound):
            await self.service.delete_chat("user_1", second.chat_id)

    async def test_list_models_uses_credential_flags(self) -> None:
        self.registry.list_available_models = AsyncMock(return_value=[])

        await self.service.list_models()

        flags = self.registry.list_available_models.call_args.args[0]
        self.assertTrue(flags["openai"])
        self.assertFalse(flags["google"])


if __name__ == "__main__":
    unittest.main()
