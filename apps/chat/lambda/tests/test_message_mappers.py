import base64
import unittest
from types import MappingProxyType
from unittest.mock import AsyncMock

import httpx

from sidekick_api.config import AppConfig
from sidekick_api.errors import ProviderError
from sidekick_api.file_extractor import FileContentExtractor
from sidekick_api.message_mappers import (
    MessageNormalizer,
    build_url_image_part,
    split_system_turns,
)
from sidekick_api.providers.base import PayloadMode, UploadedFile
from sidekick_api.schemas import ConversationTurn, FileAttachment, ImageAttachment

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"
HTTPS_IMAGE = ImageAttachment(url="https://cdn.example.com/cat.png", mime_type="image/png")
HTTP_IMAGE = ImageAttachment(url="http://cdn.example.com/dog.png", mime_type="image/png")
REPORT = FileAttachment(
    url="https://storage.example.com/report.pdf",
    file_name="report.pdf",
    mime_type="application/pdf",
)


def _transport(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/cat.png":
        return httpx.Response(200, content=PNG_BYTES)
    return httpx.Response(404)


class MessageNormalizerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(_transport))
        self.addAsyncCleanup(self.http_client.aclose)
        self.file_store = AsyncMock()
        self.file_store.upload.return_value = UploadedFile(
            file_id="file_1",
            file_name="report.pdf",
            mime_type="application/pdf",
            url="https://files.openai.com/files/file_1",
        )

    def _normalizer(self, native_upload: bool = False) -> MessageNormalizer:
        config = AppConfig(
            api_keys=MappingProxyType({"openai": "sk-test"}),
            openai_native_file_upload=native_upload,
        )
        return MessageNormalizer(
            config, self.http_client, FileContentExtractor(self.http_client), self.file_store
        )

    async def test_non_https_image_is_dropped_and_the_other_kept(self) -> None:
        turns = [
            ConversationTurn(role="user", content="compare", images=(HTTPS_IMAGE, HTTP_IMAGE))
        ]

        payload = await self._normalizer().normalize(turns, "openai", "gpt-4o")

        self.assertEqual(payload.mode, PayloadMode.CHAT)
        self.assertEqual(payload.image_count, 1)
        self.assertEqual(payload.skipped_images, 1)
        self.assertEqual(
            payload.messages[0]["content"],
            [
                {"type": "text", "text": "compare"},
                {
                    "type": "image_url",
                    "image_url": {"url": HTTPS_IMAGE.url, "detail": "auto"},
                },
            ],
        )

    async def test_anthropic_gets_separate_system_and_url_image_source(self) -> None:
        turns = [
            ConversationTurn.system("Be brief."),
            ConversationTurn.system("Project Context: cats"),
            ConversationTurn(role="user", content="what is this?", images=(HTTPS_IMAGE,)),
        ]

        payload = await self._normalizer().normalize(turns, "anthropic", "claude-3-opus-20240229")

        self.assertEqual(payload.system, "Be brief.\n\nProject Context: cats")
        self.assertEqual(len(payload.messages), 1)
        self.assertEqual(payload.messages[0]["role"], "user")
        self.assertEqual(
            payload.messages[0]["content"][1],
            {"type": "image", "source": {"type": "url", "url": HTTPS_IMAGE.url}},
        )

    async def test_google_images_are_fetched_and_inlined(self) -> None:
        missing = ImageAttachment(url="https://cdn.example.com/missing.png", mime_type="image/png")
        turns = [
            ConversationTurn.system("Be brief."),
            ConversationTurn(role="user", content="hi"),
            ConversationTurn(role="assistant", content="hello"),
            ConversationTurn(role="user", content="look", images=(HTTPS_IMAGE, missing)),
        ]

        payload = await self._normalizer().normalize(turns, "google", "gemini-1.5-flash")

        self.assertEqual(payload.system, "Be brief.")
        self.assertEqual([message["role"] for message in payload.messages], ["user", "model", "user"])
        last_parts = payload.messages[-1]["parts"]
        self.assertEqual(last_parts[0], {"text": "look"})
        self.assertEqual(
            last_parts[1],
            {
                "inline_data": {
                    "mime_type": "image/png",
                    "data": base64.b64encode(PNG_BYTES).decode("ascii"),
                }
            },
        )
        self.assertEqual(payload.image_count, 1)
        self.assertEqual(payload.skipped_images, 1)

    async def test_text_only_provider_drops_images_and_keeps_system_inline(self) -> None:
        turns = [
            ConversationTurn.system("Cite sources."),
            ConversationTurn(role="user", content="describe", images=(HTTPS_IMAGE,)),
        ]

        payload = await self._normalizer().normalize(turns, "perplexity", "sonar")

        self.assertEqual(
            payload.messages,
            [
                {"role": "system", "content": "Cite sources."},
                {"role": "user", "content": "describe"},
            ],
        )
        self.assertEqual(payload.skipped_images, 1)

    async def test_file_metadata_is_left_out_of_chat_messages_without_native_upload(self) -> None:
        turns = [ConversationTurn(role="user", content="summarize", files=(REPORT,))]

        payload = await self._normalizer().normalize(turns, "openai", "gpt-4o")

        self.assertEqual(payload.mode, PayloadMode.CHAT)
        self.assertEqual(payload.messages, [{"role": "user", "content": "summarize"}])
        self.file_store.upload.assert_not_awaited()

    async def test_native_upload_files_only_selects_session_mode(self) -> None:
        turns = [ConversationTurn(role="user", content="summarize", files=(REPORT,))]

        payload = await self._normalizer(native_upload=True).normalize(turns, "openai", "gpt-4o")

        self.assertEqual(payload.mode, PayloadMode.SESSION)
        self.assertEqual(payload.session_turns, turns)
        self.file_store.upload.assert_not_awaited()

    async def test_native_upload_files_and_images_selects_hybrid_mode(self) -> None:
        turns = [
            ConversationTurn(
                role="user", content="compare", images=(HTTPS_IMAGE,), files=(REPORT,)
            )
        ]

        payload = await self._normalizer(native_upload=True).normalize(turns, "openai", "gpt-4o")

        self.assertEqual(payload.mode, PayloadMode.HYBRID)
        self.assertEqual([item.file_id for item in payload.uploaded_files], ["file_1"])
        parts = payload.messages[0]["content"]
        self.assertEqual(parts[0], {"type": "text", "text": "compare"})
        self.assertEqual(
            parts[1]["text"],
            "[Attached File: report.pdf - Available at: https://files.openai.com/files/file_1]",
        )
        self.assertEqual(parts[2]["type"], "image_url")

    async def test_hybrid_upload_failure_cleans_up_earlier_uploads(self) -> None:
        second = FileAttachment(
            url="https://storage.example.com/b.pdf", file_name="b.pdf", mime_type="application/pdf"
        )
        self.file_store.upload.side_effect = [
            self.file_store.upload.return_value,
            RuntimeError("upload refused"),
        ]
        turns = [
            ConversationTurn(
                role="user", content="x", images=(HTTPS_IMAGE,), files=(REPORT, second)
            )
        ]

        with self.assertRaises(ProviderError):
            await self._normalizer(native_upload=True).normalize(turns, "openai", "gpt-4o")

        self.file_store.delete.assert_awaited_once_with("file_1")

    async def test_prepare_file_context_for_native_upload_is_empty(self) -> None:
        turn = await self._normalizer(native_upload=True).prepare_file_context("openai", [REPORT])

        self.assertIsNone(turn)

    async def test_prepare_file_context_lists_urls_for_downloading_providers(self) -> None:
        turn = await self._normalizer().prepare_file_context("anthropic", [REPORT])

        assert turn is not None
        self.assertEqual(turn.role, "system")
        self.assertIn("File: report.pdf (application/pdf)\nURL: " + REPORT.url, turn.content)


class HelperTests(unittest.TestCase):
    def test_build_url_image_part_rejects_non_https(self) -> None:
        self.assertIsNone(build_url_image_part(HTTP_IMAGE, "image_url"))
        data_url = ImageAttachment(url="data:image/png;base64,AAAA", mime_type="image/png")
        self.assertIsNone(build_url_image_part(data_url, "anthropic_url"))

    def test_split_system_turns_without_system(self) -> None:
        system, rest = split_system_turns([ConversationTurn(role="user", content="hi")])

        self.assertIsNone(system)
        self.assertEqual(len(rest), 1)


if __name__ == "__main__":
    unittest.main()
