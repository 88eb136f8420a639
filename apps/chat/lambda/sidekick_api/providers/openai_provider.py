"""OpenAI provider implementation for chat requests."""

import logging
import time
from collections.abc import Callable
from typing import Any

import openai
from langchain_core.runnables import Runnable
from openai import AsyncOpenAI

from sidekick_api.config import AppConfig
from sidekick_api.constants import DEFAULT_MAX_OUTPUT_TOKENS, DEFAULT_TEMPERATURE
from sidekick_api.errors import ProviderError
from sidekick_api.schemas import TokenUsage

from .base import DispatchResult, FileStore, PayloadMode, ProviderPayload
from .openai_assistants import AssistantSession

logger = logging.getLogger(__name__)


class OpenAIChatProvider:
    def __init__(
        self,
        config: AppConfig,
        get_openai_client: Callable[[], AsyncOpenAI],
        get_chat_completions_runnable: Callable[[], Runnable[dict[str, Any], Any]],
        file_store: FileStore,
    ) -> None:
        self._config = config
        self._get_openai_client = get_openai_client
        self._get_chat_completions_runnable = get_chat_completions_runnable
        self._file_store = file_store

    async def dispatch(self, payload: ProviderPayload) -> DispatchResult:
        start = time.time()
        try:
            if payload.mode is PayloadMode.SESSION:
                logger.info("Using OpenAI Assistants API for file processing")
                session = AssistantSession(
                    self._get_openai_client(),
                    self._file_store,
                    poll_interval_seconds=self._config.assistant_poll_interval_seconds,
                    max_poll_attempts=self._config.assistant_max_poll_attempts,
                    cancel_event=payload.cancel_event,
                )
                result = await session.run(payload.model_id, payload.session_turns)
                content, usage = result.content, result.usage
            else:
                content, usage = await self._complete(payload)
        except openai.APIStatusError as exc:
            raise ProviderError(
                "openai", exc.message, status=exc.status_code, body=str(exc.body)[:500], cause=exc
            ) from exc
        except openai.OpenAIError as exc:
            raise ProviderError("openai", str(exc) or type(exc).__name__, cause=exc) from exc

        duration_ms = int((time.time() - start) * 1000)
        logger.info(
            "Chat response generated",
            extra={
                "openai_duration_ms": duration_ms,
                "model": payload.model_id,
                "mode": payload.mode.value,
                "usage_prompt_tokens": usage.prompt_tokens,
                "usage_completion_tokens": usage.completion_tokens,
                "response_length": len(content),
            },
        )
        return DispatchResult(
            content=content, usage=usage, duration_seconds=round(duration_ms / 1000, 2)
        )

    async def _complete(self, payload: ProviderPayload) -> tuple[str, TokenUsage]:
        request_params: dict[str, Any] = {
            "model": payload.model_id,
            "messages": payload.messages,
            "max_tokens": DEFAULT_MAX_OUTPUT_TOKENS,
            "temperature": DEFAULT_TEMPERATURE,
        }
        try:
            response = await self._get_chat_completions_runnable().ainvoke(
                request_params,
                config={
                    "run_name": "sidekick_chat_request",
                    "tags": ["chat-api", "openai", payload.model_id],
                    "metadata": {
                        "message_count": len(payload.messages),
                        "mode": payload.mode.value,
                        "image_count": payload.image_count,
                    },
                },
            )
        finally:
            if payload.mode is PayloadMode.HYBRID:
                await self._delete_uploaded_files(payload)

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""
        usage = response.usage
        return content, (
            TokenUsage.from_counts(usage.prompt_tokens, usage.completion_tokens)
            if usage
            else TokenUsage()
        )

    async def _delete_uploaded_files(self, payload: ProviderPayload) -> None:
        for uploaded in payload.uploaded_files:
            try:
                await self._file_store.delete(uploaded.file_id)
            except Exception:
                logger.warning(
                    "Failed to clean up uploaded file",
                    extra={"file_id": uploaded.file_id},
                    exc_info=True,
                )
