"""Google Gemini provider implementation backed by the google-genai SDK."""

import base64
import logging
import time
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from langchain_core.runnables import Runnable, RunnableLambda

from sidekick_api.constants import DEFAULT_MAX_OUTPUT_TOKENS, DEFAULT_TEMPERATURE
from sidekick_api.errors import ProviderError
from sidekick_api.schemas import TokenUsage

from .base import DispatchResult, ProviderPayload

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response"

# Catalog ids the public API does not accept verbatim.
GOOGLE_MODEL_ALIASES: Mapping[str, str] = MappingProxyType(
    {"gemini-1.5-pro-latest": "gemini-1.5-pro"}
)


def resolve_google_model(model_id: str) -> str:
    return GOOGLE_MODEL_ALIASES.get(model_id, model_id)


def _to_part(part: Mapping[str, Any]) -> types.Part:
    inline = part.get("inline_data")
    if inline is not None:
        return types.Part.from_bytes(
            data=base64.b64decode(inline["data"]), mime_type=inline["mime_type"]
        )
    return types.Part.from_text(text=part.get("text", ""))


def to_genai_contents(messages: list[dict[str, Any]]) -> list[types.Content]:
    return [
        types.Content(role=message["role"], parts=[_to_part(part) for part in message["parts"]])
        for message in messages
    ]


class GoogleChatProvider:
    def __init__(self, get_genai_client: Callable[[], genai.Client]) -> None:
        self._get_genai_client = get_genai_client
        self._runnable: Runnable[dict[str, Any], Any] = RunnableLambda(
            self._generate
        ).with_config({"run_name": "sidekick_google_generate_content"})

    async def _generate(self, request_params: dict[str, Any]) -> Any:
        client = self._get_genai_client()
        return await client.aio.models.generate_content(**request_params)

    async def dispatch(self, payload: ProviderPayload) -> DispatchResult:
        api_model = resolve_google_model(payload.model_id)
        request_params: dict[str, Any] = {
            "model": api_model,
            "contents": to_genai_contents(payload.messages),
            "config": types.GenerateContentConfig(
                system_instruction=payload.system or None,
                temperature=DEFAULT_TEMPERATURE,
                max_output_tokens=DEFAULT_MAX_OUTPUT_TOKENS,
            ),
        }

        start = time.time()
        try:
            response = await self._runnable.ainvoke(
                request_params,
                config={
                    "run_name": "sidekick_chat_request",
                    "tags": ["chat-api", "google", api_model],
                    "metadata": {
                        "message_count": len(payload.messages),
                        "image_count": payload.image_count,
                    },
                },
            )
        except genai_errors.APIError as exc:
            raise ProviderError(
                "google",
                exc.message or str(exc),
                status=exc.code,
                body=str(exc.details)[:500] if exc.details else None,
                cause=exc,
            ) from exc
        duration_ms = int((time.time() - start) * 1000)

        content = response.text or NO_RESPONSE
        metadata = response.usage_metadata
        usage = (
            TokenUsage.from_counts(
                metadata.prompt_token_count, metadata.candidates_token_count
            )
            if metadata
            else TokenUsage()
        )
        logger.info(
            "Chat response generated",
            extra={
                "provider": "google",
                "duration_ms": duration_ms,
                "model": api_model,
                "usage_prompt_tokens": usage.prompt_tokens,
                "usage_completion_tokens": usage.completion_tokens,
                "response_length": len(content),
            },
        )
        return DispatchResult(
            content=content, usage=usage, duration_seconds=round(duration_ms / 1000, 2)
        )
