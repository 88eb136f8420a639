"""Text-only chat-completions providers (DeepSeek, Perplexity)."""

from typing import Any

from sidekick_api.constants import DEFAULT_MAX_OUTPUT_TOKENS, DEFAULT_TEMPERATURE
from sidekick_api.schemas import TokenUsage

from .base import ProviderPayload
from .http_provider import HttpChatProvider

NO_RESPONSE = "No response"


class CompletionsChatProvider(HttpChatProvider):
    def build_body(self, payload: ProviderPayload) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": payload.model_id,
            "messages": payload.messages,
            "max_tokens": DEFAULT_MAX_OUTPUT_TOKENS,
            "temperature": DEFAULT_TEMPERATURE,
        }
        if self.provider_id == "perplexity":
            body["stream"] = False
        return body

    def read_content(self, data: dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return NO_RESPONSE
        message = choices[0].get("message") or {}
        return message.get("content") or ""

    def read_usage(self, data: dict[str, Any]) -> TokenUsage:
        usage = data.get("usage") or {}
        return TokenUsage.from_counts(usage.get("prompt_tokens"), usage.get("completion_tokens"))
