"""Anthropic Messages API provider."""

from typing import Any

from sidekick_api.constants import ANTHROPIC_MAX_OUTPUT_TOKENS
from sidekick_api.schemas import TokenUsage

from .base import ProviderPayload
from .http_provider import HttpChatProvider

NO_RESPONSE = "No response"


class AnthropicChatProvider(HttpChatProvider):
    def build_body(self, payload: ProviderPayload) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": payload.model_id,
            "max_tokens": ANTHROPIC_MAX_OUTPUT_TOKENS,
            "messages": payload.messages,
        }
        if payload.system:
            body["system"] = payload.system
        return body

    def read_content(self, data: dict[str, Any]) -> str:
        for block in data.get("content") or []:
            if isinstance(block, dict) and block.get("type", "text") == "text":
                return block.get("text") or ""
        return NO_RESPONSE

    def read_usage(self, data: dict[str, Any]) -> TokenUsage:
        usage = data.get("usage") or {}
        return TokenUsage.from_counts(usage.get("input_tokens"), usage.get("output_tokens"))
