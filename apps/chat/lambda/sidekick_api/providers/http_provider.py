"""Shared plumbing for providers reached through a plain HTTPS endpoint."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx
from langchain_core.runnables import Runnable, RunnableLambda

from sidekick_api.config import AppConfig, ProviderDescriptor
from sidekick_api.errors import ConfigurationError, ProviderError
from sidekick_api.schemas import TokenUsage

from .base import DispatchResult, ProviderPayload

logger = logging.getLogger(__name__)

MAX_ERROR_BODY_LENGTH = 500


class HttpChatProvider(ABC):
    """Posts one JSON body per request and maps the reply to a DispatchResult.

    Subclasses build the body and read content/usage out of the response.
    """

    def __init__(
        self,
        config: AppConfig,
        descriptor: ProviderDescriptor,
        http_client: httpx.AsyncClient,
    ) -> None:
        if descriptor.endpoint is None:
            raise ConfigurationError(f"Provider has no HTTP endpoint: {descriptor.provider_id}")
        self._config = config
        self._descriptor = descriptor
        self._http_client = http_client
        self._runnable: Runnable[dict[str, Any], dict[str, Any]] = RunnableLambda(
            self._post
        ).with_config({"run_name": f"sidekick_{descriptor.provider_id}_chat"})

    @property
    def provider_id(self) -> str:
        return self._descriptor.provider_id

    @abstractmethod
    def build_body(self, payload: ProviderPayload) -> dict[str, Any]:
        ...

    @abstractmethod
    def read_content(self, data: dict[str, Any]) -> str:
        ...

    @abstractmethod
    def read_usage(self, data: dict[str, Any]) -> TokenUsage:
        ...

    async def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        headers = self._descriptor.auth_headers(self._config.api_key(self.provider_id))
        response = await self._http_client.post(self._descriptor.endpoint, json=body, headers=headers)
        if response.is_error:
            raise ProviderError(
                self.provider_id,
                f"{response.status_code} {response.reason_phrase}",
                status=response.status_code,
                body=response.text[:MAX_ERROR_BODY_LENGTH],
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(self.provider_id, "response was not valid JSON", cause=exc) from exc
        if not isinstance(data, dict):
            raise ProviderError(self.provider_id, "response was not a JSON object")
        return data

    async def dispatch(self, payload: ProviderPayload) -> DispatchResult:
        body = self.build_body(payload)
        start = time.time()
        try:
            data = await self._runnable.ainvoke(
                body,
                config={
                    "run_name": "sidekick_chat_request",
                    "tags": ["chat-api", self.provider_id, payload.model_id],
                    "metadata": {"message_count": len(payload.messages)},
                },
            )
        except httpx.HTTPError as exc:
            raise ProviderError(
                self.provider_id, str(exc) or type(exc).__name__, cause=exc
            ) from exc
        duration_ms = int((time.time() - start) * 1000)

        content = self.read_content(data)
        usage = self.read_usage(data)
        logger.info(
            "Chat response generated",
            extra={
                "provider": self.provider_id,
                "duration_ms": duration_ms,
                "model": payload.model_id,
                "usage_prompt_tokens": usage.prompt_tokens,
                "usage_completion_tokens": usage.completion_tokens,
                "response_length": len(content),
            },
        )
        return DispatchResult(
            content=content, usage=usage, duration_seconds=round(duration_ms / 1000, 2)
        )
