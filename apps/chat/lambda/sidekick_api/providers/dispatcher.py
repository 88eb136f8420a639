"""Routes normalized payloads to the adapter registered for a provider."""

import logging
from collections.abc import Mapping

from sidekick_api.errors import ConfigurationError, ProviderError

from .base import DispatchResult, ProviderAdapter, ProviderPayload

logger = logging.getLogger(__name__)


class ProviderDispatcher:
    def __init__(self, adapters: Mapping[str, ProviderAdapter]) -> None:
        self._adapters = adapters

    async def dispatch(
        self, provider_id: str, model_id: str, payload: ProviderPayload
    ) -> DispatchResult:
        adapter = self._adapters.get(provider_id)
        if adapter is None:
            raise ConfigurationError(f"Unsupported provider: {provider_id}")
        if payload.provider_id != provider_id or payload.model_id != model_id:
            raise ConfigurationError(
                f"Payload was built for {payload.provider_id}/{payload.model_id}, "
                f"not {provider_id}/{model_id}"
            )

        try:
            result = await adapter.dispatch(payload)
        except (ProviderError, ConfigurationError):
            raise
        except Exception as exc:
            logger.exception(
                "Provider dispatch failed",
                extra={"provider": payload.provider_id, "model": payload.model_id},
            )
            raise ProviderError(
                payload.provider_id, str(exc) or type(exc).__name__, cause=exc
            ) from exc

        logger.info(
            "Provider dispatch completed",
            extra={
                "provider": payload.provider_id,
                "model": payload.model_id,
                "mode": payload.mode.value,
                "total_tokens": result.usage.total_tokens,
            },
        )
        return result
