"""Direct normalize-then-dispatch orchestration."""

import asyncio
from collections.abc import Sequence

from sidekick_api.message_mappers import MessageNormalizer
from sidekick_api.orchestration.base import ChatOrchestrator
from sidekick_api.providers.base import DispatchResult
from sidekick_api.providers.dispatcher import ProviderDispatcher
from sidekick_api.schemas import ConversationTurn


class DirectChatOrchestrator(ChatOrchestrator):
    def __init__(self, normalizer: MessageNormalizer, dispatcher: ProviderDispatcher) -> None:
        self._normalizer = normalizer
        self._dispatcher = dispatcher

    async def run(
        self,
        turns: Sequence[ConversationTurn],
        provider_id: str,
        model_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> DispatchResult:
        payload = await self._normalizer.normalize(turns, provider_id, model_id)
        payload.cancel_event = cancel_event
        return await self._dispatcher.dispatch(provider_id, model_id, payload)
