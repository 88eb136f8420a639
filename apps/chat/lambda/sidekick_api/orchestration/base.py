"""Orchestration interfaces for chat execution."""

import asyncio
from collections.abc import Sequence
from typing import Protocol

from sidekick_api.providers.base import DispatchResult
from sidekick_api.schemas import ConversationTurn


class ChatOrchestrator(Protocol):
    async def run(
        self,
        turns: Sequence[ConversationTurn],
        provider_id: str,
        model_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> DispatchResult:
        """Normalize the turn sequence for the provider and dispatch it."""
        ...
