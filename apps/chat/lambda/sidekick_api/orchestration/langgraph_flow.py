"""LangGraph-based orchestration strategy for chat execution."""

import asyncio
from collections.abc import Sequence
from typing import NotRequired, TypedDict, cast

from langgraph.graph import END, START, StateGraph

from sidekick_api.errors import InternalError
from sidekick_api.message_mappers import MessageNormalizer
from sidekick_api.providers.base import DispatchResult, ProviderPayload
from sidekick_api.providers.dispatcher import ProviderDispatcher
from sidekick_api.schemas import ConversationTurn

from .base import ChatOrchestrator


class ChatGraphState(TypedDict):
    turns: list[ConversationTurn]
    provider_id: str
    model_id: str
    cancel_event: asyncio.Event | None
    payload: NotRequired[ProviderPayload]
    result: NotRequired[DispatchResult]


class LangGraphChatOrchestrator(ChatOrchestrator):
    def __init__(self, normalizer: MessageNormalizer, dispatcher: ProviderDispatcher) -> None:
        self._normalizer = normalizer
        self._dispatcher = dispatcher
        graph = StateGraph(ChatGraphState)
        graph.add_node("normalize", self._normalize)
        graph.add_node("dispatch", self._dispatch)
        graph.add_edge(START, "normalize")
        graph.add_edge("normalize", "dispatch")
        graph.add_edge("dispatch", END)
        self._graph = graph.compile()

    async def _normalize(self, state: ChatGraphState) -> dict[str, ProviderPayload]:
        payload = await self._normalizer.normalize(
            state["turns"], state["provider_id"], state["model_id"]
        )
        payload.cancel_event = state["cancel_event"]
        return {"payload": payload}

    async def _dispatch(self, state: ChatGraphState) -> dict[str, DispatchResult]:
        result = await self._dispatcher.dispatch(
            state["provider_id"], state["model_id"], state["payload"]
        )
        return {"result": result}

    async def run(
        self,
        turns: Sequence[ConversationTurn],
        provider_id: str,
        model_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> DispatchResult:
        initial_state: ChatGraphState = {
            "turns": list(turns),
            "provider_id": provider_id,
            "model_id": model_id,
            "cancel_event": cancel_event,
        }
        final_state = cast("ChatGraphState", await self._graph.ainvoke(initial_state))
        result = final_state.get("result")
        if result is None:
            raise InternalError("LangGraph execution did not return a provider result")
        return result
