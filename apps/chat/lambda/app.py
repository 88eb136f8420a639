"""Chat API backend using FastAPI + Mangum for AWS Lambda."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import TypeVar

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from mangum import Mangum

from sidekick_api.auth import AuthContext, extract_bearer_token, verify_id_token
from sidekick_api.config import PROVIDER_DESCRIPTORS
from sidekick_api.errors import ChatError, InternalError
from sidekick_api.file_extractor import FileContentExtractor
from sidekick_api.infra.firebase import get_async_firestore_client, init_firebase
from sidekick_api.infra.runtime import (
    ensure_langsmith_configured,
    flush_langsmith_traces,
    get_app_config,
    get_chat_completions_runnable,
    get_genai_client,
    get_http_client,
    get_openai_client,
)
from sidekick_api.message_mappers import MessageNormalizer
from sidekick_api.model_registry import CapabilityRegistry
from sidekick_api.orchestration.base import ChatOrchestrator
from sidekick_api.orchestration.direct import DirectChatOrchestrator
from sidekick_api.orchestration.langgraph_flow import LangGraphChatOrchestrator
from sidekick_api.providers.anthropic_provider import AnthropicChatProvider
from sidekick_api.providers.base import ProviderAdapter
from sidekick_api.providers.completions_provider import CompletionsChatProvider
from sidekick_api.providers.dispatcher import ProviderDispatcher
from sidekick_api.providers.google_provider import GoogleChatProvider
from sidekick_api.providers.openai_files import OpenAIFileStore
from sidekick_api.providers.openai_provider import OpenAIChatProvider
from sidekick_api.schemas import (
    ChatListResponse,
    ChatSummary,
    CreateChatRequest,
    ModelsResponse,
    SendMessageRequest,
    SendMessageResponse,
    SuccessResponse,
    UpdateChatTitleRequest,
)
from sidekick_api.services.chat_service import ChatService
from sidekick_api.storage.base import ChatStore
from sidekick_api.storage.firestore_store import FirestoreChatStore
from sidekick_api.storage.memory import InMemoryChatStore

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

T = TypeVar("T")

app = FastAPI()
router = APIRouter(prefix="/api")


@app.exception_handler(ChatError)
async def chat_error_handler(_request: Request, exc: ChatError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.public_message},
    )


def _build_store() -> ChatStore:
    config = get_app_config()
    if config.chat_store == "firestore":
        return FirestoreChatStore(
            get_async_firestore_client(
                config.firebase_credentials_path, config.firestore_database_id
            )
        )
    logger.warning("Using in-memory chat store; data is lost when the process exits")
    return InMemoryChatStore()


@lru_cache(maxsize=1)
def get_chat_service() -> ChatService:
    config = get_app_config()
    http_client = get_http_client()
    file_store = OpenAIFileStore(get_openai_client, http_client)
    normalizer = MessageNormalizer(
        config, http_client, FileContentExtractor(http_client), file_store
    )
    adapters: dict[str, ProviderAdapter] = {
        "openai": OpenAIChatProvider(
            config, get_openai_client, get_chat_completions_runnable, file_store
        ),
        "google": GoogleChatProvider(get_genai_client),
        "anthropic": AnthropicChatProvider(
            config, PROVIDER_DESCRIPTORS["anthropic"], http_client
        ),
        "deepseek": CompletionsChatProvider(config, PROVIDER_DESCRIPTORS["deepseek"], http_client),
        "perplexity": CompletionsChatProvider(
            config, PROVIDER_DESCRIPTORS["perplexity"], http_client
        ),
    }
    dispatcher = ProviderDispatcher(adapters)
    orchestrator: ChatOrchestrator
    if config.orchestrator == "direct":
        orchestrator = DirectChatOrchestrator(normalizer, dispatcher)
    else:
        orchestrator = LangGraphChatOrchestrator(normalizer, dispatcher)
    logger.info(
        "Chat service initialised",
        extra={"orchestrator": config.orchestrator, "chat_store": config.chat_store},
    )
    return ChatService(
        config=config,
        store=_build_store(),
        normalizer=normalizer,
        orchestrator=orchestrator,
        registry=CapabilityRegistry(config, http_client),
    )


async def get_current_user(authorization: str | None = Header(default=None)) -> AuthContext:
    """Verify the Firebase ID token carried in the Authorization header."""
    token = extract_bearer_token(authorization)
    init_firebase(get_app_config().firebase_credentials_path)
    return await asyncio.to_thread(verify_id_token, token)


async def _traced(operation: Callable[[ChatService], Awaitable[T]]) -> T:
    """Run a service call, mapping unexpected failures to InternalError.

    Service construction happens inside the guard so wiring failures are
    rendered like any other error.
    """
    try:
        ensure_langsmith_configured()
        return await operation(get_chat_service())
    except ChatError as exc:
        logger.warning(
            "Chat request failed",
            extra={"error_code": exc.code, "error_message": exc.message},
        )
        raise
    except Exception as exc:
        logger.exception("Unexpected chat API failure")
        raise InternalError("An unexpected error occurred") from exc
    finally:
        flush_langsmith_traces()


@router.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/models", response_model=ModelsResponse)
async def list_models(_user: AuthContext = Depends(get_current_user)) -> ModelsResponse:
    models = await _traced(lambda service: service.list_models())
    return ModelsResponse(models=models)


@router.post("/chats", response_model=ChatSummary)
async def create_chat(
    request: CreateChatRequest, user: AuthContext = Depends(get_current_user)
) -> ChatSummary:
    return await _traced(
        lambda service: service.create_chat(user.uid, request.project_id)
    )


@router.get("/chats", response_model=ChatListResponse)
async def list_chats(user: AuthContext = Depends(get_current_user)) -> ChatListResponse:
    chats = await _traced(lambda service: service.list_chats(user.uid))
    return ChatListResponse(chats=chats)


@router.patch("/chats/{chat_id}", response_model=SuccessResponse)
async def update_chat_title(
    chat_id: str,
    request: UpdateChatTitleRequest,
    user: AuthContext = Depends(get_current_user),
) -> SuccessResponse:
    await _traced(
        lambda service: service.update_chat_title(user.uid, chat_id, request.title)
    )
    return SuccessResponse()


@router.delete("/chats/{chat_id}", response_model=SuccessResponse)
async def delete_chat(
    chat_id: str, user: AuthContext = Depends(get_current_user)
) -> SuccessResponse:
    await _traced(lambda service: service.delete_chat(user.uid, chat_id))
    return SuccessResponse()


@router.post("/chats/{chat_id}/messages", response_model=SendMessageResponse)
async def send_message(
    chat_id: str,
    request: SendMessageRequest,
    user: AuthContext = Depends(get_current_user),
) -> SendMessageResponse:
    """Send one user message to the selected provider and persist the exchange."""
    return await _traced(
        lambda service: service.send_message(user.uid, chat_id, request)
    )


app.include_router(router)


handler = Mangum(app)
