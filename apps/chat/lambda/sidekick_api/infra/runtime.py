"""Runtime infrastructure helpers for credentials, tracing, and provider clients."""

import logging
import os
from collections.abc import Callable
from functools import lru_cache
from typing import Any

import boto3
import httpx
from google import genai
from langchain_core.runnables import Runnable, RunnableLambda
from langsmith import traceable
from langsmith.run_trees import get_cached_client
from openai import AsyncOpenAI

from sidekick_api.config import AppConfig, load_config, mask_secret
from sidekick_api.constants import AWS_REGION, LANGSMITH_PROJECT

logger = logging.getLogger(__name__)


def _read_provider_key(ssm_client: Any, parameter_name: str) -> str | None:
    """Read one decrypted key; a missing or empty parameter leaves the provider off."""
    try:
        result = ssm_client.get_parameter(Name=parameter_name, WithDecryption=True)
        value = result["Parameter"].get("Value")
        if not value:
            raise RuntimeError(f"SSM parameter {parameter_name} has no value")
        return value
    except Exception:
        logger.warning(
            "Provider key unavailable in SSM; provider disabled",
            extra={"parameter_name": parameter_name},
            exc_info=True,
        )
        return None


def build_ssm_secret_lookup(
    prefix: str, ssm_client: Any | None = None
) -> Callable[[str], str | None]:
    """Return a provider-id -> API key lookup backed by SSM Parameter Store."""
    client = ssm_client or boto3.client("ssm", region_name=os.getenv("AWS_REGION", AWS_REGION))
    base = prefix.rstrip("/")

    def lookup(provider_id: str) -> str | None:
        return _read_provider_key(client, f"{base}/{provider_id}-api-key")

    return lookup


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    prefix = os.getenv("SSM_PARAMETER_PREFIX")
    config = load_config(build_ssm_secret_lookup(prefix) if prefix else None)
    logger.info(
        "Configuration loaded",
        extra={
            "providers": {
                provider_id: mask_secret(config.api_keys.get(provider_id))
                for provider_id in config.credential_flags
            },
            "chat_store": config.chat_store,
            "orchestrator": config.orchestrator,
        },
    )
    return config


def _configure_langsmith(langsmith_api_key: str | None) -> None:
    if not langsmith_api_key:
        os.environ.pop("LANGSMITH_TRACING", None)
        os.environ.pop("LANGSMITH_API_KEY", None)
        logger.info("LangSmith tracing disabled because API key is unavailable")
        return

    os.environ["LANGSMITH_TRACING"] = "true"
    os.environ["LANGSMITH_API_KEY"] = langsmith_api_key
    os.environ.setdefault("LANGSMITH_PROJECT", LANGSMITH_PROJECT)


@lru_cache(maxsize=1)
def ensure_langsmith_configured() -> None:
    """Configure LangSmith environment variables (called once via lru_cache)."""
    _configure_langsmith(get_app_config().langsmith_api_key)


def flush_langsmith_traces() -> None:
    if os.environ.get("LANGSMITH_TRACING", "").lower() != "true":
        return
    if not os.environ.get("LANGSMITH_API_KEY"):
        return
    try:
        get_cached_client().flush()
    except Exception:
        logger.warning("Failed to flush LangSmith traces", exc_info=True)


@lru_cache(maxsize=1)
def get_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=get_app_config().http_timeout_seconds, follow_redirects=True
    )


@lru_cache(maxsize=1)
def get_openai_client() -> AsyncOpenAI:
    """Create an OpenAI client with LangSmith tracing configuration."""
    ensure_langsmith_configured()
    return AsyncOpenAI(api_key=get_app_config().api_key("openai"))


@lru_cache(maxsize=1)
def get_genai_client() -> genai.Client:
    ensure_langsmith_configured()
    return genai.Client(api_key=get_app_config().api_key("google"))


@traceable(run_type="llm", name="openai.chat.completions.create")
async def _invoke_openai_chat_completions(request_params: dict[str, Any]) -> Any:
    client = get_openai_client()
    return await client.chat.completions.create(**request_params)


@lru_cache(maxsize=1)
def get_chat_completions_runnable() -> Runnable[dict[str, Any], Any]:
    return RunnableLambda(_invoke_openai_chat_completions).with_config(
        {"run_name": "sidekick_openai_chat_completions"}
    )
