"""Model capability registry with live provider catalogs and static fallbacks."""

import asyncio
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from .config import AppConfig, get_provider_descriptor
from .constants import PROVIDER_ORDER, Capability, ProviderId
from .schemas import ModelDescriptor

logger = logging.getLogger(__name__)

CAPABILITY_ORDER: tuple[Capability, ...] = ("text", "chat", "multimodal", "web_search", "code")


@dataclass(frozen=True)
class CapabilityRule:
    """Adds ``capabilities`` to models whose id contains ``pattern``.

    An empty pattern matches every model of ``provider``.
    """

    pattern: str
    capabilities: tuple[Capability, ...]
    provider: ProviderId | None = None

    def matches(self, provider_id: str, model_id: str) -> bool:
        if self.provider is not None and self.provider != provider_id:
            return False
        return self.pattern in model_id


CAPABILITY_RULES: tuple[CapabilityRule, ...] = (
    CapabilityRule("", ("multimodal",), provider="google"),
    CapabilityRule("gpt-4o", ("multimodal",)),
    CapabilityRule("gpt-4-turbo", ("multimodal",)),
    CapabilityRule("vision", ("multimodal",)),
    CapabilityRule("claude-3", ("multimodal",)),
    CapabilityRule("claude-sonnet-4", ("multimodal",)),
    CapabilityRule("claude-opus-4", ("multimodal",)),
    CapabilityRule("claude-haiku-4", ("multimodal",)),
    CapabilityRule("coder", ("code",)),
    CapabilityRule("", ("web_search",), provider="perplexity"),
)


def infer_capabilities(provider_id: str, model_id: str) -> list[Capability]:
    found: set[Capability] = {"text", "chat"}
    for rule in CAPABILITY_RULES:
        if rule.matches(provider_id, model_id):
            found.update(rule.capabilities)
    return [capability for capability in CAPABILITY_ORDER if capability in found]


def humanize_model_id(model_id: str) -> str:
    return re.sub(r"\b\w", lambda match: match.group().upper(), model_id.replace("-", " "))


def context_window_for(model_id: str) -> int:
    if "gpt-4" in model_id:
        return 128000
    if "gpt-3.5" in model_id:
        return 16385
    return 4096


def _vision_suffix(capabilities: list[Capability]) -> str:
    return " (Vision)" if "multimodal" in capabilities else ""


def _parse_openai(payload: dict[str, Any]) -> list[ModelDescriptor]:
    models = []
    for entry in payload["data"]:
        model_id = entry["id"]
        if "gpt" not in model_id or any(
            blocked in model_id for blocked in ("dall-e", "whisper", "tts", "embedding")
        ):
            continue
        capabilities = infer_capabilities("openai", model_id)
        models.append(
            ModelDescriptor(
                model_id=model_id,
                name=humanize_model_id(model_id),
                provider_id="openai",
                description=f"OpenAI {model_id}{_vision_suffix(capabilities)}",
                capabilities=capabilities,
                context_window_tokens=context_window_for(model_id),
                max_output_tokens=4096,
            )
        )
    return models


def _parse_google(payload: dict[str, Any]) -> list[ModelDescriptor]:
    models = []
    for entry in payload["models"]:
        name = entry["name"]
        methods = entry.get("supportedGenerationMethods") or []
        if "gemini" not in name or "generateContent" not in methods:
            continue
        if "vision" in name or "embedding" in name:
            continue
        model_id = name.removeprefix("models/")
        capabilities = infer_capabilities("google", model_id)
        models.append(
            ModelDescriptor(
                model_id=model_id,
                name=entry.get("displayName") or humanize_model_id(model_id),
                provider_id="google",
                description=(entry.get("description") or f"Google {model_id}")
                + _vision_suffix(capabilities),
                capabilities=capabilities,
                context_window_tokens=entry.get("inputTokenLimit") or 1000000,
                max_output_tokens=entry.get("outputTokenLimit") or 8192,
            )
        )
    return models


def _parse_anthropic(payload: dict[str, Any]) -> list[ModelDescriptor]:
    models = []
    for entry in payload["data"]:
        model_id = entry["id"]
        if entry.get("type") != "model" or "embedding" in model_id:
            continue
        capabilities = infer_capabilities("anthropic", model_id)
        models.append(
            ModelDescriptor(
                model_id=model_id,
                name=entry.get("display_name") or humanize_model_id(model_id),
                provider_id="anthropic",
                description=(entry.get("description") or f"Anthropic {model_id}")
                + _vision_suffix(capabilities),
                capabilities=capabilities,
                context_window_tokens=entry.get("max_context_tokens") or 200000,
                max_output_tokens=entry.get("max_output_tokens") or 8192,
            )
        )
    return models


def _parse_deepseek(payload: dict[str, Any]) -> list[ModelDescriptor]:
    return [
        ModelDescriptor(
            model_id=entry["id"],
            name=humanize_model_id(entry["id"]),
            provider_id="deepseek",
            description=f"DeepSeek {entry['id']}",
            capabilities=infer_capabilities("deepseek", entry["id"]),
            context_window_tokens=32000,
            max_output_tokens=4096,
        )
        for entry in payload["data"]
        if "deepseek" in entry["id"] and "embedding" not in entry["id"]
    ]


def _parse_perplexity(payload: dict[str, Any]) -> list[ModelDescriptor]:
    return [
        ModelDescriptor(
            model_id=entry["id"],
            name=entry.get("name") or humanize_model_id(entry["id"]),
            provider_id="perplexity",
            description=entry.get("description") or f"Perplexity {entry['id']}",
            capabilities=infer_capabilities("perplexity", entry["id"]),
            context_window_tokens=entry.get("context_window") or 127072,
            max_output_tokens=entry.get("max_tokens") or 4096,
        )
        for entry in payload["data"]
        if entry.get("id") and "embedding" not in entry["id"] and "vision" not in entry["id"]
    ]


LIVE_PARSERS: Mapping[str, Callable[[dict[str, Any]], list[ModelDescriptor]]] = {
    "openai": _parse_openai,
    "google": _parse_google,
    "anthropic": _parse_anthropic,
    "deepseek": _parse_deepseek,
    "perplexity": _parse_perplexity,
}


def _entry(
    model_id: str,
    name: str,
    provider_id: ProviderId,
    description: str,
    capabilities: tuple[Capability, ...],
    context_window_tokens: int,
    max_output_tokens: int,
) -> ModelDescriptor:
    return ModelDescriptor(
        model_id=model_id,
        name=name,
        provider_id=provider_id,
        description=description,
        capabilities=list(capabilities),
        context_window_tokens=context_window_tokens,
        max_output_tokens=max_output_tokens,
    )


_TEXT_CHAT: tuple[Capability, ...] = ("text", "chat")
_MULTIMODAL: tuple[Capability, ...] = ("text", "chat", "multimodal")
_WEB_SEARCH: tuple[Capability, ...] = ("text", "chat", "web_search")

# Known public lineups, served when a provider's live list is unavailable.
FALLBACK_CATALOG: Mapping[str, tuple[ModelDescriptor, ...]] = {
    "openai": (
        _entry("gpt-4o", "GPT-4o", "openai", "OpenAI gpt-4o (Vision)", _MULTIMODAL, 128000, 4096),
        _entry(
            "gpt-4o-mini",
            "GPT-4o Mini",
            "openai",
            "OpenAI gpt-4o-mini (Vision)",
            _MULTIMODAL,
            128000,
            4096,
        ),
        _entry(
            "gpt-4-turbo",
            "GPT-4 Turbo",
            "openai",
            "OpenAI gpt-4-turbo (Vision)",
            _MULTIMODAL,
            128000,
            4096,
        ),
        _entry(
            "gpt-3.5-turbo", "GPT-3.5 Turbo", "openai", "OpenAI gpt-3.5-turbo", _TEXT_CHAT, 16385, 4096
        ),
    ),
    "google": (
        _entry(
            "gemini-2.0-flash-exp",
            "Gemini 2.0 Flash (Experimental)",
            "google",
            "Google's latest experimental model with multimodal capabilities",
            _MULTIMODAL,
            1000000,
            8192,
        ),
        _entry(
            "gemini-1.5-pro-latest",
            "Gemini 1.5 Pro (Latest)",
            "google",
            "Google's most capable production model",
            _MULTIMODAL,
            2000000,
            8192,
        ),
        _entry(
            "gemini-1.5-flash",
            "Gemini 1.5 Flash",
            "google",
            "Fast and efficient Gemini model",
            _MULTIMODAL,
            1000000,
            8192,
        ),
        _entry(
            "gemini-1.5-flash-8b",
            "Gemini 1.5 Flash 8B",
            "google",
            "Smaller, faster Gemini model",
            _TEXT_CHAT,
            1000000,
            8192,
        ),
    ),
    "anthropic": (
        _entry(
            "claude-3-5-sonnet-20241022",
            "Claude 3.5 Sonnet",
            "anthropic",
            "Most intelligent Claude model (Vision)",
            _MULTIMODAL,
            200000,
            8192,
        ),
        _entry(
            "claude-3-opus-20240229",
            "Claude 3 Opus",
            "anthropic",
            "Most powerful Claude model (Vision)",
            _MULTIMODAL,
            200000,
            4096,
        ),
        _entry(
            "claude-3-haiku-20240307",
            "Claude 3 Haiku",
            "anthropic",
            "Fastest Claude model (Vision)",
            _MULTIMODAL,
            200000,
            4096,
        ),
    ),
    "deepseek": (
        _entry(
            "deepseek-chat",
            "DeepSeek Chat",
            "deepseek",
            "DeepSeek conversational model",
            _TEXT_CHAT,
            32000,
            4096,
        ),
        _entry(
            "deepseek-coder",
            "DeepSeek Coder",
            "deepseek",
            "DeepSeek coding model",
            ("text", "chat", "code"),
            16000,
            4096,
        ),
    ),
    "perplexity": (
        _entry(
            "llama-3.1-sonar-huge-128k-online",
            "Sonar Huge 128K Online",
            "perplexity",
            "Largest web-connected model with real-time search",
            _WEB_SEARCH,
            127072,
            4096,
        ),
        _entry(
            "llama-3.1-sonar-large-128k-online",
            "Sonar Large 128K Online",
            "perplexity",
            "Large web-connected model with real-time search",
            _WEB_SEARCH,
            127072,
            4096,
        ),
        _entry(
            "llama-3.1-sonar-small-128k-online",
            "Sonar Small 128K Online",
            "perplexity",
            "Fast web-connected model with real-time search",
            _WEB_SEARCH,
            127072,
            4096,
        ),
        _entry(
            "llama-3.1-sonar-large-128k-chat",
            "Sonar Large 128K Chat",
            "perplexity",
            "Large model optimized for conversation",
            _TEXT_CHAT,
            127072,
            4096,
        ),
        _entry(
            "llama-3.1-sonar-small-128k-chat",
            "Sonar Small 128K Chat",
            "perplexity",
            "Fast model optimized for conversation",
            _TEXT_CHAT,
            127072,
            4096,
        ),
        _entry(
            "llama-3.1-8b-instruct",
            "Llama 3.1 8B Instruct",
            "perplexity",
            "Instruction-following model",
            _TEXT_CHAT,
            131072,
            4096,
        ),
        _entry(
            "llama-3.1-70b-instruct",
            "Llama 3.1 70B Instruct",
            "perplexity",
            "Large instruction-following model",
            _TEXT_CHAT,
            131072,
            4096,
        ),
    ),
}


def fallback_models(provider_id: str) -> list[ModelDescriptor]:
    return [model.model_copy(deep=True) for model in FALLBACK_CATALOG[provider_id]]


class CapabilityRegistry:
    """Lists the models usable with the configured provider credentials."""

    def __init__(self, config: AppConfig, http_client: httpx.AsyncClient) -> None:
        self._config = config
        self._http_client = http_client

    async def list_available_models(
        self, credential_flags: Mapping[str, bool] | None = None
    ) -> list[ModelDescriptor]:
        flags = self._config.credential_flags if credential_flags is None else credential_flags
        providers = [provider_id for provider_id in PROVIDER_ORDER if flags.get(provider_id)]
        logger.info("Listing available models", extra={"providers": providers})

        grouped = await asyncio.gather(*(self._models_for(provider_id) for provider_id in providers))
        models = [model for group in grouped for model in group]
        logger.info("Available models resolved", extra={"model_count": len(models)})
        return models

    async def _models_for(self, provider_id: str) -> list[ModelDescriptor]:
        api_key = self._config.api_keys.get(provider_id)
        if not api_key:
            return fallback_models(provider_id)
        try:
            models = await self._fetch_live(provider_id, api_key)
        except Exception as exc:
            logger.warning(
                "Live model list unavailable; using fallback catalog",
                extra={"provider": provider_id, "reason": str(exc) or type(exc).__name__},
            )
            return fallback_models(provider_id)
        if not models:
            logger.warning(
                "Live model list was empty; using fallback catalog",
                extra={"provider": provider_id},
            )
            return fallback_models(provider_id)
        return models

    async def _fetch_live(self, provider_id: str, api_key: str) -> list[ModelDescriptor]:
        descriptor = get_provider_descriptor(provider_id)
        response = await self._http_client.get(
            descriptor.models_endpoint, headers=descriptor.auth_headers(api_key)
        )
        response.raise_for_status()
        return LIVE_PARSERS[provider_id](response.json())
