"""Process-wide provider descriptors and application configuration."""

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from .constants import (
    ANTHROPIC_API_VERSION,
    ASSISTANT_MAX_POLL_ATTEMPTS,
    ASSISTANT_POLL_INTERVAL_SECONDS,
    FREE_TIER_MONTHLY_LIMIT,
    HISTORY_LIMIT,
    HTTP_TIMEOUT_SECONDS,
    PROVIDER_ORDER,
    ChatStoreBackend,
    ImageMode,
    OrchestratorKind,
    ProviderId,
    SystemPromptMode,
)
from .errors import ConfigurationError


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass(frozen=True)
class ProviderDescriptor:
    provider_id: ProviderId
    display_name: str
    endpoint: str | None
    auth_header_name: str
    auth_header_template: str
    models_endpoint: str
    supports_native_file_upload: bool
    supports_image_url_reference: bool
    can_download_urls: bool
    system_prompt_mode: SystemPromptMode
    image_mode: ImageMode
    static_headers: tuple[tuple[str, str], ...] = ()

    def auth_headers(self, api_key: str) -> dict[str, str]:
        headers = dict(self.static_headers)
        headers[self.auth_header_name] = self.auth_header_template.format(api_key=api_key)
        return headers


PROVIDER_DESCRIPTORS: Mapping[str, ProviderDescriptor] = MappingProxyType(
    {
        "openai": ProviderDescriptor(
            provider_id="openai",
            display_name="OpenAI",
            endpoint=None,
            auth_header_name="Authorization",
            auth_header_template="Bearer {api_key}",
            models_endpoint="https://api.openai.com/v1/models",
            supports_native_file_upload=True,
            supports_image_url_reference=True,
            can_download_urls=False,
            system_prompt_mode="inline",
            image_mode="image_url",
        ),
        "google": ProviderDescriptor(
            provider_id="google",
            display_name="Google",
            endpoint=None,
            auth_header_name="x-goog-api-key",
            auth_header_template="{api_key}",
            models_endpoint="https://generativelanguage.googleapis.com/v1beta/models",
            supports_native_file_upload=False,
            supports_image_url_reference=False,
            can_download_urls=True,
            system_prompt_mode="separate",
            image_mode="inline_base64",
        ),
        "anthropic": ProviderDescriptor(
            provider_id="anthropic",
            display_name="Anthropic",
            endpoint="https://api.anthropic.com/v1/messages",
            auth_header_name="x-api-key",
            auth_header_template="{api_key}",
            models_endpoint="https://api.anthropic.com/v1/models",
            supports_native_file_upload=False,
            supports_image_url_reference=True,
            can_download_urls=True,
            system_prompt_mode="separate",
            image_mode="anthropic_url",
            static_headers=(("anthropic-version", ANTHROPIC_API_VERSION),),
        ),
        "deepseek": ProviderDescriptor(
            provider_id="deepseek",
            display_name="DeepSeek",
            endpoint="https://api.deepseek.com/v1/chat/completions",
            auth_header_name="Authorization",
            auth_header_template="Bearer {api_key}",
            models_endpoint="https://api.deepseek.com/v1/models",
            supports_native_file_upload=False,
            supports_image_url_reference=False,
            can_download_urls=True,
            system_prompt_mode="inline",
            image_mode="text_only",
        ),
        "perplexity": ProviderDescriptor(
            provider_id="perplexity",
            display_name="Perplexity",
            endpoint="https://api.perplexity.ai/chat/completions",
            auth_header_name="Authorization",
            auth_header_template="Bearer {api_key}",
            models_endpoint="https://api.perplexity.ai/v1/models",
            supports_native_file_upload=False,
            supports_image_url_reference=False,
            can_download_urls=True,
            system_prompt_mode="inline",
            image_mode="text_only",
        ),
    }
)

API_KEY_ENV_VARS: Mapping[str, str] = MappingProxyType(
    {
        "openai": "OPENAI_API_KEY",
        "google": "GOOGLE_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "deepseek": "DEEPSEEK_API_KEY",
        "perplexity": "PERPLEXITY_API_KEY",
    }
)


def get_provider_descriptor(provider_id: str) -> ProviderDescriptor:
    descriptor = PROVIDER_DESCRIPTORS.get(provider_id)
    if descriptor is None:
        raise ConfigurationError(f"Unsupported provider: {provider_id}")
    return descriptor


def mask_secret(value: str | None) -> str:
    if not value:
        return "<unset>"
    return f"***{value[-4:]}" if len(value) > 8 else "***"


@dataclass(frozen=True)
class AppConfig:
    api_keys: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    langsmith_api_key: str | None = None
    chat_store: ChatStoreBackend = "memory"
    firebase_credentials_path: Path | None = None
    firestore_database_id: str | None = None
    orchestrator: OrchestratorKind = "langgraph"
    openai_native_file_upload: bool = False
    assistant_poll_interval_seconds: float = ASSISTANT_POLL_INTERVAL_SECONDS
    assistant_max_poll_attempts: int = ASSISTANT_MAX_POLL_ATTEMPTS
    http_timeout_seconds: float = HTTP_TIMEOUT_SECONDS
    history_limit: int = HISTORY_LIMIT
    free_tier_monthly_limit: int = FREE_TIER_MONTHLY_LIMIT

    @property
    def credential_flags(self) -> dict[str, bool]:
        return {provider_id: bool(self.api_keys.get(provider_id)) for provider_id in PROVIDER_ORDER}

    def api_key(self, provider_id: str) -> str:
        get_provider_descriptor(provider_id)
        key = self.api_keys.get(provider_id)
        if not key:
            raise ConfigurationError(f"Provider is not configured: {provider_id}")
        return key


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"{name} must be a boolean, got '{raw}'")


def _read_number(name: str, default: float, cast: Callable[[str], float]) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got '{raw}'") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive")
    return value


def _read_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = (os.getenv(name) or default).strip().lower()
    if value not in choices:
        raise ConfigError(f"{name} must be one of {', '.join(choices)}, got '{value}'")
    return value


def load_config(secret_lookup: Callable[[str], str | None] | None = None) -> AppConfig:
    """Load configuration from environment variables.

    ``secret_lookup`` is consulted for provider keys absent from the
    environment; it receives the provider id and returns the key or None.
    """
    api_keys: dict[str, str] = {}
    for provider_id in PROVIDER_ORDER:
        key = (os.getenv(API_KEY_ENV_VARS[provider_id]) or "").strip()
        if not key and secret_lookup is not None:
            key = (secret_lookup(provider_id) or "").strip()
        if key:
            api_keys[provider_id] = key

    chat_store = _read_choice("CHAT_STORE", "memory", ("memory", "firestore"))
    credentials_raw = os.getenv("FIREBASE_CREDENTIALS_PATH")
    credentials_path = Path(credentials_raw).expanduser() if credentials_raw else None

    return AppConfig(
        api_keys=MappingProxyType(api_keys),
        langsmith_api_key=os.getenv("LANGSMITH_API_KEY") or None,
        chat_store=chat_store,  # type: ignore[arg-type]
        firebase_credentials_path=credentials_path,
        firestore_database_id=os.getenv("FIRESTORE_DATABASE_ID") or None,
        orchestrator=_read_choice(  # type: ignore[arg-type]
            "CHAT_ORCHESTRATOR", "langgraph", ("langgraph", "direct")
        ),
        openai_native_file_upload=_read_bool("OPENAI_NATIVE_FILE_UPLOAD", False),
        assistant_poll_interval_seconds=_read_number(
            "ASSISTANT_POLL_INTERVAL_SECONDS", ASSISTANT_POLL_INTERVAL_SECONDS, float
        ),
        assistant_max_poll_attempts=int(
            _read_number("ASSISTANT_MAX_POLL_ATTEMPTS", ASSISTANT_MAX_POLL_ATTEMPTS, int)
        ),
        http_timeout_seconds=_read_number("HTTP_TIMEOUT_SECONDS", HTTP_TIMEOUT_SECONDS, float),
        history_limit=int(_read_number("HISTORY_LIMIT", HISTORY_LIMIT, int)),
        free_tier_monthly_limit=int(
            _read_number("FREE_TIER_MONTHLY_LIMIT", FREE_TIER_MONTHLY_LIMIT, int)
        ),
    )
