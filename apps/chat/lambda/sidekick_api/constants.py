"""Shared constants and literal types for the SideKick chat Lambda."""

from typing import Literal

AWS_REGION = "ap-northeast-1"
LANGSMITH_PROJECT = "sidekick-chat"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_PROVIDER = "openai"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_OUTPUT_TOKENS = 1000
ANTHROPIC_MAX_OUTPUT_TOKENS = 4096
ANTHROPIC_API_VERSION = "2023-06-01"

HISTORY_LIMIT = 20
FREE_TIER_PLAN = "free"
FREE_TIER_MONTHLY_LIMIT = 10
CHAT_LIST_LIMIT = 20
DEFAULT_CHAT_TITLE = "New Chat"

ASSISTANT_POLL_INTERVAL_SECONDS = 1.0
ASSISTANT_MAX_POLL_ATTEMPTS = 120
ASSISTANT_NAME = "SideKick File Assistant"
ASSISTANT_INSTRUCTIONS = (
    "You are a helpful assistant that can analyze uploaded files. "
    "Provide detailed analysis and answers based on the file content."
)
HTTP_TIMEOUT_SECONDS = 60.0

PDF_MIME_TYPE = "application/pdf"
WORD_MIME_TYPES = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/msword",
    }
)
XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS_MIME_TYPE = "application/vnd.ms-excel"
PLAIN_TEXT_MIME_TYPES = frozenset(
    {"text/plain", "text/markdown", "application/json", "text/csv"}
)

ProviderId = Literal["openai", "google", "anthropic", "deepseek", "perplexity"]
Role = Literal["system", "user", "assistant"]
Capability = Literal["text", "chat", "multimodal", "web_search", "code"]
SystemPromptMode = Literal["inline", "separate"]
ImageMode = Literal["image_url", "anthropic_url", "inline_base64", "text_only"]
ChatStoreBackend = Literal["memory", "firestore"]
OrchestratorKind = Literal["langgraph", "direct"]

PROVIDER_ORDER: tuple[ProviderId, ...] = ("openai", "google", "anthropic", "deepseek", "perplexity")
