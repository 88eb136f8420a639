"""Pydantic schemas for chat API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import (
    DEFAULT_MODEL,
    DEFAULT_PROVIDER,
    Capability,
    ProviderId,
    Role,
)


class ImageAttachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    url: str
    mime_type: str = Field(alias="mimeType")
    file_size: int = Field(default=0, alias="fileSize", ge=0)
    file_name: str | None = Field(default=None, alias="fileName")


class FileAttachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    url: str
    file_name: str = Field(alias="fileName")
    mime_type: str = Field(alias="mimeType")
    file_size: int = Field(default=0, alias="fileSize", ge=0)
    extracted_content: str | None = Field(default=None, alias="extractedContent")

    @field_validator("file_name")
    @classmethod
    def validate_file_name(cls, file_name: str) -> str:
        if not file_name.strip():
            raise ValueError("fileName must not be empty")
        return file_name


class ConversationTurn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    role: Role
    content: str = ""
    images: tuple[ImageAttachment, ...] = ()
    files: tuple[FileAttachment, ...] = ()

    @classmethod
    def system(cls, content: str) -> "ConversationTurn":
        return cls(role="system", content=content)


class TokenUsage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    prompt_tokens: int = Field(default=0, alias="promptTokens")
    completion_tokens: int = Field(default=0, alias="completionTokens")
    total_tokens: int = Field(default=0, alias="totalTokens")

    @classmethod
    def from_counts(cls, prompt_tokens: int | None, completion_tokens: int | None) -> "TokenUsage":
        """Build usage where total is always prompt + completion.

        Providers that report only one side (or neither) yield all zeros.
        """
        if prompt_tokens is None or completion_tokens is None:
            return cls()
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )


class ModelDescriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model_id: str = Field(alias="id")
    name: str
    provider_id: ProviderId = Field(alias="provider")
    description: str
    capabilities: list[Capability]
    available: bool = True
    context_window_tokens: int = Field(alias="contextWindow")
    max_output_tokens: int = Field(alias="maxTokens")


class ModelsResponse(BaseModel):
    models: list[ModelDescriptor]


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = ""
    images: list[ImageAttachment] = Field(default_factory=list)
    files: list[FileAttachment] = Field(default_factory=list)
    model: str = DEFAULT_MODEL
    provider: ProviderId = DEFAULT_PROVIDER

    @field_validator("model")
    @classmethod
    def validate_model(cls, model: str) -> str:
        if not model.strip():
            raise ValueError("model must not be empty")
        return model

    @model_validator(mode="after")
    def validate_has_payload(self) -> "SendMessageRequest":
        if not self.content.strip() and not self.images and not self.files:
            raise ValueError("A message needs content, images or files")
        return self


class ChatMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    chat_id: str = Field(alias="chatId")
    role: Role
    content: str
    timestamp: datetime
    model: str | None = None
    provider: ProviderId | None = None
    token_count: int = Field(default=0, alias="tokenCount")
    status: str = "sent"
    images: list[ImageAttachment] = Field(default_factory=list)
    files: list[FileAttachment] = Field(default_factory=list)

    def to_turn(self) -> ConversationTurn:
        """History turns carry images but not files; file text is only sent once."""
        return ConversationTurn(role=self.role, content=self.content, images=tuple(self.images))


class SendMessageResponse(BaseModel):
    message: ChatMessage
    usage: TokenUsage


class CreateChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str | None = Field(default=None, alias="projectId")


class UpdateChatTitleRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class ChatSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    project_id: str | None = Field(default=None, alias="projectId")
    message_count: int = Field(default=0, alias="messageCount")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class ChatListResponse(BaseModel):
    chats: list[ChatSummary]


class SuccessResponse(BaseModel):
    success: bool = True
