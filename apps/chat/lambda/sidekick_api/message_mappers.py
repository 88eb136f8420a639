"""Conversion helpers between conversation turns and provider-specific formats."""

import asyncio
import base64
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from .config import AppConfig, ProviderDescriptor, get_provider_descriptor
from .errors import ConfigurationError, ProviderError
from .file_extractor import FileContentExtractor, format_file_block
from .providers.base import FileStore, PayloadMode, ProviderPayload, UploadedFile
from .schemas import ConversationTurn, FileAttachment, ImageAttachment

logger = logging.getLogger(__name__)

EXTRACTED_FILES_PREAMBLE = "The following files have been uploaded and their content extracted:"
DOWNLOAD_FILES_PREAMBLE = "Please download and analyze the following files:"
DOWNLOAD_FILES_NOTE = (
    "Note: These files are stored in cloud storage with public read access. "
    "You can download them directly using the provided URLs."
)


def is_https_url(url: str) -> bool:
    return url.startswith("https://")


def build_url_image_part(image: ImageAttachment, image_mode: str) -> dict[str, Any] | None:
    """Build an image content part for URL-reference providers.

    Returns None for anything but an https URL.
    """
    if not is_https_url(image.url):
        logger.warning("Skipping image with invalid URL", extra={"image_url": image.url[:80]})
        return None
    if image_mode == "anthropic_url":
        return {"type": "image", "source": {"type": "url", "url": image.url}}
    return {"type": "image_url", "image_url": {"url": image.url, "detail": "auto"}}


def build_file_reference_part(uploaded: UploadedFile) -> dict[str, Any]:
    return {
        "type": "text",
        "text": f"[Attached File: {uploaded.file_name} - Available at: {uploaded.url}]",
    }


def build_download_note(files: Sequence[FileAttachment]) -> str:
    file_list = "\n\n".join(
        f"File: {file.file_name} ({file.mime_type})\nURL: {file.url}" for file in files
    )
    return f"{DOWNLOAD_FILES_PREAMBLE}\n\n{file_list}\n\n{DOWNLOAD_FILES_NOTE}"


def split_system_turns(
    turns: Sequence[ConversationTurn],
) -> tuple[str | None, list[ConversationTurn]]:
    """Merge system turns into one string for providers with a separate system field."""
    system_parts = [turn.content for turn in turns if turn.role == "system" and turn.content]
    rest = [turn for turn in turns if turn.role != "system"]
    return ("\n\n".join(system_parts) if system_parts else None), rest


class MessageNormalizer:
    """Builds provider payloads from a provider-agnostic turn sequence."""

    def __init__(
        self,
        config: AppConfig,
        http_client: httpx.AsyncClient,
        extractor: FileContentExtractor,
        file_store: FileStore | None = None,
    ) -> None:
        self._config = config
        self._http_client = http_client
        self._extractor = extractor
        self._file_store = file_store

    def uses_native_upload(self, descriptor: ProviderDescriptor) -> bool:
        return (
            descriptor.supports_native_file_upload
            and self._config.openai_native_file_upload
            and self._file_store is not None
        )

    async def prepare_file_context(
        self, provider_id: str, files: Sequence[FileAttachment]
    ) -> ConversationTurn | None:
        """Build the system turn that tells the provider about attached files.

        Providers that cannot download URLs get the extracted text inline;
        the others get the URLs. Native-upload providers get nothing here.
        """
        descriptor = get_provider_descriptor(provider_id)
        if not files or self.uses_native_upload(descriptor):
            return None

        if not descriptor.can_download_urls:
            contents = await self._extractor.extract_many(files)
            blocks = "\n\n".join(
                format_file_block(file, content) for file, content in zip(files, contents)
            )
            logger.info(
                "Extracted file contents",
                extra={"provider": provider_id, "file_count": len(files)},
            )
            return ConversationTurn.system(f"{EXTRACTED_FILES_PREAMBLE}\n\n{blocks}")

        logger.info("Added file URLs", extra={"provider": provider_id, "file_count": len(files)})
        return ConversationTurn.system(build_download_note(files))

    async def normalize(
        self, turns: Sequence[ConversationTurn], provider_id: str, model_id: str
    ) -> ProviderPayload:
        """Build the provider payload for ``turns``.

        File content is not extracted here: callers add the turn returned by
        ``prepare_file_context`` to ``turns`` first. Outside native upload,
        file attachments on a turn are only metadata and are left out of the
        message array.
        """
        descriptor = get_provider_descriptor(provider_id)
        has_files = any(turn.files for turn in turns)
        has_images = any(turn.images for turn in turns)
        logger.info(
            "Normalizing conversation",
            extra={
                "provider": provider_id,
                "model": model_id,
                "message_count": len(turns),
                "has_files": has_files,
                "has_images": has_images,
            },
        )

        if has_files and self.uses_native_upload(descriptor):
            if has_images:
                return await self._build_hybrid_payload(turns, descriptor, model_id)
            return ProviderPayload(
                provider_id=provider_id,
                model_id=model_id,
                mode=PayloadMode.SESSION,
                session_turns=list(turns),
            )

        if descriptor.image_mode == "inline_base64":
            return await self._build_inline_data_payload(turns, descriptor, model_id)
        if descriptor.system_prompt_mode == "separate":
            return self._build_separate_system_payload(turns, descriptor, model_id)
        return self._build_chat_payload(turns, descriptor, model_id)

    def _build_chat_payload(
        self, turns: Sequence[ConversationTurn], descriptor: ProviderDescriptor, model_id: str
    ) -> ProviderPayload:
        payload = ProviderPayload(provider_id=descriptor.provider_id, model_id=model_id)
        for turn in turns:
            if not turn.images:
                payload.messages.append({"role": turn.role, "content": turn.content})
                continue

            if descriptor.image_mode == "text_only":
                logger.warning(
                    "Provider does not accept images; dropping them",
                    extra={"provider": descriptor.provider_id, "image_count": len(turn.images)},
                )
                payload.skipped_images += len(turn.images)
                payload.messages.append({"role": turn.role, "content": turn.content})
                continue

            parts = self._text_and_image_parts(turn, descriptor, payload)
            payload.messages.append({"role": turn.role, "content": parts or turn.content})
        return payload

    def _build_separate_system_payload(
        self, turns: Sequence[ConversationTurn], descriptor: ProviderDescriptor, model_id: str
    ) -> ProviderPayload:
        system, conversation = split_system_turns(turns)
        payload = ProviderPayload(
            provider_id=descriptor.provider_id, model_id=model_id, system=system
        )
        for turn in conversation:
            if turn.images:
                parts = self._text_and_image_parts(turn, descriptor, payload)
                payload.messages.append({"role": turn.role, "content": parts or turn.content})
            else:
                payload.messages.append({"role": turn.role, "content": turn.content})
        return payload

    async def _build_inline_data_payload(
        self, turns: Sequence[ConversationTurn], descriptor: ProviderDescriptor, model_id: str
    ) -> ProviderPayload:
        system, conversation = split_system_turns(turns)
        payload = ProviderPayload(
            provider_id=descriptor.provider_id, model_id=model_id, system=system
        )
        for turn in conversation:
            parts: list[dict[str, Any]] = []
            if turn.content:
                parts.append({"text": turn.content})
            if turn.images:
                encoded = await asyncio.gather(*(self._fetch_inline_image(image) for image in turn.images))
                for part in encoded:
                    if part is None:
                        payload.skipped_images += 1
                    else:
                        payload.image_count += 1
                        parts.append(part)
            if not parts:
                parts.append({"text": ""})
            payload.messages.append(
                {"role": "model" if turn.role == "assistant" else "user", "parts": parts}
            )
        return payload

    async def _fetch_inline_image(self, image: ImageAttachment) -> dict[str, Any] | None:
        try:
            response = await self._http_client.get(image.url)
            response.raise_for_status()
        except Exception as exc:
            logger.warning(
                "Failed to fetch image for inline encoding; skipping it",
                extra={"image_url": image.url[:80], "reason": str(exc) or type(exc).__name__},
            )
            return None
        return {
            "inline_data": {
                "mime_type": image.mime_type,
                "data": base64.b64encode(response.content).decode("ascii"),
            }
        }

    async def _build_hybrid_payload(
        self, turns: Sequence[ConversationTurn], descriptor: ProviderDescriptor, model_id: str
    ) -> ProviderPayload:
        payload = ProviderPayload(
            provider_id=descriptor.provider_id, model_id=model_id, mode=PayloadMode.HYBRID
        )
        payload.uploaded_files = await self._upload_all(descriptor.provider_id, turns)
        uploaded_by_name = {uploaded.file_name: uploaded for uploaded in payload.uploaded_files}

        for turn in turns:
            parts: list[dict[str, Any]] = []
            if turn.content:
                parts.append({"type": "text", "text": turn.content})
            for file in turn.files:
                uploaded = uploaded_by_name.get(file.file_name)
                if uploaded is not None:
                    parts.append(build_file_reference_part(uploaded))
            for image in turn.images:
                part = build_url_image_part(image, descriptor.image_mode)
                if part is None:
                    payload.skipped_images += 1
                else:
                    payload.image_count += 1
                    parts.append(part)
            payload.messages.append({"role": turn.role, "content": parts or turn.content})

        logger.info(
            "Built hybrid file and image payload",
            extra={
                "provider": descriptor.provider_id,
                "uploaded_file_count": len(payload.uploaded_files),
                "image_count": payload.image_count,
            },
        )
        return payload

    async def _upload_all(
        self, provider_id: str, turns: Sequence[ConversationTurn]
    ) -> list[UploadedFile]:
        file_store = self._file_store
        if file_store is None:
            raise ConfigurationError(f"Provider has no file store configured: {provider_id}")
        uploaded: list[UploadedFile] = []
        try:
            for turn in turns:
                for file in turn.files:
                    uploaded.append(await file_store.upload(file))
        except Exception as exc:
            for done in uploaded:
                try:
                    await file_store.delete(done.file_id)
                except Exception:
                    logger.warning(
                        "Failed to clean up uploaded file",
                        extra={"file_id": done.file_id},
                        exc_info=True,
                    )
            if isinstance(exc, ProviderError):
                raise
            raise ProviderError(provider_id, "file upload failed", cause=exc) from exc
        return uploaded

    def _text_and_image_parts(
        self, turn: ConversationTurn, descriptor: ProviderDescriptor, payload: ProviderPayload
    ) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = []
        if turn.content:
            parts.append({"type": "text", "text": turn.content})
        for image in turn.images:
            part = build_url_image_part(image, descriptor.image_mode)
            if part is None:
                payload.skipped_images += 1
            else:
                payload.image_count += 1
                parts.append(part)
        return parts
