"""OpenAI Files API store used for native file uploads."""

import logging
from collections.abc import Callable

import httpx
from openai import AsyncOpenAI

from sidekick_api.errors import ProviderError
from sidekick_api.schemas import FileAttachment

from .base import UploadedFile

logger = logging.getLogger(__name__)

OPENAI_FILE_URL_TEMPLATE = "https://files.openai.com/files/{file_id}"


class OpenAIFileStore:
    def __init__(
        self,
        get_openai_client: Callable[[], AsyncOpenAI],
        http_client: httpx.AsyncClient,
    ) -> None:
        self._get_openai_client = get_openai_client
        self._http_client = http_client

    async def upload(self, file: FileAttachment) -> UploadedFile:
        response = await self._http_client.get(file.url)
        if response.is_error:
            raise ProviderError(
                "openai",
                f"Failed to download file: {response.status_code}",
                status=response.status_code,
            )

        created = await self._get_openai_client().files.create(
            file=(file.file_name, response.content, file.mime_type),
            purpose="assistants",
        )
        logger.info(
            "File uploaded to OpenAI",
            extra={"file_id": created.id, "file_name": file.file_name},
        )
        return UploadedFile(
            file_id=created.id,
            file_name=file.file_name,
            mime_type=file.mime_type,
            url=OPENAI_FILE_URL_TEMPLATE.format(file_id=created.id),
        )

    async def delete(self, file_id: str) -> None:
        await self._get_openai_client().files.delete(file_id)
        logger.info("Deleted uploaded OpenAI file", extra={"file_id": file_id})
