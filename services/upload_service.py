"""
Upload Service

Creates content items. Text outputs are stored inline as the output
reference; image, video and audio outputs are uploaded to the `outputs`
bucket and referenced by their public URL.
"""

import logging
import secrets
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional, Union

from core.config import settings
from core.content import OutputKind, combine_body, ensure_word_limit, normalize_category
from core.exceptions import PinPromptException, StorageError, ValidationError
from core.models import ContentItem, Profile
from providers.gateway import DataGateway

logger = logging.getLogger(__name__)

OUTPUT_BUCKET = "outputs"
AVATAR_BUCKET = "avatars"

DEFAULT_EXTENSIONS = {
    OutputKind.IMAGE: "png",
    OutputKind.VIDEO: "mp4",
    OutputKind.AUDIO: "mp3",
}


@dataclass
class UploadedFile:
    filename: str
    data: bytes


def file_extension(filename: Optional[str], default: str) -> str:
    suffix = PurePosixPath(filename or "").suffix.lstrip(".").lower()
    return suffix if suffix.isalnum() else default


def random_name(extension: str) -> str:
    return f"{secrets.token_hex(12)}.{extension}"


async def store_file(gateway: DataGateway, bucket: str, path: str, data: bytes) -> str:
    """Upload bytes and return their public URL"""
    stored = await gateway.storage.upload(bucket, path, data)
    return gateway.storage.public_url(bucket, stored)


class UploadService:
    def __init__(self, gateway: DataGateway, word_limit: Optional[int] = None):
        self.gateway = gateway
        self.word_limit = word_limit or settings.edit_word_limit

    async def create_item(
        self,
        viewer: Profile,
        reflection: str,
        generation: str,
        output_type: Union[OutputKind, str],
        model_label: str,
        category: Optional[str] = None,
        output_text: Optional[str] = None,
        file: Optional[UploadedFile] = None,
    ) -> ContentItem:
        try:
            kind = OutputKind(output_type)
        except ValueError:
            raise ValidationError("output_type", output_type, "Unknown output type")

        ensure_word_limit("reflection", reflection, self.word_limit)
        ensure_word_limit("generation", generation, self.word_limit)
        if not (generation or "").strip():
            raise ValidationError("generation", generation, "Prompt must not be empty")
        body = combine_body(reflection, generation)
        category = normalize_category(category)

        model_label = (model_label or "").strip()
        if not model_label:
            raise ValidationError("model_label", model_label, "Model is required")

        path = None
        if kind == OutputKind.TEXT:
            output_url = (output_text or "").strip()
            if not output_url:
                raise ValidationError("output_text", output_text, "Text output is required")
        else:
            if file is None or not file.data:
                raise ValidationError("file", None, f"A {kind.value} file is required")
            extension = file_extension(file.filename, DEFAULT_EXTENSIONS[kind])
            path = f"{kind.value}s/{random_name(extension)}"
            output_url = await store_file(self.gateway, OUTPUT_BUCKET, path, file.data)

        try:
            rows = await self.gateway.table("content_items").insert(
                [
                    {
                        "user_id": viewer.id,
                        "body": body,
                        "output_url": output_url,
                        "output_type": kind.value,
                        "model_label": model_label,
                        "category": category,
                        "like_count": 0,
                    }
                ]
            )
        except PinPromptException:
            if path is not None:
                await self._discard_output(path)
            raise
        item = rows[0]
        logger.info(f"Content item {item.id} created by {viewer.username} ({kind.value})")
        return item

    async def _discard_output(self, path: str) -> None:
        """Remove an upload whose content row was never written"""
        try:
            await self.gateway.storage.remove(OUTPUT_BUCKET, path)
            logger.warning(f"Discarded orphaned upload {OUTPUT_BUCKET}/{path}")
        except StorageError as e:
            logger.error(f"Orphaned upload {OUTPUT_BUCKET}/{path} left in storage: {e.message}")
