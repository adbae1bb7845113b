"""Attachment classification and upload normalization."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Protocol, Sequence

from fastapi import UploadFile

logger = logging.getLogger(__name__)


class AttachmentError(RuntimeError):
    """Base error raised for attachment failures."""


class AttachmentTooLarge(AttachmentError):
    """Raised when an uploaded file exceeds the configured limit."""


class AttachmentCategory(str, Enum):
    DOCUMENT = "document"
    IMAGE = "image"


@dataclass(frozen=True)
class Attachment:
    """One uploaded file, held in memory for the duration of a request."""

    filename: str
    mime_type: str
    data: bytes

    @property
    def category(self) -> AttachmentCategory:
        if self.mime_type.lower().startswith("image/"):
            return AttachmentCategory.IMAGE
        return AttachmentCategory.DOCUMENT


@dataclass(frozen=True)
class NormalizedAttachments:
    file_ids: list[str] = field(default_factory=list)
    image_names: list[str] = field(default_factory=list)


class FileUploader(Protocol):
    async def upload_file(self, attachment: Attachment) -> str:
        ...


def normalize_filename(filename: str) -> str:
    """Lower-case the extension; upstream file-type detection is case-sensitive."""

    path = PurePath(filename)
    if not path.suffix:
        return filename
    return f"{filename[: -len(path.suffix)]}{path.suffix.lower()}"


def fold_image_notice(text: str, image_names: Sequence[str]) -> str:
    """Append a textual notice for images the assistant cannot ingest directly."""

    if not image_names:
        return text
    names = ", ".join(image_names)
    return (
        f"{text}\n\n[User has uploaded {len(image_names)} image file(s): {names}]"
    )


async def read_upload(upload: UploadFile, *, max_size_bytes: int) -> Attachment:
    """Read a multipart upload into an ``Attachment``, enforcing the size limit."""

    chunk_size = 1024 * 1024  # 1 MiB
    size = 0
    chunks: list[bytes] = []
    filename = upload.filename or "file.bin"
    try:
        while True:
            chunk = await upload.read(chunk_size)
            if not chunk:
                break
            size += len(chunk)
            if size > max_size_bytes:
                raise AttachmentTooLarge(
                    f"Attachment {filename} exceeded {max_size_bytes} bytes limit"
                )
            chunks.append(chunk)
    finally:
        await upload.close()

    return Attachment(
        filename=filename,
        mime_type=(upload.content_type or "application/octet-stream").lower(),
        data=b"".join(chunks),
    )


async def normalize_attachments(
    attachments: Sequence[Attachment],
    uploader: FileUploader,
) -> NormalizedAttachments:
    """Upload documents in order and collect image names.

    Any upload failure propagates as ``FileUploadError`` so that a partial
    attachment set is never sent with the message.
    """

    result = NormalizedAttachments()
    for attachment in attachments:
        if attachment.category is AttachmentCategory.IMAGE:
            logger.info("Image attachment %s folded into message text", attachment.filename)
            result.image_names.append(attachment.filename)
            continue

        normalized = Attachment(
            filename=normalize_filename(attachment.filename),
            mime_type=attachment.mime_type,
            data=attachment.data,
        )
        logger.info("Uploading file: %s", normalized.filename)
        result.file_ids.append(await uploader.upload_file(normalized))
    return result


__all__ = [
    "Attachment",
    "AttachmentCategory",
    "AttachmentError",
    "AttachmentTooLarge",
    "FileUploader",
    "NormalizedAttachments",
    "fold_image_notice",
    "normalize_attachments",
    "normalize_filename",
    "read_upload",
]
