"""Blob store for candidate attachments.

Attachments are stored on local disk under a generated locator that never
reuses the user-supplied filename. The attachment policy (allowed media
types, extensions and size ceiling) is enforced here, before any byte is
written.
"""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Protocol

import anyio

from .config import DOC_MEDIA_TYPE, DOCX_MEDIA_TYPE, PDF_MEDIA_TYPE, StorageSettings, UploadSettings, settings

logger = logging.getLogger(__name__)

LOCATOR_PREFIX = "resume-"
LOCATOR_PATTERN = re.compile(r"^resume-[0-9a-f]{32}(\.[a-z0-9]{1,8})?$")


class UploadRejected(Exception):
    """Raised when an upload breaks the attachment policy or is malformed."""
    pass


class UpstreamIOError(Exception):
    """Raised when the blob store cannot persist an attachment."""
    pass


class FileType(str, Enum):
    """Supported attachment types."""
    PDF = "pdf"
    DOC = "doc"
    DOCX = "docx"
    UNKNOWN = "unknown"


_MEDIA_TYPES = {
    PDF_MEDIA_TYPE: FileType.PDF,
    DOC_MEDIA_TYPE: FileType.DOC,
    DOCX_MEDIA_TYPE: FileType.DOCX,
}

_MAGIC_NUMBERS = {
    FileType.PDF: (b"%PDF",),
    FileType.DOC: (b"\xd0\xcf\x11\xe0",),  # OLE2 compound file
    FileType.DOCX: (b"PK\x03\x04",),  # ZIP/Office
}


class AsyncReadable(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


@dataclass
class BlobInfo:
    """A blob currently present in the store."""
    locator: str
    size: int
    modified_at: datetime


def detect_file_type(media_type: str | None) -> FileType:
    """Map a declared media type (parameters ignored) to a FileType."""
    if not media_type:
        return FileType.UNKNOWN
    base = media_type.split(";", 1)[0].strip().lower()
    return _MEDIA_TYPES.get(base, FileType.UNKNOWN)


def matches_magic_number(file_type: FileType, head: bytes) -> bool:
    """Check the first bytes of a file against its declared type."""
    prefixes = _MAGIC_NUMBERS.get(file_type)
    if not prefixes:
        return False
    return any(head.startswith(prefix) for prefix in prefixes)


def file_extension(filename: str) -> str:
    return Path(filename).suffix.lower()


def check_attachment_policy(
    filename: str | None,
    media_type: str | None,
    size: int | None,
    *,
    policy: UploadSettings | None = None,
) -> FileType:
    """Validate one file part against the upload policy.

    ``size`` may be None when the transport did not report it; the ceiling
    is then enforced while streaming.

    Raises:
        UploadRejected: on a missing name, disallowed type or oversized file
    """
    policy = policy or settings.upload

    if not filename:
        raise UploadRejected("Filename is required")

    base_type = (media_type or "").split(";", 1)[0].strip().lower()
    if base_type not in policy.allowed_media_types or file_extension(filename) not in policy.allowed_extensions:
        raise UploadRejected("Invalid file type. Only PDF and DOC/DOCX files are allowed.")

    if size is not None and size > policy.max_file_size_bytes:
        raise UploadRejected(size_limit_message(policy.max_file_size_bytes))

    return detect_file_type(base_type)


def size_limit_message(max_bytes: int) -> str:
    megabytes = max_bytes / (1024 * 1024)
    return f"File size too large. Maximum size is {megabytes:g}MB."


class LocalBlobStore:
    """Blob store backed by a local directory.

    Every blob is addressed by a locator of the form
    ``resume-<32 hex chars><ext>``; locators are generated per file so
    concurrent requests never write to the same path.
    """

    def __init__(self, root: str | Path, *, chunk_size: int | None = None):
        self.root = Path(root)
        self.chunk_size = chunk_size or settings.storage.chunk_size
        self.root.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, config: StorageSettings | None = None) -> LocalBlobStore:
        config = config or settings.storage
        return cls(config.upload_dir, chunk_size=config.chunk_size)

    @staticmethod
    def new_locator(original_name: str) -> str:
        """Generate a collision-resistant locator keeping only the extension."""
        ext = file_extension(original_name)
        if not re.fullmatch(r"\.[a-z0-9]{1,8}", ext):
            ext = ""
        return f"{LOCATOR_PREFIX}{uuid.uuid4().hex}{ext}"

    def path_for(self, locator: str) -> Path:
        """Resolve a locator to its path, refusing anything that is not a locator."""
        if not LOCATOR_PATTERN.fullmatch(locator):
            raise ValueError(f"Invalid blob locator: {locator!r}")
        return self.root / locator

    async def exists(self, locator: str) -> bool:
        return await anyio.Path(self.path_for(locator)).is_file()

    async def save(
        self,
        locator: str,
        source: AsyncReadable,
        *,
        max_bytes: int,
        file_type: FileType | None = None,
    ) -> int:
        """Stream ``source`` into the blob named ``locator``.

        The first chunk is checked against the declared file type before the
        blob is created, so a rejected upload leaves nothing behind.

        Returns:
            Number of bytes written

        Raises:
            UploadRejected: content does not match its type or exceeds ``max_bytes``
            UpstreamIOError: the blob could not be written
        """
        first = await source.read(self.chunk_size)
        if file_type is not None and not matches_magic_number(file_type, first):
            raise UploadRejected("File content does not match its declared type.")
        if len(first) > max_bytes:
            raise UploadRejected(size_limit_message(max_bytes))

        path = self.path_for(locator)
        written = 0
        created = False
        try:
            async with await anyio.open_file(path, "xb") as blob:
                created = True
                chunk = first
                while chunk:
                    written += len(chunk)
                    if written > max_bytes:
                        raise UploadRejected(size_limit_message(max_bytes))
                    await blob.write(chunk)
                    chunk = await source.read(self.chunk_size)
        except UploadRejected:
            await self._discard_partial(locator)
            raise
        except OSError as e:
            logger.error(f"Failed to write blob {locator}: {e}")
            if created:
                await self._discard_partial(locator)
            raise UpstreamIOError(f"Could not store attachment: {e}") from e

        logger.debug(f"Stored blob {locator} ({written} bytes)")
        return written

    async def _discard_partial(self, locator: str) -> None:
        try:
            await self.delete(locator)
        except OSError as e:
            logger.warning(f"Could not remove partial blob {locator}: {e}")

    async def delete(self, locator: str) -> None:
        """Delete a blob; deleting a missing blob is a no-op."""
        await anyio.Path(self.path_for(locator)).unlink(missing_ok=True)

    async def list_blobs(self) -> list[BlobInfo]:
        """List every blob currently in the store."""
        blobs = []
        async for entry in anyio.Path(self.root).iterdir():
            if not LOCATOR_PATTERN.fullmatch(entry.name):
                continue
            stat = await entry.stat()
            blobs.append(
                BlobInfo(
                    locator=entry.name,
                    size=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return blobs
