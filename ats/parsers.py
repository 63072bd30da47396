"""Multipart submission parsing.

A submission is a multipart form with one ``candidateData`` field (JSON) and
zero or more ``documents`` file parts. Every file part is checked against the
upload policy first; accepted files are then streamed to the blob store
before the JSON payload is decoded, so callers must treat the staged
locators as pending until the candidate is committed.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from pydantic import ValidationError
from starlette.datastructures import FormData, UploadFile

from .config import UploadSettings, settings
from .schemas import CandidatePayload
from .storage import LocalBlobStore, UploadRejected, check_attachment_policy
from .validation import FieldViolation, schema_violations

logger = logging.getLogger(__name__)

PAYLOAD_FIELD = "candidateData"
DOCUMENTS_FIELD = "documents"


@dataclass
class StagedDocument:
    """An attachment already written to the blob store."""
    locator: str
    original_name: str
    media_type: str
    size: int


@dataclass
class ParsedSubmission:
    """Result of parsing a submission request."""
    payload: CandidatePayload | None
    violations: list[FieldViolation] = field(default_factory=list)
    documents: list[StagedDocument] = field(default_factory=list)

    @property
    def locators(self) -> list[str]:
        return [doc.locator for doc in self.documents]


def clean_filename(filename: str) -> str:
    """Keep only the final path component of a client-supplied filename."""
    name = PurePosixPath(filename.replace("\\", "/")).name.strip()
    return name[:255] or "document"


def decode_payload(raw: Any) -> tuple[CandidatePayload | None, list[FieldViolation]]:
    """Decode the ``candidateData`` field.

    A missing field is treated as an empty object so that every required
    field gets reported by the validator.

    Returns:
        Tuple of (payload or None, schema violations)

    Raises:
        UploadRejected: if the field is not a JSON object
    """
    if raw is None:
        raw = "{}"
    if not isinstance(raw, str):
        raise UploadRejected("Invalid candidate data format")

    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        logger.info(f"Rejected malformed candidate data: {e}")
        raise UploadRejected("Invalid candidate data format") from e

    if not isinstance(data, dict):
        raise UploadRejected("Invalid candidate data format")

    try:
        return CandidatePayload.model_validate(data), []
    except ValidationError as e:
        return None, schema_violations(e)


def collect_uploads(form: FormData) -> list[UploadFile]:
    """Return the file parts of the form, ignoring empty file inputs.

    Raises:
        UploadRejected: if a file arrives under an unexpected field name
    """
    uploads = []
    for key, value in form.multi_items():
        if not isinstance(value, UploadFile):
            continue
        if not value.filename:
            # A browser file input left empty
            continue
        if key != DOCUMENTS_FIELD:
            raise UploadRejected(f"Unexpected file field: {key}")
        uploads.append(value)
    return uploads


async def parse_submission(
    form: FormData,
    store: LocalBlobStore,
    *,
    staged: list[str] | None = None,
    policy: UploadSettings | None = None,
) -> ParsedSubmission:
    """Stage attachments and decode the payload of one submission.

    Each locator is appended to ``staged`` before its blob is written, so on
    any failure (including cancellation) the caller knows every blob that
    may exist for this request.

    Args:
        form: Parsed multipart form
        store: Blob store receiving the attachments
        staged: Sink collecting generated locators
        policy: Upload policy (default from settings)

    Returns:
        ParsedSubmission with payload, schema violations and staged documents

    Raises:
        UploadRejected: file count, type, size or payload format violation
        UpstreamIOError: a blob could not be written
    """
    policy = policy or settings.upload
    staged = staged if staged is not None else []

    uploads = collect_uploads(form)
    if len(uploads) > policy.max_files:
        raise UploadRejected(f"Too many files. Maximum is {policy.max_files} files.")

    # Reject on policy before writing anything
    file_types = [
        check_attachment_policy(upload.filename, upload.content_type, upload.size, policy=policy)
        for upload in uploads
    ]

    documents: list[StagedDocument] = []
    for upload, file_type in zip(uploads, file_types):
        locator = store.new_locator(upload.filename)
        staged.append(locator)
        await upload.seek(0)
        size = await store.save(
            locator,
            upload,
            max_bytes=policy.max_file_size_bytes,
            file_type=file_type,
        )
        documents.append(
            StagedDocument(
                locator=locator,
                original_name=clean_filename(upload.filename),
                media_type=(upload.content_type or "").split(";", 1)[0].strip().lower(),
                size=size,
            )
        )

    logger.info(f"Staged {len(documents)} attachment(s)")

    payload, violations = decode_payload(form.get(PAYLOAD_FIELD))
    return ParsedSubmission(payload=payload, violations=violations, documents=documents)
