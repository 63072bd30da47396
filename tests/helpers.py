"""Shared helpers for building submissions in tests."""

import io
import json

from starlette.datastructures import FormData, Headers, UploadFile

from ats.storage import LocalBlobStore

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"
DOCX_BYTES = b"PK\x03\x04" + b"\x00" * 64
PDF_TYPE = "application/pdf"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def stored_files(store: LocalBlobStore) -> list[str]:
    """Names of every file currently in the blob store directory."""
    return sorted(p.name for p in store.root.iterdir())


def make_upload(filename: str, content: bytes, content_type: str = PDF_TYPE) -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=filename,
        size=len(content),
        headers=Headers({"content-type": content_type}),
    )


def make_form(payload: dict | str | None, *uploads: UploadFile) -> FormData:
    items = []
    if payload is not None:
        items.append(("candidateData", payload if isinstance(payload, str) else json.dumps(payload)))
    items.extend(("documents", upload) for upload in uploads)
    return FormData(items)
