"""
Blob store tests
Covers locators, the attachment policy and streaming writes.
"""

import pytest

from ats.config import MEBIBYTE, UploadSettings
from ats.storage import (
    LOCATOR_PATTERN,
    FileType,
    LocalBlobStore,
    UploadRejected,
    UpstreamIOError,
    check_attachment_policy,
    detect_file_type,
    matches_magic_number,
)
from tests.helpers import DOCX_BYTES, DOCX_TYPE, PDF_BYTES, PDF_TYPE, make_upload, stored_files

pytestmark = pytest.mark.unit


class TestLocators:
    """Locator generation and resolution"""

    def test_new_locator_keeps_only_extension(self):
        """The user-supplied name never reaches the locator"""
        locator = LocalBlobStore.new_locator("My Résumé.PDF")

        assert LOCATOR_PATTERN.fullmatch(locator)
        assert locator.endswith(".pdf")
        assert locator.startswith("resume-")

    def test_new_locator_is_unique(self):
        """Same filename, different locators"""
        locators = {LocalBlobStore.new_locator("cv.pdf") for _ in range(100)}

        assert len(locators) == 100

    def test_odd_extension_is_dropped(self):
        """Extensions that are not plain alphanumerics are not carried over"""
        locator = LocalBlobStore.new_locator("../../etc/passwd")

        assert LOCATOR_PATTERN.fullmatch(locator)
        assert "." not in locator

    @pytest.mark.parametrize("locator", ["../secret.pdf", "resume-xyz.pdf", "/etc/passwd", ""])
    def test_path_for_rejects_non_locators(self, blob_store, locator):
        """Only generated locators resolve to paths"""
        with pytest.raises(ValueError):
            blob_store.path_for(locator)


class TestAttachmentPolicy:
    """Per-file policy checks"""

    def test_accepts_supported_types(self):
        """PDF, DOC and DOCX are allowed"""
        assert check_attachment_policy("cv.pdf", PDF_TYPE, 100) == FileType.PDF
        assert check_attachment_policy("cv.doc", "application/msword", 100) == FileType.DOC
        assert check_attachment_policy("cv.DOCX", DOCX_TYPE, 100) == FileType.DOCX

    def test_media_type_parameters_are_ignored(self):
        """Parameters after ';' do not affect the decision"""
        assert check_attachment_policy("cv.pdf", "Application/PDF; charset=binary", 100) == FileType.PDF

    @pytest.mark.parametrize("filename,media_type", [
        ("cv.txt", "text/plain"),
        ("cv.pdf", "image/png"),
        ("cv.exe", PDF_TYPE),
        ("cv", PDF_TYPE),
    ])
    def test_rejects_other_types(self, filename, media_type):
        """Both the media type and the extension must be allowed"""
        with pytest.raises(UploadRejected, match="Invalid file type. Only PDF and DOC/DOCX files are allowed."):
            check_attachment_policy(filename, media_type, 100)

    def test_rejects_oversized_file(self):
        """Files above 5MB are refused before anything is written"""
        with pytest.raises(UploadRejected) as exc_info:
            check_attachment_policy("cv.pdf", PDF_TYPE, 6 * MEBIBYTE)

        assert str(exc_info.value) == "File size too large. Maximum size is 5MB."

    def test_exact_limit_is_allowed(self):
        """The ceiling itself is inclusive"""
        assert check_attachment_policy("cv.pdf", PDF_TYPE, 5 * MEBIBYTE) == FileType.PDF

    def test_unknown_size_is_deferred(self):
        """Without a declared size the limit is enforced while streaming"""
        assert check_attachment_policy("cv.pdf", PDF_TYPE, None) == FileType.PDF

    def test_custom_policy(self):
        """Policy comes from the given settings"""
        policy = UploadSettings(allowed_media_types=[PDF_TYPE], allowed_extensions=[".pdf"])

        with pytest.raises(UploadRejected):
            check_attachment_policy("cv.docx", DOCX_TYPE, 100, policy=policy)

    def test_detect_file_type(self):
        """Unknown or missing media types map to UNKNOWN"""
        assert detect_file_type(None) == FileType.UNKNOWN
        assert detect_file_type("text/html") == FileType.UNKNOWN
        assert detect_file_type(DOCX_TYPE) == FileType.DOCX

    def test_magic_numbers(self):
        """Content is sniffed against the declared type"""
        assert matches_magic_number(FileType.PDF, PDF_BYTES)
        assert matches_magic_number(FileType.DOCX, DOCX_BYTES)
        assert not matches_magic_number(FileType.PDF, DOCX_BYTES)
        assert not matches_magic_number(FileType.UNKNOWN, PDF_BYTES)


class TestLocalBlobStore:
    """Streaming writes, deletes and listing"""

    async def test_save_writes_content(self, blob_store):
        """Saved bytes are readable at the locator path"""
        locator = blob_store.new_locator("cv.pdf")

        size = await blob_store.save(locator, make_upload("cv.pdf", PDF_BYTES), max_bytes=MEBIBYTE, file_type=FileType.PDF)

        assert size == len(PDF_BYTES)
        assert await blob_store.exists(locator)
        assert blob_store.path_for(locator).read_bytes() == PDF_BYTES

    async def test_save_streams_in_chunks(self, blob_store):
        """Content larger than one chunk is copied completely"""
        content = PDF_BYTES + b"x" * 5000
        locator = blob_store.new_locator("cv.pdf")

        size = await blob_store.save(locator, make_upload("cv.pdf", content), max_bytes=MEBIBYTE)

        assert size == len(content)
        assert blob_store.path_for(locator).read_bytes() == content

    async def test_mismatched_content_leaves_nothing(self, blob_store):
        """A ZIP body declared as PDF is rejected before the blob exists"""
        locator = blob_store.new_locator("cv.pdf")

        with pytest.raises(UploadRejected):
            await blob_store.save(locator, make_upload("cv.pdf", DOCX_BYTES), max_bytes=MEBIBYTE, file_type=FileType.PDF)

        assert stored_files(blob_store) == []

    async def test_overflow_while_streaming_removes_partial_blob(self, blob_store):
        """Exceeding the ceiling mid-stream deletes what was written"""
        content = PDF_BYTES + b"x" * 5000
        locator = blob_store.new_locator("cv.pdf")

        with pytest.raises(UploadRejected, match="File size too large"):
            await blob_store.save(locator, make_upload("cv.pdf", content), max_bytes=2048)

        assert stored_files(blob_store) == []

    async def test_existing_blob_is_never_overwritten(self, blob_store):
        """Writing to a taken locator fails and keeps the original"""
        locator = blob_store.new_locator("cv.pdf")
        await blob_store.save(locator, make_upload("cv.pdf", PDF_BYTES), max_bytes=MEBIBYTE)

        with pytest.raises(UpstreamIOError):
            await blob_store.save(locator, make_upload("cv.pdf", PDF_BYTES + b"new"), max_bytes=MEBIBYTE)

        assert blob_store.path_for(locator).read_bytes() == PDF_BYTES

    async def test_delete_is_idempotent(self, blob_store):
        """Deleting a missing blob is not an error"""
        locator = blob_store.new_locator("cv.pdf")
        await blob_store.save(locator, make_upload("cv.pdf", PDF_BYTES), max_bytes=MEBIBYTE)

        await blob_store.delete(locator)
        await blob_store.delete(locator)

        assert not await blob_store.exists(locator)

    async def test_list_blobs_ignores_foreign_files(self, blob_store):
        """Only files named like locators are listed"""
        locator = blob_store.new_locator("cv.pdf")
        await blob_store.save(locator, make_upload("cv.pdf", PDF_BYTES), max_bytes=MEBIBYTE)
        (blob_store.root / ".gitkeep").write_text("")

        blobs = await blob_store.list_blobs()

        assert [b.locator for b in blobs] == [locator]
        assert blobs[0].size == len(PDF_BYTES)
