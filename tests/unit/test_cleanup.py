"""
Compensating cleanup tests
discard_blobs must delete what it can, retry transient failures and never raise.
"""

import pytest

from ats.config import MEBIBYTE
from ats.pipelines.cleanup import discard_blobs
from ats.storage import LocalBlobStore
from tests.helpers import PDF_BYTES, make_upload, stored_files

pytestmark = pytest.mark.unit


class FlakyBlobStore(LocalBlobStore):
    """Blob store whose deletes fail a configurable number of times per locator."""

    def __init__(self, root, failures: dict[str, int], error: type[Exception] = OSError):
        super().__init__(root, chunk_size=1024)
        self.failures = failures
        self.error = error
        self.calls: dict[str, int] = {}

    async def delete(self, locator: str) -> None:
        self.calls[locator] = self.calls.get(locator, 0) + 1
        if self.failures.get(locator, 0) > 0:
            self.failures[locator] -= 1
            raise self.error(f"cannot delete {locator}")
        await super().delete(locator)


async def stage(store: LocalBlobStore, count: int) -> list[str]:
    locators = []
    for _ in range(count):
        locator = store.new_locator("cv.pdf")
        await store.save(locator, make_upload("cv.pdf", PDF_BYTES), max_bytes=MEBIBYTE)
        locators.append(locator)
    return locators


class TestDiscardBlobs:
    """Best-effort deletion of staged blobs"""

    async def test_deletes_every_locator(self, blob_store):
        """All staged blobs are removed"""
        locators = await stage(blob_store, 3)

        failed = await discard_blobs(blob_store, locators, reason="test")

        assert failed == []
        assert stored_files(blob_store) == []

    async def test_repeated_cleanup_is_safe(self, blob_store):
        """A second pass over the same locators succeeds"""
        locators = await stage(blob_store, 2)

        assert await discard_blobs(blob_store, locators) == []
        assert await discard_blobs(blob_store, locators) == []

    async def test_never_written_locator(self, blob_store):
        """Locators whose write never happened are fine to discard"""
        assert await discard_blobs(blob_store, [blob_store.new_locator("cv.pdf")]) == []

    async def test_empty_list(self, blob_store):
        """Nothing to do, nothing failed"""
        assert await discard_blobs(blob_store, []) == []

    async def test_transient_failure_is_retried(self, tmp_path):
        """An OSError on the first attempt is retried"""
        store = FlakyBlobStore(tmp_path / "flaky", failures={})
        [locator] = await stage(store, 1)
        store.failures[locator] = 1

        failed = await discard_blobs(store, [locator], attempts=3)

        assert failed == []
        assert store.calls[locator] == 2
        assert stored_files(store) == []

    async def test_persistent_failure_is_reported_not_raised(self, tmp_path):
        """Undeletable blobs are returned and the rest are still removed"""
        store = FlakyBlobStore(tmp_path / "flaky", failures={})
        stuck, other = await stage(store, 2)
        store.failures[stuck] = 10

        failed = await discard_blobs(store, [stuck, other], attempts=2)

        assert failed == [stuck]
        assert store.calls[stuck] == 2
        assert stored_files(store) == [stuck]

    async def test_unexpected_error_is_not_retried(self, tmp_path):
        """Non-IO errors are reported after a single attempt"""
        store = FlakyBlobStore(tmp_path / "flaky", failures={}, error=RuntimeError)
        [locator] = await stage(store, 1)
        store.failures[locator] = 1

        failed = await discard_blobs(store, [locator], attempts=3)

        assert failed == [locator]
        assert store.calls[locator] == 1
