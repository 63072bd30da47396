"""Compensating cleanup for attachments of submissions that did not commit.

``discard_blobs`` has a single contract: try to delete every given locator
and never raise. Failures are logged and reported back so the caller's
original error is always the one surfaced. Blobs that survive are picked up
later by the orphan sweep (see ``reconcile``).
"""
from __future__ import annotations

import logging
from typing import Iterable

import anyio
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import settings
from ..storage import LocalBlobStore

logger = logging.getLogger(__name__)


async def _delete_with_retry(store: LocalBlobStore, locator: str, attempts: int) -> None:
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.05, max=1),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    ):
        with attempt:
            await store.delete(locator)


async def discard_blobs(
    store: LocalBlobStore,
    locators: Iterable[str],
    *,
    reason: str = "",
    attempts: int | None = None,
) -> list[str]:
    """Best-effort deletion of blobs staged for a failed submission.

    Runs shielded from cancellation so a disconnected client still gets its
    staged files removed. Deleting an already missing blob succeeds, which
    makes repeated calls on the same locators safe.

    Args:
        store: Blob store holding the staged files
        locators: Locators to delete
        reason: Short label for the log line (e.g. "validation")
        attempts: Delete attempts per locator (default from settings)

    Returns:
        Locators that could not be deleted
    """
    attempts = attempts or settings.storage.delete_attempts
    locators = list(locators)
    if not locators:
        return []

    failed: list[str] = []
    with anyio.CancelScope(shield=True):
        for locator in locators:
            try:
                await _delete_with_retry(store, locator, attempts)
            except Exception as e:
                failed.append(locator)
                logger.warning(
                    f"Could not delete staged blob {locator} ({reason or 'cleanup'}): {e}",
                    exc_info=True,
                )

    if failed:
        logger.error(
            f"Cleanup after {reason or 'failure'} left {len(failed)} of {len(locators)} blobs behind: {failed}"
        )
    else:
        logger.info(f"Cleanup after {reason or 'failure'} removed {len(locators)} staged blobs")
    return failed
