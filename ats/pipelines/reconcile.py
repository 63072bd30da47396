"""Out-of-band reconciliation between the blob store and document rows.

In-request cleanup is best effort. Blobs it could not delete (or blobs left
by a crashed worker) are found here: anything in the store that no committed
document references and that is older than the grace period is removed.
The grace period keeps the sweep away from submissions still in flight.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from ..config import settings
from ..storage import LocalBlobStore
from .cleanup import discard_blobs

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep."""
    scanned: int = 0
    referenced: int = 0
    too_recent: int = 0
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


async def find_orphaned_blobs(
    session: AsyncSession,
    store: LocalBlobStore,
    *,
    grace: timedelta,
    now: datetime | None = None,
) -> tuple[list[str], SweepReport]:
    """Return locators with no document row that are older than ``grace``."""
    now = now or datetime.now(timezone.utc)
    blobs = await store.list_blobs()

    result = await session.execute(select(models.Document.locator))
    committed = set(result.scalars().all())

    report = SweepReport(scanned=len(blobs))
    orphans = []
    for blob in blobs:
        if blob.locator in committed:
            report.referenced += 1
        elif now - blob.modified_at < grace:
            report.too_recent += 1
        else:
            orphans.append(blob.locator)
    return orphans, report


async def sweep_orphaned_blobs(
    session: AsyncSession,
    store: LocalBlobStore,
    *,
    grace: timedelta | None = None,
    dry_run: bool = False,
) -> SweepReport:
    """Delete unreferenced blobs older than the grace period."""
    if grace is None:
        grace = timedelta(seconds=settings.storage.orphan_grace_seconds)

    orphans, report = await find_orphaned_blobs(session, store, grace=grace)
    if dry_run:
        # Report what would be deleted
        report.deleted = orphans
        logger.info(f"Sweep dry run: {len(orphans)} orphan(s) of {report.scanned} blob(s)")
        return report

    failed = await discard_blobs(store, orphans, reason="orphan sweep")
    report.failed = failed
    report.deleted = [locator for locator in orphans if locator not in failed]
    logger.info(
        f"Sweep scanned {report.scanned} blob(s): deleted {len(report.deleted)}, "
        f"failed {len(failed)}, skipped {report.too_recent} recent"
    )
    return report
