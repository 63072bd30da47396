"""Delete attachment blobs that no committed document references.

Second line of defense behind in-request cleanup, e.g. for workers that
crashed mid-submission. Run periodically (cron, scheduler).
"""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from ats.config import settings
from ats.db import AsyncSessionMaker, engine
from ats.logging_config import setup_logging
from ats.pipelines.reconcile import sweep_orphaned_blobs
from ats.storage import LocalBlobStore

logger = logging.getLogger("sweep_blobs")


async def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--grace-seconds",
        type=int,
        default=settings.storage.orphan_grace_seconds,
        help="leave unreferenced blobs younger than this alone",
    )
    parser.add_argument("--dry-run", action="store_true", help="only report orphans")
    args = parser.parse_args()

    setup_logging()
    store = LocalBlobStore.from_settings()

    try:
        async with AsyncSessionMaker() as session:
            report = await sweep_orphaned_blobs(
                session,
                store,
                grace=timedelta(seconds=args.grace_seconds),
                dry_run=args.dry_run,
            )
    finally:
        await engine.dispose()

    print(f"Scanned:    {report.scanned}")
    print(f"Referenced: {report.referenced}")
    print(f"Too recent: {report.too_recent}")
    print(f"{'Would delete' if args.dry_run else 'Deleted'}: {len(report.deleted)}")
    if report.failed:
        print(f"Failed:     {len(report.failed)}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
