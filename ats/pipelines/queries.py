"""Read-side queries: candidate listing, lookup by id, committed documents."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .. import models
from .submission import load_candidate

logger = logging.getLogger(__name__)


@dataclass
class Pagination:
    """Pagination block of a listing response."""
    page: int
    limit: int
    total: int
    total_pages: int


@dataclass
class CandidatePage:
    """One page of candidates, newest first."""
    records: list[models.Candidate]
    pagination: Pagination


async def list_candidates(session: AsyncSession, *, page: int = 1, limit: int = 10) -> CandidatePage:
    """Return one page of candidates with their collections loaded.

    Args:
        session: Database session
        page: 1-based page number
        limit: Page size

    Returns:
        CandidatePage with records and pagination totals
    """
    total = (await session.execute(select(func.count()).select_from(models.Candidate))).scalar_one()

    query = (
        select(models.Candidate)
        .options(
            selectinload(models.Candidate.educations),
            selectinload(models.Candidate.experiences),
            selectinload(models.Candidate.documents),
        )
        .order_by(models.Candidate.created_at.desc(), models.Candidate.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    records = list((await session.execute(query)).scalars().all())

    logger.debug(f"Listed {len(records)} of {total} candidates (page={page}, limit={limit})")
    return CandidatePage(
        records=records,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
        ),
    )


async def get_candidate(session: AsyncSession, candidate_id: int) -> models.Candidate | None:
    return await load_candidate(session, candidate_id)


async def get_committed_document(session: AsyncSession, locator: str) -> models.Document | None:
    """Find the document row for a locator; only committed blobs have one."""
    result = await session.execute(select(models.Document).where(models.Document.locator == locator))
    return result.scalar_one_or_none()
