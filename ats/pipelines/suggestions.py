"""Autocomplete suggestions over previously stored education and experience entries."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from ..config import SuggestionSettings, settings

logger = logging.getLogger(__name__)


class SuggestionQueryError(Exception):
    """Raised when a suggestion query is missing or too short."""
    pass


async def _distinct_matches(session: AsyncSession, column, query: str | None, config: SuggestionSettings | None) -> list[str]:
    config = config or settings.suggestions
    term = (query or "").strip()
    if len(term) < config.min_query_length:
        raise SuggestionQueryError(
            f"Query must be at least {config.min_query_length} characters"
        )

    stmt = (
        select(column)
        .where(column.icontains(term, autoescape=True))
        .distinct()
        .order_by(column)
        .limit(config.limit)
    )
    result = await session.execute(stmt)
    suggestions = list(result.scalars().all())
    logger.debug(f"{len(suggestions)} suggestion(s) for {term!r} on {column.key}")
    return suggestions


async def suggest_institutions(
    session: AsyncSession,
    query: str | None,
    config: SuggestionSettings | None = None,
) -> list[str]:
    """Distinct institution names containing ``query`` (case-insensitive)."""
    return await _distinct_matches(session, models.Education.institution, query, config)


async def suggest_companies(
    session: AsyncSession,
    query: str | None,
    config: SuggestionSettings | None = None,
) -> list[str]:
    """Distinct company names containing ``query`` (case-insensitive)."""
    return await _distinct_matches(session, models.Experience.company, query, config)
