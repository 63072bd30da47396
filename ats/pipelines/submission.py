"""Candidate submission pipeline.

Drives one submission through

    RECEIVING -> FILES_STAGED -> VALIDATING -> {REJECTED | PERSISTING}
              -> {COMMITTED | FAILED}

Attachments are written to the blob store while the request is received,
before the payload is validated. Every path that ends in REJECTED or FAILED
therefore runs compensating cleanup on the staged locators, so a blob only
outlives the request when its candidate has been committed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import anyio
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from starlette.datastructures import FormData

from .. import models
from ..config import UploadSettings
from ..parsers import ParsedSubmission, StagedDocument, parse_submission
from ..schemas import CandidatePayload
from ..storage import LocalBlobStore, UploadRejected
from ..validation import DEFAULT_RULES, FieldViolation, RuleSet, parse_date, validate_candidate
from .cleanup import discard_blobs

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "An error occurred while creating the candidate"


class SubmissionRejected(Exception):
    """Raised when a submission fails field validation."""

    def __init__(self, violations: list[FieldViolation]):
        super().__init__(f"{len(violations)} validation error(s)")
        self.violations = violations


class DuplicateCandidate(Exception):
    """Raised when a candidate with the same normalized email exists."""
    pass


class PersistenceFailure(Exception):
    """Raised when the candidate could not be stored; the message is safe to show."""
    pass


class SubmissionStage(str, Enum):
    """Request-scoped submission states (never persisted)."""
    RECEIVING = "receiving"
    FILES_STAGED = "files_staged"
    VALIDATING = "validating"
    REJECTED = "rejected"
    PERSISTING = "persisting"
    COMMITTED = "committed"
    FAILED = "failed"


TERMINAL_STAGES = frozenset({SubmissionStage.REJECTED, SubmissionStage.COMMITTED, SubmissionStage.FAILED})


@dataclass
class SubmissionContext:
    """State of one submission and the blobs it has staged."""
    store: LocalBlobStore
    stage: SubmissionStage = SubmissionStage.RECEIVING
    locators: list[str] = field(default_factory=list)
    leftovers: list[str] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def advance(self, stage: SubmissionStage) -> None:
        logger.debug(f"Submission {self.stage.value} -> {stage.value} ({len(self.locators)} staged)")
        self.stage = stage

    async def abort(self, stage: SubmissionStage, reason: str) -> None:
        """Move to a failed terminal stage and discard staged blobs.

        Does nothing once the submission reached a terminal stage, so a
        committed candidate never loses its attachments.
        """
        if self.finished:
            return
        self.advance(stage)
        self.leftovers = await discard_blobs(self.store, self.locators, reason=reason)


async def validation_gate(ctx: SubmissionContext, parsed: ParsedSubmission, rules: RuleSet = DEFAULT_RULES) -> CandidatePayload:
    """Validate the parsed payload or reject the submission.

    On any violation the staged blobs are discarded and nothing is written
    to the database.

    Raises:
        SubmissionRejected: with every violation found
    """
    ctx.advance(SubmissionStage.VALIDATING)

    violations = list(parsed.violations)
    if parsed.payload is not None:
        violations.extend(validate_candidate(parsed.payload, rules))

    if violations:
        logger.info(f"Submission rejected with {len(violations)} validation error(s)")
        await ctx.abort(SubmissionStage.REJECTED, reason="validation")
        raise SubmissionRejected(violations)

    return parsed.payload


def build_candidate(payload: CandidatePayload, documents: list[StagedDocument]) -> models.Candidate:
    """Map a validated payload and its staged files onto ORM objects."""
    return models.Candidate(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        phone=payload.phone,
        address=payload.address,
        linked_in=payload.linked_in,
        portfolio=payload.portfolio,
        educations=[
            models.Education(
                institution=edu.institution,
                degree=edu.degree,
                field_of_study=edu.field_of_study,
                start_date=parse_date(edu.start_date),
                end_date=None if edu.ongoing else parse_date(edu.end_date),
                ongoing=edu.ongoing,
                description=edu.description,
            )
            for edu in payload.educations
        ],
        experiences=[
            models.Experience(
                company=exp.company,
                position=exp.position,
                description=exp.description,
                start_date=parse_date(exp.start_date),
                end_date=None if exp.ongoing else parse_date(exp.end_date),
                ongoing=exp.ongoing,
            )
            for exp in payload.experiences
        ],
        documents=[
            models.Document(
                locator=doc.locator,
                original_name=doc.original_name,
                media_type=doc.media_type,
                size_bytes=doc.size,
                document_type="resume",
            )
            for doc in documents
        ],
    )


async def email_taken(session: AsyncSession, email: str) -> bool:
    result = await session.execute(select(models.Candidate.id).where(models.Candidate.email == email))
    return result.scalar_one_or_none() is not None


async def load_candidate(session: AsyncSession, candidate_id: int) -> models.Candidate | None:
    """Load a candidate with all owned collections."""
    query = (
        select(models.Candidate)
        .where(models.Candidate.id == candidate_id)
        .options(
            selectinload(models.Candidate.educations),
            selectinload(models.Candidate.experiences),
            selectinload(models.Candidate.documents),
        )
    )
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def persist_candidate(
    session: AsyncSession,
    ctx: SubmissionContext,
    payload: CandidatePayload,
    documents: list[StagedDocument],
) -> models.Candidate:
    """Store the candidate, its entries and attachment rows in one transaction.

    Steps:
    1. Pre-check the normalized email
    2. Insert candidate, educations, experiences and documents
    3. Commit

    Raises:
        DuplicateCandidate: email already registered (pre-check or lost race)
        PersistenceFailure: any other database failure
    """
    ctx.advance(SubmissionStage.PERSISTING)

    try:
        duplicate = await email_taken(session, payload.email)
    except Exception as e:
        logger.error(f"Email pre-check failed: {e}", exc_info=True)
        await session.rollback()
        await ctx.abort(SubmissionStage.FAILED, reason="persistence")
        raise PersistenceFailure(GENERIC_FAILURE_MESSAGE) from e

    if duplicate:
        await session.rollback()
        await ctx.abort(SubmissionStage.FAILED, reason="duplicate email")
        raise DuplicateCandidate("A candidate with this email already exists")

    try:
        candidate = build_candidate(payload, documents)
        session.add(candidate)
        await session.flush()
        # The outcome of the commit decides whether the blobs stay
        with anyio.CancelScope(shield=True):
            await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if await _email_taken_after_rollback(session, payload.email):
            logger.info("Lost uniqueness race on candidate email, reporting a duplicate")
            await ctx.abort(SubmissionStage.FAILED, reason="duplicate email")
            raise DuplicateCandidate("A candidate with this email already exists") from e
        # Driver messages echo the conflicting key
        logger.error(f"Integrity error storing candidate ({type(e.orig).__name__})")
        await ctx.abort(SubmissionStage.FAILED, reason="persistence")
        raise PersistenceFailure(GENERIC_FAILURE_MESSAGE) from e
    except Exception as e:
        logger.error(f"Candidate persistence failed: {e}", exc_info=True)
        await session.rollback()
        await ctx.abort(SubmissionStage.FAILED, reason="persistence")
        raise PersistenceFailure(GENERIC_FAILURE_MESSAGE) from e

    ctx.advance(SubmissionStage.COMMITTED)
    logger.info(f"Stored candidate {candidate.id} with {len(documents)} document(s)")

    try:
        stored = await load_candidate(session, candidate.id)
    except Exception as e:
        # Already committed; the in-memory object carries everything written
        logger.warning(f"Could not reload candidate {candidate.id}: {e}")
        stored = None
    return stored if stored is not None else candidate


async def _email_taken_after_rollback(session: AsyncSession, email: str) -> bool:
    try:
        return await email_taken(session, email)
    except Exception as e:
        logger.warning(f"Could not re-check email after integrity error: {e}")
        return False


async def submit_candidate(
    session: AsyncSession,
    store: LocalBlobStore,
    form: FormData,
    *,
    rules: RuleSet = DEFAULT_RULES,
    policy: UploadSettings | None = None,
) -> models.Candidate:
    """Run one submission end to end.

    Returns:
        The committed candidate with educations, experiences and documents

    Raises:
        UploadRejected: file policy or payload format violation
        UpstreamIOError: an attachment could not be written
        SubmissionRejected: field validation failed
        DuplicateCandidate: email already registered
        PersistenceFailure: the database transaction failed
    """
    ctx = SubmissionContext(store=store)

    try:
        try:
            parsed = await parse_submission(form, store, staged=ctx.locators, policy=policy)
        except UploadRejected:
            await ctx.abort(SubmissionStage.REJECTED, reason="upload rejected")
            raise
        ctx.advance(SubmissionStage.FILES_STAGED)

        payload = await validation_gate(ctx, parsed, rules)
        return await persist_candidate(session, ctx, payload, parsed.documents)
    except BaseException:
        # Blob write errors, unexpected bugs and cancellation (client gone)
        await ctx.abort(SubmissionStage.FAILED, reason="aborted request")
        raise
