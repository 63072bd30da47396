"""FastAPI app with health, candidate submission, listing and lookup endpoints.

Submissions are multipart requests carrying the candidate JSON plus up to
three resume files; see ``pipelines.submission`` for the pipeline and its
cleanup guarantees.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .db import get_session
from .logging_config import setup_logging
from .pipelines.queries import get_candidate, get_committed_document, list_candidates
from .pipelines.submission import (
    GENERIC_FAILURE_MESSAGE,
    DuplicateCandidate,
    PersistenceFailure,
    SubmissionRejected,
    submit_candidate,
)
from .pipelines.suggestions import SuggestionQueryError, suggest_companies, suggest_institutions
from .storage import LocalBlobStore, UploadRejected, UpstreamIOError

logger = logging.getLogger(__name__)

# Hard cap handed to the multipart parser; the upload policy enforces the real limit
MULTIPART_MAX_FILES = 50


# Pydantic response models
class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class FieldErrorDTO(BaseModel):
    """One field-level validation error."""
    field: str
    message: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None
    errors: list[FieldErrorDTO] | None = None


class EducationOut(ApiModel):
    id: int
    institution: str
    degree: str
    field_of_study: str
    start_date: date
    end_date: date | None = None
    ongoing: bool
    description: str | None = None


class ExperienceOut(ApiModel):
    id: int
    company: str
    position: str
    description: str | None = None
    start_date: date
    end_date: date | None = None
    ongoing: bool


class DocumentOut(ApiModel):
    id: int
    locator: str
    original_name: str
    media_type: str
    size_bytes: int
    document_type: str
    uploaded_at: datetime
    url: str | None = None


class CandidateOut(ApiModel):
    """Candidate with all owned collections."""
    id: int
    first_name: str
    last_name: str
    email: str
    phone: str
    address: str | None = None
    linked_in: str | None = None
    portfolio: str | None = None
    created_at: datetime
    updated_at: datetime
    educations: list[EducationOut] = Field(default_factory=list)
    experiences: list[ExperienceOut] = Field(default_factory=list)
    documents: list[DocumentOut] = Field(default_factory=list)


class PaginationDTO(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int


class CandidateListResponse(ApiModel):
    """Paginated candidate listing."""
    records: list[CandidateOut]
    pagination: PaginationDTO


class SuggestionResponse(BaseModel):
    """Autocomplete suggestions."""
    suggestions: list[str]


def candidate_out(candidate) -> CandidateOut:
    out = CandidateOut.model_validate(candidate)
    for doc in out.documents:
        doc.url = f"/uploads/{doc.locator}"
    return out


@lru_cache(maxsize=1)
def get_blob_store() -> LocalBlobStore:
    """Blob store dependency (one per process)."""
    return LocalBlobStore.from_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info("Application starting up")

    yield

    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Candidate intake with resume attachments",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, error: str, detail: str | None = None, errors=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail, errors=errors).model_dump(exclude_none=True),
    )


# Exception handlers
@app.exception_handler(UploadRejected)
async def upload_rejected_handler(request, exc: UploadRejected):
    """Handle attachment policy and payload format violations."""
    logger.info(f"Upload rejected: {exc}")
    return error_response(status.HTTP_400_BAD_REQUEST, "upload_rejected", str(exc))


@app.exception_handler(SubmissionRejected)
async def submission_rejected_handler(request, exc: SubmissionRejected):
    """Handle field validation failures."""
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "validation_error",
        "Validation failed",
        errors=[FieldErrorDTO(field=v.field, message=v.message) for v in exc.violations],
    )


@app.exception_handler(DuplicateCandidate)
async def duplicate_candidate_handler(request, exc: DuplicateCandidate):
    """Handle duplicate email submissions."""
    return error_response(status.HTTP_409_CONFLICT, "conflict", str(exc))


@app.exception_handler(PersistenceFailure)
async def persistence_failure_handler(request, exc: PersistenceFailure):
    """Handle database failures; details stay in the server log."""
    logger.error(f"Persistence failure: {exc.__cause__!r}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", GENERIC_FAILURE_MESSAGE)


@app.exception_handler(UpstreamIOError)
async def upstream_io_handler(request, exc: UpstreamIOError):
    """Handle blob store write failures."""
    logger.error(f"Blob store failure: {exc}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", GENERIC_FAILURE_MESSAGE)


@app.exception_handler(SuggestionQueryError)
async def suggestion_query_handler(request, exc: SuggestionQueryError):
    """Handle invalid autocomplete queries."""
    return error_response(status.HTTP_400_BAD_REQUEST, "invalid_query", str(exc))


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=settings.version,
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "create_candidate": "/api/candidates",
            "list_candidates": "/api/candidates",
            "get_candidate": "/api/candidates/{candidate_id}",
            "institution_suggestions": "/api/candidates/autocomplete/institutions",
            "company_suggestions": "/api/candidates/autocomplete/companies",
            "documents": "/uploads/{locator}",
            "docs": "/docs",
        },
    }


@app.post(
    "/api/candidates",
    response_model=CandidateOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_candidate(
    request: Request,
    session: AsyncSession = Depends(get_session),
    store: LocalBlobStore = Depends(get_blob_store),
) -> CandidateOut:
    """Create a candidate with education, experience and resume files.

    Expects a multipart body with a ``candidateData`` JSON field and up to
    three ``documents`` files (PDF, DOC or DOCX, 5MB each).

    Returns:
        The stored candidate including generated ids and document metadata

    Raises:
        HTTPException: For unexpected failures (domain errors go to handlers)
    """
    try:
        async with request.form(max_files=MULTIPART_MAX_FILES) as form:
            candidate = await submit_candidate(session, store, form)
        return candidate_out(candidate)

    except (UploadRejected, UpstreamIOError, SubmissionRejected, DuplicateCandidate, PersistenceFailure):
        # Re-raise to be caught by exception handlers
        raise
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error creating candidate: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=GENERIC_FAILURE_MESSAGE,
        )


@app.get("/api/candidates/autocomplete/institutions", response_model=SuggestionResponse)
async def institution_suggestions(
    query: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> SuggestionResponse:
    """Institution names from stored education entries."""
    return SuggestionResponse(suggestions=await suggest_institutions(session, query))


@app.get("/api/candidates/autocomplete/companies", response_model=SuggestionResponse)
async def company_suggestions(
    query: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> SuggestionResponse:
    """Company names from stored experience entries."""
    return SuggestionResponse(suggestions=await suggest_companies(session, query))


@app.get("/api/candidates", response_model=CandidateListResponse)
async def get_candidates(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.pagination.default_limit, ge=1, le=settings.pagination.max_limit),
    session: AsyncSession = Depends(get_session),
) -> CandidateListResponse:
    """List candidates, newest first."""
    try:
        result = await list_candidates(session, page=page, limit=limit)
    except Exception as e:
        logger.error(f"Unexpected error listing candidates: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An error occurred while fetching candidates",
        )

    return CandidateListResponse(
        records=[candidate_out(c) for c in result.records],
        pagination=PaginationDTO.model_validate(result.pagination),
    )


@app.get("/api/candidates/{candidate_id}", response_model=CandidateOut)
async def get_candidate_by_id(
    candidate_id: int,
    session: AsyncSession = Depends(get_session),
) -> CandidateOut:
    """Retrieve a single candidate."""
    candidate = await get_candidate(session, candidate_id)
    if candidate is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Candidate not found",
        )
    return candidate_out(candidate)


@app.get("/uploads/{locator}")
async def get_document(
    locator: str,
    session: AsyncSession = Depends(get_session),
    store: LocalBlobStore = Depends(get_blob_store),
) -> FileResponse:
    """Serve an attachment of a committed candidate.

    Blobs staged by submissions that never committed have no document row
    and are never served.
    """
    document = await get_committed_document(session, locator)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    path = store.path_for(document.locator)
    if not await store.exists(document.locator):
        logger.error(f"Document {document.id} references missing blob {document.locator}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    return FileResponse(
        path,
        media_type=document.media_type,
        filename=document.original_name,
        content_disposition_type="inline",
    )
