"""Document upload, processing, search and review endpoints."""
from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from azure_ai.embeddings import get_embeddings_client
from bmo.appwrite import get_appwrite_client
from bmo.auth import CurrentUser, require_company, require_permission
from bmo.db import get_session
from bmo.errors import BmoError, NotFoundError, ValidationError
from bmo.pipelines.document_review import review_document
from bmo.pipelines.ingestion import DocumentRequest, process_document
from bmo.store import documents
from bmo.tenancy import validate_tenant_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])

ALLOWED_EXTENSIONS = {".pdf", ".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp"}


class ProcessRequest(BaseModel):
    file_id: str | None = None
    company_id: str | None = None
    uploaded_by: str | None = None
    file_name: str | None = None
    file_type: str | None = None
    file_size: int | None = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    limit: int | None = Field(default=None, ge=1, le=100)


class StatusRequest(BaseModel):
    status: Literal["uploaded", "processing", "review", "approved", "rejected"]


class ReviewRequest(BaseModel):
    action: str
    comments: str | None = None


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(..., description="Invoice or receipt (PDF or image)"),
    current: CurrentUser = Depends(require_permission("write")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Store a file in Appwrite, then run it through OCR and embedding.

    Returns:
        The processing result with document id, status and confidence
    """
    if not file.filename:
        raise ValidationError("Filename is required")
    extension = "." + file.filename.rsplit(".", 1)[-1].lower() if "." in file.filename else ""
    if extension not in ALLOWED_EXTENSIONS:
        raise ValidationError(f"Unsupported file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}")

    logger.info(f"Received document upload: {file.filename}", extra={"company_id": company_id})
    try:
        content = await file.read()
        stored = await get_appwrite_client().upload_file(content, file.filename, file.content_type)
        processed = await process_document(
            session,
            DocumentRequest(
                file_id=stored.file_id,
                company_id=company_id,
                uploaded_by=current.appwrite_user_id,
                file_name=file.filename,
                file_type=file.content_type,
                file_size=len(content),
            ),
        )
        return processed.to_response()
    except BmoError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error uploading document: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error: {str(e)}",
        )
    finally:
        await file.close()


@router.post("/process")
async def process_stored_document(
    payload: ProcessRequest,
    current: CurrentUser = Depends(require_permission("write")),
    session: AsyncSession = Depends(get_session),
):
    """Process a file already stored in Appwrite."""
    request = DocumentRequest(**payload.model_dump())
    request.validate()
    validate_tenant_access(request.company_id, current.company_id)
    processed = await process_document(session, request)
    return processed.to_response()


@router.get("")
async def list_documents(
    document_type: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    requires_review: bool | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    rows = await documents.list_documents(
        session,
        company_id,
        document_type=document_type,
        status=status_filter,
        requires_review=requires_review,
        limit=limit,
        offset=offset,
    )
    return [d.to_dict() for d in rows]


@router.post("/search")
async def search_documents(
    payload: SearchRequest,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Semantic search over the company's embedded documents."""
    embedding = await get_embeddings_client().embed(payload.query)
    matches = await documents.search_documents_by_vector(
        session, company_id, embedding, threshold=payload.threshold, limit=payload.limit
    )
    return [
        {
            "document_id": m.document_id,
            "file_name": m.file_name,
            "document_type": m.document_type,
            "content": m.content,
            "extracted_data": m.extracted_data,
            "similarity": m.similarity,
        }
        for m in matches
    ]


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    document = await documents.get_document(session, company_id, document_id)
    if document is None:
        raise NotFoundError("Document not found")
    return document.to_dict()


@router.get("/{document_id}/embeddings")
async def get_document_embeddings(
    document_id: str,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    if await documents.get_document(session, company_id, document_id) is None:
        raise NotFoundError("Document not found")
    rows = await documents.get_document_embeddings(session, document_id)
    return [e.to_dict(exclude=("embedding",)) for e in rows]


@router.patch("/{document_id}/status")
async def update_document_status(
    document_id: str,
    payload: StatusRequest,
    current: CurrentUser = Depends(require_permission("write")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    document = await documents.update_document_status(
        session, company_id, document_id, payload.status, reviewed_by=current.user_id
    )
    return document.to_dict()


@router.post("/{document_id}/review")
async def review(
    document_id: str,
    payload: ReviewRequest,
    current: CurrentUser = Depends(require_permission("approve")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Approve or reject a document and record it on any active workflow."""
    return await review_document(
        session,
        document_id=document_id,
        action=payload.action,
        user_id=current.user_id,
        company_id=company_id,
        comments=payload.comments,
    )
