"""Document ingestion pipeline.

Download from storage, OCR through Document Intelligence, persist the
document and, for confident extractions, store an embedding of its fields.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from azure_ai.document_intelligence import (
    DocumentIntelligenceClient,
    extract_fields,
    get_document_intelligence_client,
)
from azure_ai.embeddings import EmbeddingsClient, get_embeddings_client
from bmo import models
from bmo.appwrite import AppwriteClient, get_appwrite_client
from bmo.config import settings
from bmo.errors import BmoError, ValidationError
from bmo.store.users import get_user_by_appwrite_id

logger = logging.getLogger(__name__)

MISSING_FIELDS_MESSAGE = "Missing required fields: fileId, companyId, uploadedBy, fileName"


class DocumentProcessingError(BmoError):
    """Raised when a document cannot be processed."""

    def __init__(self, message: str, processing_time_ms: int = 0):
        super().__init__(message)
        self.processing_time_ms = processing_time_ms


class DocumentRequestError(ValidationError):
    """Raised when a processing request lacks a required identifier."""


@dataclass
class DocumentRequest:
    """A stored file to be processed for a company."""
    file_id: str | None
    company_id: str | None
    uploaded_by: str | None
    file_name: str | None
    file_type: str | None = None
    file_size: int | None = None

    def validate(self) -> None:
        if not (self.file_id and self.company_id and self.uploaded_by and self.file_name):
            raise DocumentRequestError(MISSING_FIELDS_MESSAGE)


@dataclass
class ProcessedDocument:
    """Result of document processing."""
    document_id: str
    status: str
    confidence: float
    message: str
    processing_time_ms: int
    embedded: bool = False

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "document_id": self.document_id,
            "status": self.status,
            "confidence": self.confidence,
            "message": self.message,
            "processing_time_ms": self.processing_time_ms,
        }


class _Clock:
    def __init__(self):
        self.started = time.perf_counter()

    @property
    def ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)


def build_embedding_text(fields: dict[str, dict[str, Any]]) -> str:
    """Join string-valued fields as ``key: value`` separated by `` | ``."""
    parts = [
        f"{name}: {field.get('value')}"
        for name, field in fields.items()
        if isinstance(field.get("value"), str)
    ]
    return " | ".join(parts)


async def process_document(
    session: AsyncSession,
    request: DocumentRequest,
    *,
    storage: AppwriteClient | None = None,
    ocr: DocumentIntelligenceClient | None = None,
    embedder: EmbeddingsClient | None = None,
) -> ProcessedDocument:
    """Run a stored file through OCR and persist the result.

    Steps:
    1. Download the file from storage
    2. Analyze it with the prebuilt invoice model
    3. Resolve the uploader
    4. Insert the document (held for review below the confidence threshold)
    5. Embed the extracted fields (confident documents only, best effort)

    Args:
        session: Database session
        request: File and tenant identifiers
        storage: Storage client (default client when omitted)
        ocr: Document Intelligence client
        embedder: Embeddings client

    Returns:
        ProcessedDocument describing the stored document

    Raises:
        DocumentRequestError: If a required request field is missing
        DocumentProcessingError: If any step before the document insert fails
    """
    request.validate()
    storage = storage or get_appwrite_client()
    ocr = ocr or get_document_intelligence_client()
    embedder = embedder or get_embeddings_client()
    clock = _Clock()
    log_extra = {"company_id": request.company_id}

    try:
        logger.info(f"Processing document: {request.file_name} for company {request.company_id}", extra=log_extra)

        # Step 1: Download
        content = await storage.download_file(request.file_id)
        logger.info(f"[{clock.ms}ms] File downloaded ({len(content)} bytes)", extra=log_extra)

        # Step 2: OCR
        ocr_result = await ocr.analyze(content)
        fields, min_confidence = extract_fields(ocr_result)
        logger.info(f"[{clock.ms}ms] OCR completed. Confidence: {min_confidence:.2f}", extra=log_extra)

        # Step 3: Uploader
        uploader = await get_user_by_appwrite_id(session, request.uploaded_by)
        if uploader is None:
            raise DocumentProcessingError(f"User not found in database: {request.uploaded_by}")

        # Step 4: Document record
        needs_review = min_confidence < settings.docint.review_threshold
        status = "review" if needs_review else "processing"
        document = models.Document(
            company_id=request.company_id,
            appwrite_file_id=request.file_id,
            file_name=request.file_name,
            file_type=request.file_type,
            file_size=request.file_size,
            document_type="invoice",
            ocr_confidence=min_confidence,
            ocr_data=ocr_result,
            extracted_data=fields,
            status=status,
            requires_review=needs_review,
            uploaded_by=uploader.id,
        )
        session.add(document)
        await session.commit()
        logger.info(f"[{clock.ms}ms] Document record created: {document.id}", extra={**log_extra, "document_id": document.id})

    except Exception as e:
        logger.error(f"[{clock.ms}ms] Error processing document: {e}", exc_info=True, extra=log_extra)
        await session.rollback()
        if isinstance(e, DocumentProcessingError):
            e.processing_time_ms = clock.ms
            raise
        raise DocumentProcessingError(str(e) or "Failed to process document", clock.ms) from e

    # Step 5: Embedding
    document_id = document.id
    embedded = False
    if not needs_review:
        embedded = await _store_embedding(session, document, fields, embedder, clock)

    logger.info(f"[{clock.ms}ms] Document processing completed successfully", extra={**log_extra, "document_id": document_id})
    return ProcessedDocument(
        document_id=document_id,
        status=status,
        confidence=min_confidence,
        message=f"Document processed successfully: {request.file_name}",
        processing_time_ms=clock.ms,
        embedded=embedded,
    )


async def _store_embedding(
    session: AsyncSession,
    document: models.Document,
    fields: dict[str, dict[str, Any]],
    embedder: EmbeddingsClient,
    clock: _Clock,
) -> bool:
    """Embed a document's fields. Failures are logged and never undo the document."""
    content_text = build_embedding_text(fields)
    if not content_text:
        return False

    document_id = document.id
    extra = {"company_id": document.company_id, "document_id": document_id}
    try:
        embedding = await embedder.embed(content_text)
        session.add(
            models.DocumentEmbedding(
                document_id=document_id,
                content_text=content_text,
                embedding=embedding,
                chunk_index=0,
                metadata_={},
            )
        )
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.warning(f"[{clock.ms}ms] Warning: Embedding generation failed: {e}", extra=extra)
        return False

    logger.info(f"[{clock.ms}ms] Embedding stored for document {document_id}", extra=extra)
    return True
