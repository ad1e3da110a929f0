"""Uploaded documents, their embeddings and vector search."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from bmo import models
from bmo.config import settings
from bmo.errors import NotFoundError, ValidationError
from bmo.tenancy import add_tenant_filter, tenant_select

logger = logging.getLogger(__name__)

DOCUMENT_STATUSES = ("uploaded", "processing", "review", "approved", "rejected")


@dataclass
class DocumentMatch:
    """One vector search hit."""
    document_id: str
    file_name: str
    document_type: str
    content: str
    extracted_data: dict[str, Any] | None
    similarity: float


async def list_documents(
    session: AsyncSession,
    company_id: str,
    *,
    document_type: str | None = None,
    status: str | None = None,
    requires_review: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[models.Document]:
    query = tenant_select(models.Document, company_id)
    if document_type:
        query = query.where(models.Document.document_type == document_type)
    if status:
        query = query.where(models.Document.status == status)
    if requires_review is not None:
        query = query.where(models.Document.requires_review.is_(requires_review))

    query = query.order_by(models.Document.created_at.desc()).limit(limit).offset(offset)
    result = await session.execute(query)
    return list(result.scalars().all())


async def get_document(session: AsyncSession, company_id: str, document_id: str) -> models.Document | None:
    result = await session.execute(
        tenant_select(models.Document, company_id).where(models.Document.id == document_id)
    )
    return result.scalar_one_or_none()


async def update_document_status(
    session: AsyncSession,
    company_id: str,
    document_id: str,
    status: str,
    reviewed_by: str | None = None,
    *,
    commit: bool = True,
) -> models.Document:
    if status not in DOCUMENT_STATUSES:
        raise ValidationError(f"Invalid status: {status}")

    document = await get_document(session, company_id, document_id)
    if document is None:
        raise NotFoundError("Document not found")

    document.status = status
    document.reviewed_by = reviewed_by
    if status in ("approved", "rejected"):
        document.requires_review = False
    if commit:
        await session.commit()
    return document


async def get_document_embeddings(session: AsyncSession, document_id: str) -> list[models.DocumentEmbedding]:
    result = await session.execute(
        select(models.DocumentEmbedding)
        .where(models.DocumentEmbedding.document_id == document_id)
        .order_by(models.DocumentEmbedding.chunk_index)
    )
    return list(result.scalars().all())


async def search_documents_by_vector(
    session: AsyncSession,
    company_id: str,
    embedding: list[float],
    *,
    threshold: float | None = None,
    limit: int | None = None,
) -> list[DocumentMatch]:
    """Cosine-similarity search over a company's document embeddings.

    Args:
        embedding: Query vector
        threshold: Minimum similarity (defaults to ``RAG_SEARCH_THRESHOLD``)
        limit: Maximum hits (defaults to ``RAG_SEARCH_LIMIT``)

    Returns:
        Matches ordered by similarity, best first
    """
    threshold = settings.rag.search_threshold if threshold is None else threshold
    limit = settings.rag.search_limit if limit is None else limit

    sql, params = add_tenant_filter(
        """
        SELECT
            d.id, d.file_name, d.document_type, d.extracted_data, de.content_text,
            1 - (de.embedding <=> CAST(:embedding AS vector)) AS similarity
        FROM document_embeddings de
        JOIN documents d ON d.id = de.document_id
        WHERE 1 - (de.embedding <=> CAST(:embedding AS vector)) >= :threshold
        """,
        company_id,
        {"embedding": str(embedding), "threshold": threshold},
        table_alias="d",
    )
    sql += " ORDER BY de.embedding <=> CAST(:embedding AS vector) LIMIT :limit"
    params["limit"] = limit

    result = await session.execute(text(sql), params)
    matches = []
    for row in result.fetchall():
        extracted = row[3]
        if isinstance(extracted, str):
            extracted = json.loads(extracted)
        matches.append(
            DocumentMatch(
                document_id=row[0],
                file_name=row[1],
                document_type=row[2],
                extracted_data=extracted,
                content=row[4],
                similarity=float(row[5]),
            )
        )

    logger.info(f"Vector search returned {len(matches)} document(s) for company {company_id}")
    return matches
