"""Approve or reject a processed document."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bmo.errors import ValidationError
from bmo.store.audit import add_audit_log
from bmo.store.documents import get_document, update_document_status
from bmo.store.workflows import approve_step, find_active_instance, get_pending_approval, reject_step

logger = logging.getLogger(__name__)

ACTIONS = {"approve": "approved", "reject": "rejected"}


async def review_document(
    session: AsyncSession,
    *,
    document_id: str | None,
    action: str | None,
    user_id: str | None,
    company_id: str | None,
    comments: str | None = None,
) -> dict[str, Any]:
    """Set a document's review outcome.

    The document status becomes approved or rejected, the current step of
    any active workflow on the document is approved or rejected to match,
    and an audit record is written, all in one commit.

    Raises:
        ValidationError: If a field is missing or the action is unknown
        NotFoundError: If the document does not belong to the company
    """
    if not (document_id and action and user_id and company_id):
        raise ValidationError("Missing required fields")
    if action not in ACTIONS:
        raise ValidationError(f"Invalid action: {action}")

    document = await get_document(session, company_id, document_id)
    old_status = document.status if document else None
    document = await update_document_status(
        session, company_id, document_id, ACTIONS[action], reviewed_by=user_id, commit=False
    )

    instance = await find_active_instance(session, company_id, "document", document_id)
    pending = await get_pending_approval(session, instance.id) if instance else None
    if pending is not None:
        step = approve_step if action == "approve" else reject_step
        await step(session, company_id, instance.id, pending.step_number, user_id, comments, commit=False)

    add_audit_log(
        session,
        company_id=company_id,
        user_id=user_id,
        action=action,
        resource_type="document",
        resource_id=document_id,
        old_values={"status": old_status},
        new_values={"status": document.status, "comments": comments},
    )
    await session.commit()

    logger.info(f"Document {document_id} {ACTIONS[action]}", extra={"company_id": company_id, "document_id": document_id})
    return {
        "success": True,
        "document_id": document_id,
        "action": action,
        "message": f"Document {action}d successfully",
    }
