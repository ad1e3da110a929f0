"""Approval workflows: definitions, running instances and per-step approvals."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bmo import models
from bmo.errors import NotFoundError, ValidationError
from bmo.tenancy import tenant_select

logger = logging.getLogger(__name__)


def _validate_steps(steps: list[dict[str, Any]]) -> list[dict[str, Any]]:
    cleaned = []
    for step in steps:
        if "step_number" not in step:
            raise ValidationError("Each workflow step needs a step_number")
        cleaned.append({
            "step_number": int(step["step_number"]),
            "approver_role": step.get("approver_role"),
            "approver_user_id": step.get("approver_user_id"),
            "required": bool(step.get("required", True)),
        })
    return cleaned


async def create_workflow(
    session: AsyncSession,
    company_id: str,
    *,
    name: str,
    workflow_type: str,
    steps: list[dict[str, Any]],
    description: str | None = None,
) -> models.Workflow:
    workflow = models.Workflow(
        company_id=company_id,
        name=name,
        description=description,
        workflow_type=workflow_type,
        steps=_validate_steps(steps),
        is_active=True,
    )
    session.add(workflow)
    await session.commit()
    logger.info(f"Created workflow {workflow.id} ({workflow_type}) for company {company_id}")
    return workflow


async def list_workflows(
    session: AsyncSession,
    company_id: str,
    is_active: bool | None = None,
) -> list[models.Workflow]:
    query = tenant_select(models.Workflow, company_id)
    if is_active is not None:
        query = query.where(models.Workflow.is_active.is_(is_active))
    result = await session.execute(query.order_by(models.Workflow.name))
    return list(result.scalars().all())


async def get_instance(session: AsyncSession, company_id: str, instance_id: str) -> models.WorkflowInstance | None:
    result = await session.execute(
        tenant_select(models.WorkflowInstance, company_id).where(models.WorkflowInstance.id == instance_id)
    )
    return result.scalar_one_or_none()


def _add_pending_approval(session: AsyncSession, instance_id: str, step: dict[str, Any]) -> None:
    session.add(
        models.WorkflowApproval(
            workflow_instance_id=instance_id,
            step_number=step["step_number"],
            approver_id=step.get("approver_user_id"),
            status="pending",
        )
    )


async def start_workflow(
    session: AsyncSession,
    company_id: str,
    workflow_id: str,
    *,
    resource_type: str,
    resource_id: str,
    initiated_by: str | None,
) -> models.WorkflowInstance:
    """Start an instance at step 0 with a pending approval for the first step."""
    result = await session.execute(
        tenant_select(models.Workflow, company_id).where(models.Workflow.id == workflow_id)
    )
    workflow = result.scalar_one_or_none()
    if workflow is None:
        raise NotFoundError("Workflow not found")

    instance = models.WorkflowInstance(
        workflow_id=workflow.id,
        company_id=company_id,
        resource_type=resource_type,
        resource_id=resource_id,
        current_step=0,
        status="pending",
        initiated_by=initiated_by,
    )
    session.add(instance)
    await session.flush()

    if workflow.steps:
        _add_pending_approval(session, instance.id, workflow.steps[0])

    await session.commit()
    logger.info(f"Started workflow {workflow.id} on {resource_type}/{resource_id}")
    return instance


async def _find_approval(session: AsyncSession, instance_id: str, step_number: int) -> models.WorkflowApproval:
    result = await session.execute(
        select(models.WorkflowApproval)
        .where(
            models.WorkflowApproval.workflow_instance_id == instance_id,
            models.WorkflowApproval.step_number == step_number,
        )
        .order_by(models.WorkflowApproval.created_at.desc())
        .limit(1)
    )
    approval = result.scalar_one_or_none()
    if approval is None:
        raise NotFoundError("Approval not found")
    return approval


async def approve_step(
    session: AsyncSession,
    company_id: str,
    instance_id: str,
    step_number: int,
    approver_id: str | None,
    comments: str | None = None,
    *,
    commit: bool = True,
) -> models.WorkflowApproval:
    """Approve one step and advance the instance.

    When the workflow has a next step the instance moves to it and gets a
    new pending approval; otherwise the instance is approved.
    """
    instance = await get_instance(session, company_id, instance_id)
    if instance is None:
        raise NotFoundError("Workflow instance not found")
    approval = await _find_approval(session, instance_id, step_number)

    approval.status = "approved"
    approval.comments = comments
    approval.approver_id = approver_id or approval.approver_id
    approval.approved_at = datetime.utcnow()

    workflow = await session.get(models.Workflow, instance.workflow_id)
    if workflow is None:
        raise NotFoundError("Workflow not found")

    steps = workflow.steps or []
    position = next((i for i, s in enumerate(steps) if s["step_number"] == step_number), len(steps))
    next_step = steps[position + 1] if position + 1 < len(steps) else None

    if next_step:
        instance.current_step = next_step["step_number"]
        instance.status = "in_progress"
        _add_pending_approval(session, instance.id, next_step)
    else:
        instance.status = "approved"
        instance.completed_at = datetime.utcnow()

    if commit:
        await session.commit()
    return approval


async def reject_step(
    session: AsyncSession,
    company_id: str,
    instance_id: str,
    step_number: int,
    approver_id: str | None,
    comments: str | None = None,
    *,
    commit: bool = True,
) -> models.WorkflowApproval:
    instance = await get_instance(session, company_id, instance_id)
    if instance is None:
        raise NotFoundError("Workflow instance not found")
    approval = await _find_approval(session, instance_id, step_number)

    now = datetime.utcnow()
    approval.status = "rejected"
    approval.comments = comments
    approval.approver_id = approver_id or approval.approver_id
    approval.approved_at = now
    instance.status = "rejected"
    instance.completed_at = now

    if commit:
        await session.commit()
    return approval


async def list_instances(
    session: AsyncSession,
    company_id: str,
    status: str | None = None,
) -> list[models.WorkflowInstance]:
    query = tenant_select(models.WorkflowInstance, company_id)
    if status:
        query = query.where(models.WorkflowInstance.status == status)
    result = await session.execute(query.order_by(models.WorkflowInstance.created_at.desc()))
    return list(result.scalars().all())


async def find_active_instance(
    session: AsyncSession,
    company_id: str,
    resource_type: str,
    resource_id: str,
) -> models.WorkflowInstance | None:
    """The newest pending or in-progress instance attached to a resource."""
    result = await session.execute(
        tenant_select(models.WorkflowInstance, company_id)
        .where(
            models.WorkflowInstance.resource_type == resource_type,
            models.WorkflowInstance.resource_id == resource_id,
            models.WorkflowInstance.status.in_(("pending", "in_progress")),
        )
        .order_by(models.WorkflowInstance.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_approvals(session: AsyncSession, instance_id: str) -> list[models.WorkflowApproval]:
    result = await session.execute(
        select(models.WorkflowApproval)
        .where(models.WorkflowApproval.workflow_instance_id == instance_id)
        .order_by(models.WorkflowApproval.step_number)
    )
    return list(result.scalars().all())


async def get_pending_approval(session: AsyncSession, instance_id: str) -> models.WorkflowApproval | None:
    """The open approval of an instance, i.e. the step waiting for a decision."""
    result = await session.execute(
        select(models.WorkflowApproval)
        .where(
            models.WorkflowApproval.workflow_instance_id == instance_id,
            models.WorkflowApproval.status == "pending",
        )
        .order_by(models.WorkflowApproval.step_number)
        .limit(1)
    )
    return result.scalar_one_or_none()
