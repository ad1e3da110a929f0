"""Approval workflow endpoints."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bmo.auth import CurrentUser, require_company, require_permission
from bmo.db import get_session
from bmo.errors import NotFoundError
from bmo.store import workflows

router = APIRouter(prefix="/workflows", tags=["Workflows"])


class WorkflowStep(BaseModel):
    step_number: int = Field(ge=0)
    approver_role: str | None = None
    approver_user_id: str | None = None
    required: bool = True


class WorkflowRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    workflow_type: str = Field(min_length=1, max_length=50)
    steps: list[WorkflowStep]
    description: str | None = None


class StartRequest(BaseModel):
    resource_type: str
    resource_id: str


class DecisionRequest(BaseModel):
    step_number: int
    comments: str | None = None


def _instance(instance, approvals=None) -> dict[str, Any]:
    data = instance.to_dict()
    if approvals is not None:
        data["approvals"] = [a.to_dict() for a in approvals]
    return data


@router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_permission("write"))])
async def create_workflow(
    payload: WorkflowRequest,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    workflow = await workflows.create_workflow(
        session,
        company_id,
        name=payload.name,
        workflow_type=payload.workflow_type,
        steps=[s.model_dump() for s in payload.steps],
        description=payload.description,
    )
    return workflow.to_dict()


@router.get("")
async def list_workflows(
    is_active: bool | None = None,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    return [w.to_dict() for w in await workflows.list_workflows(session, company_id, is_active)]


@router.post("/{workflow_id}/instances", status_code=status.HTTP_201_CREATED)
async def start_instance(
    workflow_id: str,
    payload: StartRequest,
    current: CurrentUser = Depends(require_permission("write")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    instance = await workflows.start_workflow(
        session,
        company_id,
        workflow_id,
        resource_type=payload.resource_type,
        resource_id=payload.resource_id,
        initiated_by=current.user_id,
    )
    return _instance(instance, await workflows.list_approvals(session, instance.id))


@router.get("/instances")
async def list_instances(
    status_filter: str | None = Query(default=None, alias="status"),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    return [_instance(i) for i in await workflows.list_instances(session, company_id, status_filter)]


@router.get("/instances/{instance_id}")
async def get_instance(
    instance_id: str,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    instance = await workflows.get_instance(session, company_id, instance_id)
    if instance is None:
        raise NotFoundError("Workflow instance not found")
    return _instance(instance, await workflows.list_approvals(session, instance.id))


@router.post("/instances/{instance_id}/approve")
async def approve(
    instance_id: str,
    payload: DecisionRequest,
    current: CurrentUser = Depends(require_permission("approve")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    approval = await workflows.approve_step(
        session, company_id, instance_id, payload.step_number, current.user_id, payload.comments
    )
    return approval.to_dict()


@router.post("/instances/{instance_id}/reject")
async def reject(
    instance_id: str,
    payload: DecisionRequest,
    current: CurrentUser = Depends(require_permission("approve")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    approval = await workflows.reject_step(
        session, company_id, instance_id, payload.step_number, current.user_id, payload.comments
    )
    return approval.to_dict()
