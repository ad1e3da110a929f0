import pytest

from bmo import models
from bmo.errors import NotFoundError, ValidationError
from bmo.pipelines.document_review import review_document
from bmo.store.audit import list_audit_logs
from bmo.store.workflows import (
    approve_step,
    create_workflow,
    find_active_instance,
    get_pending_approval,
    list_approvals,
    list_instances,
    list_workflows,
    reject_step,
    start_workflow,
)

TWO_STEPS = [
    {"step_number": 1, "approver_role": "finance_team"},
    {"step_number": 2, "approver_role": "admin"},
]


@pytest.fixture
async def document(session, company):
    doc = models.Document(
        company_id=company.id,
        appwrite_file_id="file-1",
        file_name="invoice.pdf",
        status="review",
        requires_review=True,
    )
    session.add(doc)
    await session.commit()
    return doc


@pytest.fixture
async def workflow(session, company):
    return await create_workflow(
        session, company.id, name="Invoice approval", workflow_type="document", steps=TWO_STEPS
    )


async def test_steps_need_numbers(session, company):
    with pytest.raises(ValidationError, match="step_number"):
        await create_workflow(session, company.id, name="Bad", workflow_type="document", steps=[{"approver_role": "admin"}])


async def test_start_creates_first_pending_approval(session, company, workflow, document):
    instance = await start_workflow(
        session, company.id, workflow.id, resource_type="document", resource_id=document.id, initiated_by=None
    )

    assert instance.status == "pending"
    assert instance.current_step == 0
    approvals = await list_approvals(session, instance.id)
    assert [(a.step_number, a.status) for a in approvals] == [(1, "pending")]
    assert await list_workflows(session, company.id, is_active=True) == [workflow]


async def test_start_unknown_workflow(session, company):
    with pytest.raises(NotFoundError):
        await start_workflow(session, company.id, "nope", resource_type="document", resource_id="d", initiated_by=None)


async def test_approving_every_step_completes_the_instance(session, company, workflow, document, admin_user):
    instance = await start_workflow(
        session, company.id, workflow.id, resource_type="document", resource_id=document.id, initiated_by=admin_user.id
    )

    await approve_step(session, company.id, instance.id, 1, admin_user.id, "looks right")
    assert instance.status == "in_progress"
    assert instance.current_step == 2
    assert (await get_pending_approval(session, instance.id)).step_number == 2

    await approve_step(session, company.id, instance.id, 2, admin_user.id)
    assert instance.status == "approved"
    assert instance.completed_at is not None
    assert await get_pending_approval(session, instance.id) is None
    assert [a.status for a in await list_approvals(session, instance.id)] == ["approved", "approved"]


async def test_rejecting_a_step_rejects_the_instance(session, company, workflow, document):
    instance = await start_workflow(
        session, company.id, workflow.id, resource_type="document", resource_id=document.id, initiated_by=None
    )

    approval = await reject_step(session, company.id, instance.id, 1, None, "wrong vendor")

    assert approval.status == "rejected"
    assert approval.comments == "wrong vendor"
    assert instance.status == "rejected"
    assert await list_instances(session, company.id, status="rejected") == [instance]
    assert await find_active_instance(session, company.id, "document", document.id) is None


async def test_approving_a_missing_step(session, company, workflow, document):
    instance = await start_workflow(
        session, company.id, workflow.id, resource_type="document", resource_id=document.id, initiated_by=None
    )
    with pytest.raises(NotFoundError, match="Approval not found"):
        await approve_step(session, company.id, instance.id, 7, None)


async def test_instances_are_tenant_scoped(session, company, workflow, document):
    instance = await start_workflow(
        session, company.id, workflow.id, resource_type="document", resource_id=document.id, initiated_by=None
    )
    with pytest.raises(NotFoundError):
        await approve_step(session, "another-company", instance.id, 1, None)


async def test_review_document_advances_workflow_and_audits(session, company, workflow, document, admin_user):
    instance = await start_workflow(
        session, company.id, workflow.id, resource_type="document", resource_id=document.id, initiated_by=None
    )

    response = await review_document(
        session,
        document_id=document.id,
        action="approve",
        user_id=admin_user.id,
        company_id=company.id,
        comments="ok",
    )

    assert response["message"] == "Document approved successfully"
    assert document.status == "approved"
    assert document.requires_review is False
    assert document.reviewed_by == admin_user.id
    assert instance.status == "in_progress"
    logs = await list_audit_logs(session, company.id, resource_type="document")
    assert [(log.action, log.old_values, log.new_values) for log in logs] == [
        ("approve", {"status": "review"}, {"status": "approved", "comments": "ok"}),
    ]


async def test_review_document_reject_without_workflow(session, company, document, admin_user):
    response = await review_document(
        session, document_id=document.id, action="reject", user_id=admin_user.id, company_id=company.id
    )

    assert response["message"] == "Document rejected successfully"
    assert document.status == "rejected"


async def test_review_document_validation(session, company, document):
    with pytest.raises(ValidationError, match="Missing required fields"):
        await review_document(session, document_id=document.id, action="approve", user_id=None, company_id=company.id)
    with pytest.raises(ValidationError, match="Invalid action"):
        await review_document(session, document_id=document.id, action="escalate", user_id="u", company_id=company.id)
    with pytest.raises(NotFoundError):
        await review_document(session, document_id="missing", action="approve", user_id="u", company_id=company.id)
