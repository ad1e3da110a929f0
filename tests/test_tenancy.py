import pytest

from bmo.errors import PermissionDeniedError, TenantAccessError
from bmo.tenancy import (
    RoleFlags,
    TenantQueryBuilder,
    add_tenant_filter,
    ensure_permission,
    has_permission,
    validate_tenant_access,
)


def test_add_tenant_filter_without_where():
    sql, params = add_tenant_filter("SELECT * FROM transactions", "c1")
    assert sql == "SELECT * FROM transactions WHERE company_id = :company_id"
    assert params == {"company_id": "c1"}


def test_add_tenant_filter_with_where_and_alias():
    sql, params = add_tenant_filter(
        "SELECT * FROM documents d WHERE d.status = :status", "c1", {"status": "review"}, table_alias="d"
    )
    assert sql.endswith("AND d.company_id = :company_id")
    assert params == {"status": "review", "company_id": "c1"}


def test_add_tenant_filter_does_not_mutate_params():
    original = {"status": "posted"}
    add_tenant_filter("SELECT 1", "c1", original)
    assert original == {"status": "posted"}


def test_query_builder():
    sql, params = (
        TenantQueryBuilder("c1", "SELECT * FROM transactions")
        .where("status = :status", status="posted")
        .order_by("transaction_date DESC")
        .limit(10)
        .offset(20)
        .build()
    )
    assert sql == (
        "SELECT * FROM transactions WHERE company_id = :company_id AND status = :status "
        "ORDER BY transaction_date DESC LIMIT :_limit OFFSET :_offset"
    )
    assert params == {"company_id": "c1", "status": "posted", "_limit": 10, "_offset": 20}


def test_validate_tenant_access():
    validate_tenant_access("c1", "c1")
    with pytest.raises(TenantAccessError, match="different company"):
        validate_tenant_access("c2", "c1")
    with pytest.raises(TenantAccessError):
        validate_tenant_access("c1", None)


@pytest.mark.parametrize(
    "permissions, key, expected",
    [
        ({"all": True}, "approve", True),
        ({"read": True, "write": True}, "write", True),
        ({"read": True}, "write", False),
        ({"read": True, "write": False}, "write", False),
        ({}, "read", False),
        (None, "read", False),
    ],
)
def test_has_permission(permissions, key, expected):
    assert has_permission(permissions, key) is expected


def test_ensure_permission():
    ensure_permission({"audit": True}, "audit")
    with pytest.raises(PermissionDeniedError, match="Missing permission: write"):
        ensure_permission({"read": True}, "write")


def test_role_flags():
    assert RoleFlags("admin").is_admin
    assert RoleFlags("auditor").is_auditor
    assert RoleFlags("finance_team").is_finance_team
    flags = RoleFlags(None)
    assert not (flags.is_admin or flags.is_auditor or flags.is_finance_team)
