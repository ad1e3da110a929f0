"""Tenant isolation and role-based permission helpers.

Tenant isolation is a convention: every tenant-owned query is filtered by
``company_id``. The helpers here make that filter hard to forget, both for
raw SQL (``text()``) and for ORM selects.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Select, select

from .errors import PermissionDeniedError, TenantAccessError

_WHERE = re.compile(r"\bwhere\b", re.IGNORECASE)


def add_tenant_filter(
    sql: str,
    company_id: str,
    params: dict[str, Any] | None = None,
    table_alias: str = "",
) -> tuple[str, dict[str, Any]]:
    """Append a ``company_id`` condition to a SQL statement.

    Returns:
        Tuple of (sql, params) with ``company_id`` bound
    """
    params = dict(params or {})
    params["company_id"] = company_id
    keyword = "AND" if _WHERE.search(sql) else "WHERE"
    column = f"{table_alias}.company_id" if table_alias else "company_id"
    return f"{sql} {keyword} {column} = :company_id", params


def validate_tenant_access(resource_company_id: str | None, user_company_id: str | None) -> None:
    """Raise TenantAccessError when a resource belongs to another company."""
    if resource_company_id != user_company_id:
        raise TenantAccessError("Access denied: Resource belongs to a different company")


@dataclass
class TenantQueryBuilder:
    """Builds raw SQL that is always scoped to one company.

    Example:
        sql, params = (
            TenantQueryBuilder("c1", "SELECT * FROM transactions")
            .where("status = :status", status="posted")
            .order_by("transaction_date DESC")
            .limit(10)
            .build()
        )
    """
    company_id: str
    base_sql: str
    conditions: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)
    _order_by: str | None = None
    _limit: int | None = None
    _offset: int | None = None

    def where(self, clause: str, **params: Any) -> TenantQueryBuilder:
        self.conditions.append(clause)
        self.params.update(params)
        return self

    def order_by(self, clause: str) -> TenantQueryBuilder:
        self._order_by = clause
        return self

    def limit(self, value: int) -> TenantQueryBuilder:
        self._limit = value
        return self

    def offset(self, value: int) -> TenantQueryBuilder:
        self._offset = value
        return self

    def build(self) -> tuple[str, dict[str, Any]]:
        sql, params = add_tenant_filter(self.base_sql, self.company_id, self.params)
        for clause in self.conditions:
            sql += f" AND {clause}"
        if self._order_by:
            sql += f" ORDER BY {self._order_by}"
        if self._limit is not None:
            sql += " LIMIT :_limit"
            params["_limit"] = self._limit
        if self._offset:
            sql += " OFFSET :_offset"
            params["_offset"] = self._offset
        return sql, params


def tenant_select(model, company_id: str) -> Select:
    """ORM ``select(model)`` already filtered to one company."""
    return select(model).where(model.company_id == company_id)


# Permissions

def has_permission(permissions: dict[str, Any] | None, key: str) -> bool:
    """``{"all": true}`` grants everything; otherwise the key itself must be truthy."""
    if not permissions:
        return False
    if permissions.get("all"):
        return True
    return bool(permissions.get(key))


@dataclass
class RoleFlags:
    """Convenience flags derived from a role name."""
    role_name: str | None

    @property
    def is_admin(self) -> bool:
        return self.role_name == "admin"

    @property
    def is_auditor(self) -> bool:
        return self.role_name == "auditor"

    @property
    def is_finance_team(self) -> bool:
        return self.role_name == "finance_team"


def ensure_permission(permissions: dict[str, Any] | None, key: str) -> None:
    if not has_permission(permissions, key):
        raise PermissionDeniedError(f"Missing permission: {key}")
