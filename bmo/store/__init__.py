"""Tenant-scoped data access for the relational schema."""
